"""Replies to inbound SMS keywords. No calendar interaction."""

OPT_OUT_KEYWORDS = frozenset({"STOP", "UNSUBSCRIBE", "CANCEL", "END", "QUIT"})
HELP_KEYWORDS = frozenset({"HELP"})

OPT_OUT_REPLY = "You've been opted out. Reply START to opt back in."


def help_reply(business_name: str, support_email: str) -> str:
    return f"{business_name} Support: {support_email}. Msg&Data rates may apply."


def reply_for(body: str | None, *, business_name: str, support_email: str) -> str:
    keyword = (body or "").strip().upper()
    if keyword in OPT_OUT_KEYWORDS:
        return OPT_OUT_REPLY
    if keyword in HELP_KEYWORDS:
        return help_reply(business_name, support_email)
    return ""
