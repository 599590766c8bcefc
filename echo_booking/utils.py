"""Shared helpers for phone numbers and timestamps."""

import re
from datetime import datetime, tzinfo


def normalize_phone(value: str) -> str:
    """Normalize a North American phone number to E.164.

    Examples:
        >>> normalize_phone("(813) 555-1234")
        '+18135551234'
        >>> normalize_phone("+1 813 555 1234")
        '+18135551234'
    """
    digits = re.sub(r"\D", "", value)
    if digits.startswith("1"):
        return "+" + digits
    return "+1" + digits


def parse_instant(value: str, tz: tzinfo) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are read in ``tz``.

    Raises ``ValueError`` for anything that is not ISO-8601.
    """
    raw = value.strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def format_when(value: datetime, tz: tzinfo) -> str:
    """Human friendly local time, e.g. ``Mon, Jan 6, 9:00 AM``."""
    local = value.astimezone(tz)
    hour = local.hour % 12 or 12
    return f"{local:%a, %b} {local.day}, {hour}:{local:%M} {local:%p}"
