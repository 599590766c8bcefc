import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse, RedirectResponse

from echo_booking.clients.google import CalendarSession, GoogleOAuthClient
from echo_booking.dependencies.services import get_calendar_session, get_oauth_client

logger = logging.getLogger(__name__)

router = APIRouter()

SUPPORTED_PROVIDERS = {"google"}


def _require_provider(provider: str) -> None:
    if provider not in SUPPORTED_PROVIDERS:
        raise HTTPException(status_code=404, detail=f"Unknown OAuth provider '{provider}'")


@router.get("/{provider}/start")
def oauth_start(provider: str, oauth: GoogleOAuthClient = Depends(get_oauth_client)):
    _require_provider(provider)
    return RedirectResponse(oauth.authorization_url())


@router.get("/{provider}/callback", response_class=PlainTextResponse)
async def oauth_callback(
    provider: str,
    code: str = "",
    error: str | None = None,
    oauth: GoogleOAuthClient = Depends(get_oauth_client),
    session: CalendarSession = Depends(get_calendar_session),
):
    _require_provider(provider)
    try:
        if error or not code:
            raise ValueError(f"Authorization was not granted: {error or 'missing code'}")
        credentials = await oauth.exchange_code(code)
        session.store_credentials(credentials)
    except Exception:
        logger.exception("OAuth callback for %s failed", provider)
        return PlainTextResponse("OAuth error. Check server logs.", status_code=500)

    logger.info("Google Calendar connected")
    return "Google Calendar connected. You can close this tab."
