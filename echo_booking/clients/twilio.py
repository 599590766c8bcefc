from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from echo_booking.services.exceptions import DownstreamServiceError

logger = logging.getLogger(__name__)

TWILIO_API_BASE_URL = "https://api.twilio.com/2010-04-01"


class TwilioClient:
    """Sends SMS through the Twilio Messages REST resource."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        account_sid: str,
        auth_token: str,
        from_number: str,
    ) -> None:
        self._http = http_client
        self._account_sid = account_sid
        self._auth = (account_sid, auth_token)
        self._from_number = from_number

    async def send_sms(self, to: str, body: str) -> Dict[str, Any]:
        url = f"{TWILIO_API_BASE_URL}/Accounts/{self._account_sid}/Messages.json"
        try:
            response = await self._http.post(
                url,
                data={"To": to, "From": self._from_number, "Body": body},
                auth=self._auth,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("Twilio returned error %s: %s", exc.response.status_code, exc.response.text[:200])
            raise DownstreamServiceError(
                "Twilio returned an error response",
                status_code=exc.response.status_code,
                cause=exc,
            ) from exc
        except httpx.RequestError as exc:
            logger.exception("Unable to reach Twilio: %s", exc)
            raise DownstreamServiceError("Unable to reach Twilio", cause=exc) from exc

        payload = response.json()
        logger.info("Sent SMS %s to %s", payload.get("sid"), to)
        return payload
