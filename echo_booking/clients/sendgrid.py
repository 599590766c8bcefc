from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable

import httpx

from echo_booking.services.exceptions import DownstreamServiceError

logger = logging.getLogger(__name__)

SENDGRID_MAIL_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: str
    mime_type: str = "text/calendar"

    def as_payload(self) -> Dict[str, str]:
        return {
            "content": base64.b64encode(self.content.encode("utf-8")).decode("ascii"),
            "filename": self.filename,
            "type": self.mime_type,
            "disposition": "attachment",
        }


class SendGridClient:
    """Sends plain-text email through the SendGrid v3 API."""

    def __init__(self, http_client: httpx.AsyncClient, *, api_key: str, from_email: str) -> None:
        self._http = http_client
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._from_email = from_email

    async def send_email(
        self,
        to: str,
        subject: str,
        text: str,
        attachments: Iterable[Attachment] = (),
    ) -> None:
        payload: Dict[str, Any] = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self._from_email},
            "subject": subject,
            "content": [{"type": "text/plain", "value": text}],
        }
        files = [attachment.as_payload() for attachment in attachments]
        if files:
            payload["attachments"] = files

        try:
            response = await self._http.post(
                SENDGRID_MAIL_SEND_URL, json=payload, headers=self._headers
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("SendGrid returned error %s: %s", exc.response.status_code, exc.response.text[:200])
            raise DownstreamServiceError(
                "SendGrid returned an error response",
                status_code=exc.response.status_code,
                cause=exc,
            ) from exc
        except httpx.RequestError as exc:
            logger.exception("Unable to reach SendGrid: %s", exc)
            raise DownstreamServiceError("Unable to reach SendGrid", cause=exc) from exc

        logger.info("Sent email to %s (%s)", to, subject)
