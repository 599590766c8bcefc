from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Iterable, List, Optional, Protocol

from echo_booking.clients.sendgrid import Attachment
from echo_booking.services.exceptions import ChannelNotConfiguredError

logger = logging.getLogger(__name__)


class SmsSender(Protocol):
    async def send_sms(self, to: str, body: str) -> object: ...


class EmailSender(Protocol):
    async def send_email(
        self, to: str, subject: str, text: str, attachments: Iterable[Attachment] = ()
    ) -> object: ...


@dataclass
class Notification:
    """One outbound message; ``channel`` is ``sms`` or ``email``."""

    channel: str
    to: str
    body: str
    subject: str = ""
    attachments: tuple = ()
    label: str = ""


class NotificationDispatcher:
    """Fire-and-forget SMS/email delivery.

    Each channel is enabled only when its sender is configured. ``send`` raises
    on failure; ``deliver_all`` never does.
    """

    def __init__(
        self,
        *,
        sms: Optional[SmsSender] = None,
        email: Optional[EmailSender] = None,
        owner_sms: Optional[str] = None,
    ) -> None:
        self._sms = sms
        self._email = email
        self.owner_sms = owner_sms

    @property
    def sms_enabled(self) -> bool:
        return self._sms is not None

    @property
    def email_enabled(self) -> bool:
        return self._email is not None

    @property
    def owner_sms_enabled(self) -> bool:
        return self.sms_enabled and bool(self.owner_sms)

    async def send(self, notification: Notification) -> None:
        if notification.channel == "sms":
            if self._sms is None:
                raise ChannelNotConfiguredError("sms")
            await self._sms.send_sms(notification.to, notification.body)
        elif notification.channel == "email":
            if self._email is None:
                raise ChannelNotConfiguredError("email")
            await self._email.send_email(
                notification.to,
                notification.subject,
                notification.body,
                notification.attachments,
            )
        else:
            raise ValueError(f"Unknown channel {notification.channel!r}")

    async def deliver_all(self, notifications: Iterable[Notification]) -> List[bool]:
        """Send every notification concurrently; failures are logged and dropped."""
        pending: List[Notification] = list(notifications)
        tasks: List[Awaitable[None]] = [self.send(item) for item in pending]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        delivered: List[bool] = []
        for item, result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Notification %s via %s to %s failed: %s",
                    item.label or "message",
                    item.channel,
                    item.to,
                    result,
                )
                delivered.append(False)
            else:
                delivered.append(True)
        return delivered
