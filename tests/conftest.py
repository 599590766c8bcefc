from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import pytest

from echo_booking.services.availability import BusinessHours, TimeRange
from echo_booking.services.booking import BookingService, BusinessProfile
from echo_booking.services.exceptions import AppointmentNotFoundError, DownstreamServiceError
from echo_booking.services.notifications import NotificationDispatcher

NEW_YORK = ZoneInfo("America/New_York")
CALENDAR_ID = "echoflw@gmail.com"
OWNER_PHONE = "+15550001111"
# 2025-01-06 is a Monday.
NOW = datetime(2025, 1, 3, 12, 0, tzinfo=NEW_YORK)


def local(day: int, hour: int, minute: int = 0, month: int = 1, year: int = 2025) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=NEW_YORK)


class FakeCalendar:
    """In-memory calendar gateway recording every call it receives."""

    def __init__(self, busy: Optional[List[TimeRange]] = None) -> None:
        self.busy: List[TimeRange] = list(busy or [])
        self.events: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.error: Optional[Exception] = None
        self._counter = 0

    def add_event(self, event_id: str, start: datetime, end: datetime, **fields: Any) -> None:
        self.events[event_id] = {
            "id": event_id,
            "start": {"dateTime": start.isoformat()},
            "end": {"dateTime": end.isoformat()},
            **fields,
        }
        self.busy.append(TimeRange(start, end))

    async def free_busy(self, calendar_id: str, window: TimeRange) -> List[TimeRange]:
        self.calls.append(("free_busy", calendar_id, window))
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        return [b for b in self.busy if b.start < window.end and b.end > window.start]

    async def insert_event(self, calendar_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("insert", calendar_id, body))
        self._counter += 1
        event = dict(body, id=f"evt-{self._counter}")
        self.events[event["id"]] = event
        self.busy.append(
            TimeRange(
                datetime.fromisoformat(body["start"]["dateTime"]),
                datetime.fromisoformat(body["end"]["dateTime"]),
            )
        )
        return event

    async def get_event(self, calendar_id: str, event_id: str) -> Dict[str, Any]:
        self.calls.append(("get", calendar_id, event_id))
        if event_id not in self.events:
            raise AppointmentNotFoundError("Appointment not found")
        return dict(self.events[event_id])

    async def patch_event(self, calendar_id: str, event_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("patch", calendar_id, event_id, body))
        self.events[event_id].update(body)
        return dict(self.events[event_id])

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        self.calls.append(("delete", calendar_id, event_id))
        self.events.pop(event_id, None)

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class RecordingSms:
    def __init__(self, fail: bool = False) -> None:
        self.sent: List[tuple] = []
        self.fail = fail

    async def send_sms(self, to: str, body: str) -> Dict[str, Any]:
        if self.fail:
            raise DownstreamServiceError("Twilio returned an error response", status_code=500)
        self.sent.append((to, body))
        return {"sid": f"SM{len(self.sent)}"}


class RecordingEmail:
    def __init__(self, fail: bool = False) -> None:
        self.sent: List[dict] = []
        self.fail = fail

    async def send_email(self, to, subject, text, attachments=()) -> None:
        if self.fail:
            raise DownstreamServiceError("SendGrid returned an error response", status_code=500)
        self.sent.append(
            {"to": to, "subject": subject, "text": text, "attachments": list(attachments)}
        )


def make_service(
    calendar: FakeCalendar,
    *,
    sms: Optional[RecordingSms] = None,
    email: Optional[RecordingEmail] = None,
    owner_sms: Optional[str] = OWNER_PHONE,
    handoff_phone: Optional[str] = "+15550002222",
) -> BookingService:
    profile = BusinessProfile(
        name="Echo Flow",
        calendar_id=CALENDAR_ID,
        hours=BusinessHours(NEW_YORK),
        handoff_phone=handoff_phone,
    )
    notifier = NotificationDispatcher(sms=sms, email=email, owner_sms=owner_sms)
    return BookingService(calendar, notifier, profile, clock=lambda: NOW)


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def sms() -> RecordingSms:
    return RecordingSms()


@pytest.fixture
def email() -> RecordingEmail:
    return RecordingEmail()
