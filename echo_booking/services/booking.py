"""Booking orchestration on top of the calendar's free/busy data.

The calendar is the only source of truth: nothing about an appointment is
kept here between requests. Each operation validates its input before any
external call, re-checks availability, writes to the calendar and then sends
best-effort notifications that can never undo the write.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol
from zoneinfo import ZoneInfo

from echo_booking.clients.sendgrid import Attachment
from echo_booking.schemas.booking import (
    BookingRequest,
    BookingResponse,
    CancelRequest,
    FindSlotsRequest,
    FindSlotsResponse,
    HandoffResponse,
    RescheduleRequest,
    SendMessageRequest,
    SlotModel,
    SuccessResponse,
)
from echo_booking.services.availability import (
    BusinessHours,
    DEFAULT_WINDOW,
    TimeRange,
    default_window,
    find_slots,
    overlaps,
    subtract,
)
from echo_booking.services.exceptions import (
    ChannelNotConfiguredError,
    InvalidChannelError,
    MissingFieldsError,
    ServiceError,
    SlotUnavailableError,
)
from echo_booking.services.invite import build_invite
from echo_booking.services.locks import SlotLocks
from echo_booking.services.notifications import Notification, NotificationDispatcher
from echo_booking.utils import format_when, normalize_phone, parse_instant

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 30
_PHONE_LINE = re.compile(r"^Phone:\s*(.+)$", re.MULTILINE)


class CalendarGateway(Protocol):
    async def free_busy(self, calendar_id: str, window: TimeRange) -> List[TimeRange]: ...

    async def insert_event(self, calendar_id: str, body: Dict[str, Any]) -> Dict[str, Any]: ...

    async def get_event(self, calendar_id: str, event_id: str) -> Dict[str, Any]: ...

    async def patch_event(
        self, calendar_id: str, event_id: str, body: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def delete_event(self, calendar_id: str, event_id: str) -> None: ...


@dataclass(frozen=True)
class BusinessProfile:
    name: str
    calendar_id: str
    hours: BusinessHours
    location: str = "(online demo)"
    default_service: str = "Setup Demo"
    handoff_phone: Optional[str] = None
    handoff_message: str = "Transferring you to a member of our team."


@dataclass(frozen=True)
class Appointment:
    id: str
    start: datetime
    end: datetime
    timezone: str
    summary: str
    description: str
    attendee_email: Optional[str] = None

    def as_response(self) -> BookingResponse:
        return BookingResponse(
            event_id=self.id,
            start_time=self.start.isoformat(),
            end_time=self.end.isoformat(),
            timezone=self.timezone,
        )


def build_summary(service: str, customer_name: Optional[str]) -> str:
    return f"{service} - {customer_name}" if customer_name else service


def build_description(
    business_name: str,
    *,
    customer_name: Optional[str],
    phone: str,
    email: Optional[str],
    notes: Optional[str],
) -> str:
    lines = [
        f"Booked by Echo ({business_name}).",
        f"Customer: {customer_name}" if customer_name else None,
        f"Phone: {phone}" if phone else None,
        f"Email: {email}" if email else None,
        f"Notes: {notes}" if notes else None,
    ]
    return "\n".join(line for line in lines if line)


def _clean(value: Optional[str]) -> str:
    return value.strip() if value else ""


def _event_range(event: Dict[str, Any]) -> Optional[TimeRange]:
    start = (event.get("start") or {}).get("dateTime")
    end = (event.get("end") or {}).get("dateTime")
    if not start or not end:
        return None
    start_at = parse_instant(start, timezone.utc)
    end_at = parse_instant(end, timezone.utc)
    if end_at <= start_at:
        return None
    return TimeRange(start_at, end_at)


class BookingService:
    def __init__(
        self,
        calendar: CalendarGateway,
        notifier: NotificationDispatcher,
        profile: BusinessProfile,
        *,
        locks: SlotLocks | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._calendar = calendar
        self._notifier = notifier
        self._profile = profile
        self._locks = locks or SlotLocks(profile.hours.tz)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def _tz(self) -> ZoneInfo:
        return self._profile.hours.tz

    def _parse(self, value: str, field_name: str) -> datetime:
        try:
            parsed = parse_instant(value, self._tz)
            parsed.astimezone(timezone.utc)
        except OverflowError as exc:
            raise MissingFieldsError(f"{field_name} is out of range") from exc
        except ValueError as exc:
            raise MissingFieldsError(f"{field_name} must be an ISO-8601 timestamp") from exc
        return parsed

    def _end_time(self, start: datetime, length: int | timedelta, field_name: str) -> datetime:
        try:
            if not isinstance(length, timedelta):
                length = timedelta(minutes=length)
            end = start + length
            end.astimezone(timezone.utc)
        except OverflowError as exc:
            raise MissingFieldsError(f"{field_name} is out of range") from exc
        return end

    def _event_time(self, value: datetime) -> Dict[str, str]:
        return {
            "dateTime": value.astimezone(self._tz).isoformat(),
            "timeZone": self._profile.hours.timezone_name,
        }

    async def _ensure_free(self, requested: TimeRange, *, exclude: TimeRange | None = None) -> None:
        busy = await self._calendar.free_busy(self._profile.calendar_id, requested)
        if exclude is not None:
            busy = subtract(busy, exclude)
        if overlaps(requested.start, requested.end, busy):
            raise SlotUnavailableError("That time is no longer available.")

    async def find_slots(self, request: FindSlotsRequest) -> FindSlotsResponse:
        duration = request.slot_duration_min
        if duration is None:
            duration = DEFAULT_DURATION_MINUTES
        if duration <= 0:
            raise MissingFieldsError("slotDurationMin must be positive")

        if request.start:
            start = self._parse(request.start, "startDateTimeISO")
        else:
            start = default_window(self._clock(), self._tz).start
        if request.end:
            end = self._parse(request.end, "endDateTimeISO")
        else:
            end = self._end_time(start, DEFAULT_WINDOW, "startDateTimeISO")
        if end <= start:
            return FindSlotsResponse(slots=[])

        self._end_time(start, duration, "slotDurationMin")
        window = TimeRange(start, end)
        logger.info("Finding %s minute slots between %s and %s", duration, start, end)
        try:
            busy = await self._calendar.free_busy(self._profile.calendar_id, window)
            slots = find_slots(window, duration, busy, self._profile.hours)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while finding slots")
            raise ServiceError("Failed to find slots", cause=exc)

        return FindSlotsResponse(slots=[SlotModel(**slot.as_dict()) for slot in slots])

    async def book(self, request: BookingRequest) -> BookingResponse:
        phone = _clean(request.customer_phone)
        requested_start = _clean(request.requested_start)
        if not phone or not requested_start or not request.duration_minutes or request.duration_minutes <= 0:
            raise MissingFieldsError(
                "customer_phone, requested_start and a positive duration_minutes are required"
            )
        start = self._parse(requested_start, "requested_start")
        end = self._end_time(start, request.duration_minutes, "duration_minutes")

        name = _clean(request.customer_name) or None
        email = _clean(request.customer_email) or None
        service = _clean(request.service) or self._profile.default_service
        summary = build_summary(service, name)
        description = build_description(
            self._profile.name,
            customer_name=name,
            phone=phone,
            email=email,
            notes=_clean(request.notes) or None,
        )
        body: Dict[str, Any] = {
            "summary": summary,
            "description": description,
            "start": self._event_time(start),
            "end": self._event_time(end),
            "location": self._profile.location,
        }
        if email:
            body["attendees"] = [{"email": email}]

        logger.info("Booking %s for %s at %s", service, name or "guest", start.isoformat())
        try:
            async with self._locks.hold(self._profile.calendar_id, start, end):
                await self._ensure_free(TimeRange(start, end))
                event = await self._calendar.insert_event(self._profile.calendar_id, body)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while booking appointment")
            raise ServiceError("Failed to book appointment", cause=exc)

        appointment = Appointment(
            id=str(event["id"]),
            start=start.astimezone(self._tz),
            end=end.astimezone(self._tz),
            timezone=self._profile.hours.timezone_name,
            summary=summary,
            description=description,
            attendee_email=email,
        )
        logger.info("Created calendar event %s", appointment.id)
        await self._notify(self._booked_notifications(appointment, service, name, phone))
        return appointment.as_response()

    async def reschedule(self, request: RescheduleRequest) -> BookingResponse:
        appointment_id = _clean(request.appointment_id)
        new_start = _clean(request.new_start)
        if not appointment_id or not new_start:
            raise MissingFieldsError("appointmentId and newStartDateTimeISO are required")
        if request.duration_minutes is not None and request.duration_minutes <= 0:
            raise MissingFieldsError("duration_minutes must be positive")
        start = self._parse(new_start, "newStartDateTimeISO")

        logger.info("Rescheduling %s to %s", appointment_id, start.isoformat())
        calendar_id = self._profile.calendar_id
        try:
            existing = await self._calendar.get_event(calendar_id, appointment_id)
            current = _event_range(existing)
            duration = request.duration_minutes
            if duration is None:
                duration = (
                    int((current.end - current.start).total_seconds() // 60)
                    if current
                    else DEFAULT_DURATION_MINUTES
                )
            end = self._end_time(start, duration, "duration_minutes")

            description = existing.get("description") or ""
            extra = [f"Rescheduled by Echo to {format_when(start, self._tz)}."]
            if _clean(request.notes):
                extra.append(f"Notes: {_clean(request.notes)}")
            description = "\n".join([description, *extra]) if description else "\n".join(extra)

            async with self._locks.hold(calendar_id, start, end):
                # The appointment's own current slot does not block its move.
                await self._ensure_free(TimeRange(start, end), exclude=current)
                updated = await self._calendar.patch_event(
                    calendar_id,
                    appointment_id,
                    {
                        "start": self._event_time(start),
                        "end": self._event_time(end),
                        "description": description,
                    },
                )
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while rescheduling appointment")
            raise ServiceError("Failed to reschedule appointment", cause=exc)

        appointment = Appointment(
            id=str(updated.get("id") or appointment_id),
            start=start.astimezone(self._tz),
            end=end.astimezone(self._tz),
            timezone=self._profile.hours.timezone_name,
            summary=updated.get("summary") or existing.get("summary") or "",
            description=description,
        )
        await self._notify(self._rescheduled_notifications(appointment))
        return appointment.as_response()

    async def cancel(self, request: CancelRequest) -> SuccessResponse:
        appointment_id = _clean(request.appointment_id)
        if not appointment_id:
            raise MissingFieldsError("appointmentId is required")

        logger.info("Cancelling %s", appointment_id)
        try:
            await self._calendar.delete_event(self._profile.calendar_id, appointment_id)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while cancelling appointment")
            raise ServiceError("Failed to cancel appointment", cause=exc)

        if self._notifier.owner_sms_enabled:
            body = f"❌ Appointment cancelled\nEvent: {appointment_id}"
            if _clean(request.reason):
                body += f"\nReason: {_clean(request.reason)}"
            await self._notify(
                [Notification("sms", self._notifier.owner_sms, body, label="owner cancellation")]
            )
        return SuccessResponse()

    async def send_message(self, request: SendMessageRequest) -> SuccessResponse:
        channel = _clean(request.channel).lower()
        if channel not in ("sms", "email"):
            raise InvalidChannelError("channel must be 'sms' or 'email'")
        if channel == "sms" and not self._notifier.sms_enabled:
            raise ChannelNotConfiguredError("sms")
        if channel == "email" and not self._notifier.email_enabled:
            raise ChannelNotConfiguredError("email")

        to = _clean(request.to)
        message = _clean(request.message)
        if not to or not message:
            raise MissingFieldsError("to and message are required")

        if channel == "sms":
            notification = Notification("sms", normalize_phone(to), message)
        else:
            subject = _clean(request.subject) or f"Message from {self._profile.name}"
            notification = Notification("email", to, message, subject=subject)

        try:
            await self._notifier.send(notification)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while sending %s", channel)
            raise ServiceError(f"Failed to send {channel}", cause=exc)
        return SuccessResponse()

    def handoff(self) -> HandoffResponse:
        return HandoffResponse(
            transfer_to=self._profile.handoff_phone,
            message=self._profile.handoff_message,
        )

    async def _notify(self, notifications: List[Notification]) -> None:
        if not notifications:
            return
        try:
            await self._notifier.deliver_all(notifications)
        except Exception:
            logger.exception("Notification fan-out failed")

    def _booked_notifications(
        self,
        appointment: Appointment,
        service: str,
        name: Optional[str],
        phone: str,
    ) -> List[Notification]:
        when = format_when(appointment.start, self._tz)
        zone = appointment.start.strftime("%Z")
        business = self._profile.name
        notifications: List[Notification] = []

        if self._notifier.sms_enabled:
            notifications.append(
                Notification(
                    "sms",
                    normalize_phone(phone),
                    f"✅ {business}: You're booked for {when}\n"
                    f"Service: {service}\nReply STOP to opt out.",
                    label="customer confirmation",
                )
            )
        if self._notifier.owner_sms_enabled:
            owner_body = (
                f"📩 New booking\nWhen: {when} ({zone})\nService: {service}\n"
                f"Name: {name or 'Guest'}\nPhone: {phone}"
            )
            if appointment.attendee_email:
                owner_body += f"\nEmail: {appointment.attendee_email}"
            notifications.append(
                Notification("sms", self._notifier.owner_sms, owner_body, label="owner alert")
            )
        if self._notifier.email_enabled and appointment.attendee_email:
            invite = build_invite(
                uid=appointment.id,
                start=appointment.start,
                end=appointment.end,
                summary=appointment.summary,
                location=self._profile.location,
                description=appointment.description,
                created=self._clock(),
            )
            notifications.append(
                Notification(
                    "email",
                    appointment.attendee_email,
                    f"Hi {name or 'there'},\n\nYou're booked for {when} ({zone}).\n"
                    f"Service: {service}\n\nA calendar invite is attached.\n\n{business}",
                    subject=f"Confirmed: {service} on {when}",
                    attachments=(Attachment("invite.ics", invite),),
                    label="customer email",
                )
            )
        return notifications

    def _rescheduled_notifications(self, appointment: Appointment) -> List[Notification]:
        when = format_when(appointment.start, self._tz)
        zone = appointment.start.strftime("%Z")
        notifications: List[Notification] = []

        match = _PHONE_LINE.search(appointment.description)
        if self._notifier.sms_enabled and match:
            notifications.append(
                Notification(
                    "sms",
                    normalize_phone(match.group(1)),
                    f"🔁 {self._profile.name}: Your appointment moved to {when}\n"
                    "Reply STOP to opt out.",
                    label="customer reschedule",
                )
            )
        if self._notifier.owner_sms_enabled:
            notifications.append(
                Notification(
                    "sms",
                    self._notifier.owner_sms,
                    f"🔁 Rescheduled\nWhen: {when} ({zone})\n"
                    f"Event: {appointment.summary or appointment.id}",
                    label="owner reschedule",
                )
            )
        return notifications
