from __future__ import annotations

from functools import lru_cache

import httpx
from fastapi import Depends

from echo_booking.clients.google import CalendarSession, GoogleCalendarClient, GoogleOAuthClient
from echo_booking.clients.sendgrid import SendGridClient
from echo_booking.clients.twilio import TwilioClient
from echo_booking.config import Settings, get_settings
from echo_booking.services import (
    BookingService,
    BusinessProfile,
    FileCredentialStore,
    NotificationDispatcher,
    SlotLocks,
)
from echo_booking.services.availability import BusinessHours


@lru_cache(maxsize=1)
def get_http_client_cached() -> httpx.AsyncClient:
    settings = get_settings()
    return httpx.AsyncClient(timeout=settings.http_timeout)


@lru_cache(maxsize=1)
def get_oauth_client_cached() -> GoogleOAuthClient:
    settings = get_settings()
    return GoogleOAuthClient(
        get_http_client_cached(),
        client_id=settings.gcal_client_id,
        client_secret=settings.gcal_client_secret,
        redirect_uri=settings.gcal_redirect_uri,
    )


@lru_cache(maxsize=1)
def get_calendar_session_cached() -> CalendarSession:
    settings = get_settings()
    return CalendarSession(
        FileCredentialStore(settings.tokens_path),
        get_oauth_client_cached(),
    )


@lru_cache(maxsize=1)
def get_notification_dispatcher_cached() -> NotificationDispatcher:
    settings = get_settings()
    http_client = get_http_client_cached()
    sms = None
    if settings.sms_enabled:
        sms = TwilioClient(
            http_client,
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_from_number,
        )
    email = None
    if settings.email_enabled:
        email = SendGridClient(
            http_client,
            api_key=settings.sendgrid_api_key,
            from_email=settings.sendgrid_from_email,
        )
    return NotificationDispatcher(sms=sms, email=email, owner_sms=settings.owner_sms)


@lru_cache(maxsize=1)
def get_slot_locks_cached() -> SlotLocks:
    return SlotLocks(get_settings().tz)


def get_oauth_client(settings: Settings = Depends(get_settings)) -> GoogleOAuthClient:
    return get_oauth_client_cached()


def get_calendar_session(settings: Settings = Depends(get_settings)) -> CalendarSession:
    return get_calendar_session_cached()


def get_booking_service(settings: Settings = Depends(get_settings)) -> BookingService:
    calendar = GoogleCalendarClient(get_http_client_cached(), get_calendar_session_cached())
    profile = BusinessProfile(
        name=settings.business_name,
        calendar_id=settings.gcal_calendar_id,
        hours=BusinessHours(settings.tz),
        location=settings.event_location,
        default_service=settings.default_service,
        handoff_phone=settings.handoff_phone,
        handoff_message=settings.handoff_message,
    )
    return BookingService(
        calendar,
        get_notification_dispatcher_cached(),
        profile,
        locks=get_slot_locks_cached(),
    )


def reset_cached_clients() -> None:
    """Drop every cached client so the next request builds fresh ones."""
    for cached in (
        get_slot_locks_cached,
        get_notification_dispatcher_cached,
        get_calendar_session_cached,
        get_oauth_client_cached,
        get_http_client_cached,
    ):
        cached.cache_clear()
