from __future__ import annotations

import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from conftest import local
from echo_booking.clients.google import (
    GOOGLE_OAUTH_TOKEN_URL,
    CalendarSession,
    GoogleCalendarClient,
    GoogleOAuthClient,
)
from echo_booking.clients.sendgrid import Attachment, SendGridClient
from echo_booking.clients.twilio import TwilioClient
from echo_booking.services.availability import TimeRange
from echo_booking.services.credentials import Credentials, FileCredentialStore, MemoryCredentialStore
from echo_booking.services.exceptions import (
    AppointmentNotFoundError,
    DownstreamServiceError,
    OAuthNotConnectedError,
)

FRESH = Credentials(
    access_token="fresh-token",
    refresh_token="1//refresh",
    expiry=datetime.now(timezone.utc) + timedelta(hours=1),
)
EXPIRED = Credentials(
    access_token="old-token",
    refresh_token="1//refresh",
    expiry=datetime.now(timezone.utc) - timedelta(minutes=5),
)


class Recorder:
    """MockTransport handler that replays canned responses and keeps requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def _http(recorder: Recorder) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(recorder))


def _oauth(http_client: httpx.AsyncClient) -> GoogleOAuthClient:
    return GoogleOAuthClient(
        http_client,
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="https://example.com/oauth/google/callback",
    )


def _calendar(recorder: Recorder, credentials: Credentials | None = FRESH):
    http_client = _http(recorder)
    store = MemoryCredentialStore(credentials)
    session = CalendarSession(store, _oauth(http_client))
    return GoogleCalendarClient(http_client, session), store


def test_free_busy_parses_busy_windows() -> None:
    recorder = Recorder(
        httpx.Response(
            200,
            json={
                "calendars": {
                    "primary": {
                        "busy": [
                            {"start": "2025-01-06T14:00:00Z", "end": "2025-01-06T14:45:00Z"},
                            {"start": "2025-01-06T18:00:00Z", "end": "2025-01-06T18:00:00Z"},
                        ]
                    }
                }
            },
        )
    )
    calendar, _ = _calendar(recorder)

    busy = asyncio.run(calendar.free_busy("primary", TimeRange(local(6, 9), local(6, 18))))

    assert busy == [TimeRange(local(6, 9), local(6, 9, 45))]
    request = recorder.requests[0]
    assert request.url.path == "/calendar/v3/freeBusy"
    assert request.headers["Authorization"] == "Bearer fresh-token"
    body = json.loads(request.content)
    assert body["items"] == [{"id": "primary"}]
    assert body["timeMin"] == "2025-01-06T14:00:00+00:00"


def test_free_busy_calendar_errors_are_downstream_failures() -> None:
    recorder = Recorder(
        httpx.Response(200, json={"calendars": {"primary": {"errors": [{"reason": "notFound"}]}}})
    )
    calendar, _ = _calendar(recorder)

    with pytest.raises(DownstreamServiceError):
        asyncio.run(calendar.free_busy("primary", TimeRange(local(6, 9), local(6, 18))))


def test_insert_event_posts_to_escaped_calendar_path() -> None:
    recorder = Recorder(httpx.Response(200, json={"id": "evt-42"}))
    calendar, _ = _calendar(recorder)

    event = asyncio.run(calendar.insert_event("echoflw@gmail.com", {"summary": "Demo"}))

    assert event == {"id": "evt-42"}
    assert recorder.requests[0].url.raw_path.startswith(b"/calendar/v3/calendars/echoflw%40gmail.com/events")


def test_missing_event_raises_not_found() -> None:
    recorder = Recorder(httpx.Response(404, json={"error": {"message": "Not Found"}}))
    calendar, _ = _calendar(recorder)

    with pytest.raises(AppointmentNotFoundError) as excinfo:
        asyncio.run(calendar.get_event("echoflw@gmail.com", "missing"))

    assert str(excinfo.value) == "Appointment not found"
    assert "echoflw" not in str(excinfo.value)


def test_delete_event_accepts_empty_response() -> None:
    recorder = Recorder(httpx.Response(204))
    calendar, _ = _calendar(recorder)

    assert asyncio.run(calendar.delete_event("primary", "evt-1")) is None
    assert recorder.requests[0].method == "DELETE"


def test_server_error_is_downstream_failure() -> None:
    recorder = Recorder(httpx.Response(503, json={"error": {"message": "Backend Error"}}))
    calendar, _ = _calendar(recorder)

    with pytest.raises(DownstreamServiceError) as excinfo:
        asyncio.run(calendar.patch_event("primary", "evt-1", {"description": "x"}))

    assert excinfo.value.upstream_status == 503
    assert excinfo.value.code == "internal_error"


def test_rejected_token_is_refreshed_once_and_retried() -> None:
    recorder = Recorder(
        httpx.Response(401, json={"error": {"message": "Invalid Credentials"}}),
        httpx.Response(200, json={"access_token": "new-token", "expires_in": 3599}),
        httpx.Response(200, json={"id": "evt-1"}),
    )
    calendar, store = _calendar(recorder)

    event = asyncio.run(calendar.get_event("primary", "evt-1"))

    assert event == {"id": "evt-1"}
    first, refresh, retry = recorder.requests
    assert first.headers["Authorization"] == "Bearer fresh-token"
    assert str(refresh.url) == GOOGLE_OAUTH_TOKEN_URL
    assert retry.headers["Authorization"] == "Bearer new-token"
    assert store.load().access_token == "new-token"


def test_revoked_grant_reports_not_connected() -> None:
    recorder = Recorder(
        httpx.Response(401, json={"error": {"message": "Invalid Credentials"}}),
        httpx.Response(400, json={"error": "invalid_grant"}),
    )
    calendar, _ = _calendar(recorder)

    with pytest.raises(OAuthNotConnectedError):
        asyncio.run(calendar.get_event("primary", "evt-1"))
    assert len(recorder.requests) == 2


def test_second_rejection_after_refresh_reports_not_connected() -> None:
    recorder = Recorder(
        httpx.Response(401, json={"error": {"message": "Invalid Credentials"}}),
        httpx.Response(200, json={"access_token": "new-token", "expires_in": 3599}),
        httpx.Response(401, json={"error": {"message": "Invalid Credentials"}}),
    )
    calendar, _ = _calendar(recorder)

    with pytest.raises(OAuthNotConnectedError):
        asyncio.run(calendar.get_event("primary", "evt-1"))
    assert len(recorder.requests) == 3


def test_rejected_token_without_refresh_token_reports_not_connected() -> None:
    recorder = Recorder(httpx.Response(401, json={"error": {"message": "Invalid Credentials"}}))
    calendar, _ = _calendar(recorder, credentials=Credentials(access_token="only-access"))

    with pytest.raises(OAuthNotConnectedError):
        asyncio.run(calendar.get_event("primary", "evt-1"))
    assert len(recorder.requests) == 1


def test_legacy_token_file_with_expiry_date_is_refreshed(tmp_path) -> None:
    path = tmp_path / "tokens.google.json"
    path.write_text(
        json.dumps({"access_token": "stale", "refresh_token": "r1", "expiry_date": 1000}),
        encoding="utf-8",
    )
    recorder = Recorder(
        httpx.Response(200, json={"access_token": "new-token", "expires_in": 3599}),
        httpx.Response(200, json={"calendars": {"primary": {"busy": []}}}),
    )
    http_client = _http(recorder)
    store = FileCredentialStore(path)
    calendar = GoogleCalendarClient(http_client, CalendarSession(store, _oauth(http_client)))

    busy = asyncio.run(calendar.free_busy("primary", TimeRange(local(6, 9), local(6, 18))))

    assert busy == []
    refresh, fetch = recorder.requests
    assert str(refresh.url) == GOOGLE_OAUTH_TOKEN_URL
    assert b"refresh_token=r1" in refresh.content
    assert fetch.headers["Authorization"] == "Bearer new-token"
    saved = store.load()
    assert saved.refresh_token == "r1"
    assert not saved.is_expired()


def test_transport_error_is_downstream_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    session = CalendarSession(MemoryCredentialStore(FRESH), _oauth(http_client))
    calendar = GoogleCalendarClient(http_client, session)

    with pytest.raises(DownstreamServiceError):
        asyncio.run(calendar.get_event("primary", "evt-1"))


def test_session_without_credentials_is_not_connected() -> None:
    recorder = Recorder()
    calendar, _ = _calendar(recorder, credentials=None)

    with pytest.raises(OAuthNotConnectedError):
        asyncio.run(calendar.get_event("primary", "evt-1"))
    assert recorder.requests == []


def test_session_refreshes_expired_token_and_saves_it() -> None:
    recorder = Recorder(
        httpx.Response(200, json={"access_token": "new-token", "expires_in": 3599}),
        httpx.Response(200, json={"id": "evt-1"}),
    )
    calendar, store = _calendar(recorder, credentials=EXPIRED)

    asyncio.run(calendar.get_event("primary", "evt-1"))

    refresh, fetch = recorder.requests
    assert str(refresh.url) == GOOGLE_OAUTH_TOKEN_URL
    assert b"grant_type=refresh_token" in refresh.content
    assert fetch.headers["Authorization"] == "Bearer new-token"
    saved = store.load()
    assert saved.access_token == "new-token"
    assert saved.refresh_token == "1//refresh"
    assert not saved.is_expired()


def test_session_rejected_refresh_is_not_connected() -> None:
    recorder = Recorder(httpx.Response(400, json={"error": "invalid_grant"}))
    calendar, store = _calendar(recorder, credentials=EXPIRED)

    with pytest.raises(OAuthNotConnectedError):
        asyncio.run(calendar.get_event("primary", "evt-1"))
    assert store.load().access_token == "old-token"


def test_session_expired_without_refresh_token_is_not_connected() -> None:
    recorder = Recorder()
    expired = Credentials(access_token="old", expiry=datetime.now(timezone.utc) - timedelta(hours=1))
    calendar, _ = _calendar(recorder, credentials=expired)

    with pytest.raises(OAuthNotConnectedError):
        asyncio.run(calendar.get_event("primary", "evt-1"))


def test_twilio_posts_form_with_basic_auth() -> None:
    recorder = Recorder(httpx.Response(201, json={"sid": "SM123"}))
    twilio = TwilioClient(_http(recorder), account_sid="AC1", auth_token="tok", from_number="+15550009999")

    payload = asyncio.run(twilio.send_sms("+18135551234", "hello"))

    assert payload["sid"] == "SM123"
    request = recorder.requests[0]
    assert request.url.path == "/2010-04-01/Accounts/AC1/Messages.json"
    assert request.headers["Authorization"] == "Basic " + base64.b64encode(b"AC1:tok").decode()
    assert b"To=%2B18135551234" in request.content
    assert b"Body=hello" in request.content


def test_twilio_error_response_is_downstream_failure() -> None:
    recorder = Recorder(httpx.Response(400, json={"message": "invalid number"}))
    twilio = TwilioClient(_http(recorder), account_sid="AC1", auth_token="tok", from_number="+15550009999")

    with pytest.raises(DownstreamServiceError) as excinfo:
        asyncio.run(twilio.send_sms("+1", "hello"))

    assert excinfo.value.upstream_status == 400


def test_sendgrid_encodes_attachments() -> None:
    recorder = Recorder(httpx.Response(202))
    sendgrid = SendGridClient(_http(recorder), api_key="SG.key", from_email="bookings@echoflw.com")

    asyncio.run(
        sendgrid.send_email(
            "jamie@example.com",
            "Confirmed",
            "See you soon",
            [Attachment("invite.ics", "BEGIN:VCALENDAR\r\n")],
        )
    )

    request = recorder.requests[0]
    assert request.headers["Authorization"] == "Bearer SG.key"
    body = json.loads(request.content)
    assert body["personalizations"] == [{"to": [{"email": "jamie@example.com"}]}]
    attachment = body["attachments"][0]
    assert attachment["filename"] == "invite.ics"
    assert attachment["type"] == "text/calendar"
    assert base64.b64decode(attachment["content"]) == b"BEGIN:VCALENDAR\r\n"


def test_oauth_authorization_url_requests_offline_access() -> None:
    url = _oauth(_http(Recorder())).authorization_url(state="xyz")

    assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    assert "access_type=offline" in url
    assert "prompt=consent" in url
    assert "state=xyz" in url
    assert "scope=https%3A%2F%2Fwww.googleapis.com%2Fauth%2Fcalendar" in url
