from __future__ import annotations

import asyncio
import logging
from datetime import timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

import httpx

from echo_booking.services.availability import TimeRange
from echo_booking.services.credentials import Credentials, CredentialStore
from echo_booking.services.exceptions import (
    AppointmentNotFoundError,
    DownstreamServiceError,
    OAuthNotConnectedError,
)
from echo_booking.utils import parse_instant

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])[:200]
        if isinstance(error, str):
            return error[:200]
    return response.text.strip()[:200] or "Request failed without an error payload"


class GoogleOAuthClient:
    """Authorization-code and refresh-token flows against Google's token endpoint."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None,
    ) -> None:
        self._http = http_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri

    @property
    def configured(self) -> bool:
        return bool(self._client_id and self._client_secret and self._redirect_uri)

    def authorization_url(self, state: str | None = None) -> str:
        params = {
            "client_id": self._client_id or "",
            "redirect_uri": self._redirect_uri or "",
            "response_type": "code",
            "scope": CALENDAR_SCOPE,
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> Credentials:
        payload = await self._token_request(
            {
                "code": code,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": self._redirect_uri,
                "grant_type": "authorization_code",
            }
        )
        return Credentials.from_token_response(payload)

    async def refresh(self, credentials: Credentials) -> Credentials:
        payload = await self._token_request(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": credentials.refresh_token,
                "grant_type": "refresh_token",
            }
        )
        return Credentials.from_token_response(payload, previous=credentials)

    async def _token_request(self, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._http.post(
                GOOGLE_OAUTH_TOKEN_URL,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.RequestError as exc:
            logger.exception("Unable to reach Google token endpoint: %s", exc)
            raise DownstreamServiceError(
                "Unable to reach Google token endpoint", cause=exc
            ) from exc

        if response.is_error:
            logger.error(
                "Google token endpoint returned %s: %s",
                response.status_code,
                _error_message(response),
            )
            raise DownstreamServiceError(
                "Google token endpoint returned an error response",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise DownstreamServiceError(
                "Google token endpoint returned invalid JSON", cause=exc
            ) from exc
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise DownstreamServiceError("Google token response is missing access_token")
        return payload


class CalendarSession:
    """Hands out a usable access token, refreshing it through the store.

    Credentials are cached in process between requests; a lock keeps two
    requests from refreshing the same token at once.
    """

    def __init__(self, store: CredentialStore, oauth: GoogleOAuthClient) -> None:
        self._store = store
        self._oauth = oauth
        self._cached: Optional[Credentials] = None
        self._lock = asyncio.Lock()

    async def access_token(self) -> str:
        async with self._lock:
            credentials = self._cached or self._store.load()
            if credentials is None or not credentials.access_token:
                raise OAuthNotConnectedError()
            if credentials.is_expired():
                credentials = await self._refresh(credentials)
            self._cached = credentials
            return credentials.access_token

    async def refresh_rejected(self, rejected: str) -> str:
        """Replace an access token the Calendar API refused with a fresh one.

        When another request already swapped ``rejected`` out, its replacement
        is returned without another round trip to the token endpoint.
        """
        async with self._lock:
            credentials = self._store.load() or self._cached
            if credentials is None:
                self._cached = None
                raise OAuthNotConnectedError()
            if credentials.access_token == rejected:
                credentials = await self._refresh(credentials)
            self._cached = credentials
            return credentials.access_token

    async def _refresh(self, credentials: Credentials) -> Credentials:
        if not credentials.refresh_token or not self._oauth.configured:
            self._cached = None
            raise OAuthNotConnectedError()
        try:
            refreshed = await self._oauth.refresh(credentials)
        except DownstreamServiceError as exc:
            self._cached = None
            raise OAuthNotConnectedError(cause=exc) from exc
        self._store.save(refreshed)
        logger.info("Refreshed Google access token")
        return refreshed

    def store_credentials(self, credentials: Credentials) -> None:
        self._store.save(credentials)
        self._cached = credentials

    def invalidate(self) -> None:
        self._cached = None


class GoogleCalendarClient:
    """Free/busy queries and event CRUD for the Google Calendar v3 API."""

    def __init__(self, http_client: httpx.AsyncClient, session: CalendarSession) -> None:
        self._http = http_client
        self._session = session

    async def free_busy(self, calendar_id: str, window: TimeRange) -> List[TimeRange]:
        payload = await self._request(
            "POST",
            "/freeBusy",
            json={
                "timeMin": window.start.astimezone(timezone.utc).isoformat(),
                "timeMax": window.end.astimezone(timezone.utc).isoformat(),
                "items": [{"id": calendar_id}],
            },
        )
        calendars = payload.get("calendars") or {}
        entry = calendars.get(calendar_id)
        if entry is None and len(calendars) == 1:
            entry = next(iter(calendars.values()))
        if not isinstance(entry, dict):
            raise DownstreamServiceError("freeBusy response missing calendar entry")
        if entry.get("errors"):
            raise DownstreamServiceError(
                f"freeBusy reported errors for calendar: {entry['errors']}"
            )

        busy: List[TimeRange] = []
        for window_payload in entry.get("busy", []):
            start = parse_instant(window_payload["start"], timezone.utc)
            end = parse_instant(window_payload["end"], timezone.utc)
            if end > start:
                busy.append(TimeRange(start, end))
        return busy

    async def insert_event(self, calendar_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", self._events_path(calendar_id), json=body)

    async def get_event(self, calendar_id: str, event_id: str) -> Dict[str, Any]:
        return await self._request(
            "GET", f"{self._events_path(calendar_id)}/{quote(event_id, safe='')}"
        )

    async def patch_event(
        self, calendar_id: str, event_id: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        return await self._request(
            "PATCH",
            f"{self._events_path(calendar_id)}/{quote(event_id, safe='')}",
            json=body,
        )

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        await self._request(
            "DELETE", f"{self._events_path(calendar_id)}/{quote(event_id, safe='')}"
        )

    @staticmethod
    def _events_path(calendar_id: str) -> str:
        return f"/calendars/{quote(calendar_id, safe='')}/events"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        token = await self._session.access_token()
        response = await self._send(method, path, token, json)
        if response.status_code == 401:
            # Retry once with a refreshed token before giving up on the grant.
            token = await self._session.refresh_rejected(token)
            response = await self._send(method, path, token, json)
        if response.status_code == 401:
            self._session.invalidate()
            raise OAuthNotConnectedError()
        if response.status_code in (404, 410) and method != "POST":
            logger.info("Google Calendar %s %s returned %s", method, path, response.status_code)
            raise AppointmentNotFoundError("Appointment not found")
        if response.is_error:
            logger.error(
                "Google Calendar %s %s returned %s: %s",
                method,
                path,
                response.status_code,
                _error_message(response),
            )
            raise DownstreamServiceError(
                "Google Calendar returned an error response",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise DownstreamServiceError(
                "Google Calendar returned invalid JSON", cause=exc
            ) from exc
        if not isinstance(payload, dict):
            raise DownstreamServiceError("Google Calendar returned an unexpected payload")
        return payload

    async def _send(
        self,
        method: str,
        path: str,
        token: str,
        json: Dict[str, Any] | None,
    ) -> httpx.Response:
        try:
            return await self._http.request(
                method,
                f"{GOOGLE_CALENDAR_API_BASE_URL}{path}",
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as exc:
            logger.exception("Unable to reach Google Calendar: %s", exc)
            raise DownstreamServiceError(
                "Unable to reach Google Calendar", cause=exc
            ) from exc
