"""Google Calendar v3 adapter for the calendar surface."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from urllib.parse import quote

import httpx

from .calendar_surface import (
    CalendarEvent,
    CalendarSurface,
    CalendarSurfaceError,
    description_has_marker,
)

LOGGER = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"

RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0
GONE_STATUS_CODES = {404, 410}
PAGE_SIZE = 250


def _google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    return normalized.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_google_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    return datetime.fromisoformat(normalized)


def _safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return " ".join(error_payload.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


def _reminders_body(minutes: list[int]) -> dict[str, Any]:
    return {
        "useDefault": False,
        "overrides": [{"method": "popup", "minutes": int(value)} for value in minutes],
    }


def _to_calendar_event(item: dict[str, Any]) -> CalendarEvent | None:
    # All-day events carry "date" instead of "dateTime" and are never ours.
    start_raw = (item.get("start") or {}).get("dateTime")
    end_raw = (item.get("end") or {}).get("dateTime")
    if not start_raw or not end_raw or item.get("status") == "cancelled":
        return None
    overrides = (item.get("reminders") or {}).get("overrides") or []
    return CalendarEvent(
        event_id=item["id"],
        title=item.get("summary", ""),
        start=_parse_google_datetime(start_raw),
        end=_parse_google_datetime(end_raw),
        description=item.get("description") or "",
        reminders=[int(entry.get("minutes", 0)) for entry in overrides],
    )


class _GoogleOAuthClient:
    """Refresh-token OAuth helper with access-token caching."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        http_client: httpx.Client,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._http_client = http_client
        self._access_token: str | None = None
        self._expires_at: datetime | None = None

    def get_access_token(self, *, force_refresh: bool = False) -> str:
        if force_refresh or not self._token_is_fresh():
            self._refresh_access_token()
        assert self._access_token is not None
        return self._access_token

    def _token_is_fresh(self) -> bool:
        if self._access_token is None or self._expires_at is None:
            return False
        return datetime.now(timezone.utc) < self._expires_at

    def _refresh_access_token(self) -> None:
        try:
            response = self._http_client.post(
                GOOGLE_OAUTH_TOKEN_URL,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": self._refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise CalendarSurfaceError(f"Google OAuth token refresh request failed: {exc}") from exc

        if not response.is_success:
            raise CalendarSurfaceError(
                f"Google OAuth token refresh failed: {_safe_google_error_message(response)}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarSurfaceError("Google OAuth token endpoint returned invalid JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise CalendarSurfaceError("Google OAuth token response is missing an access_token")

        expires_in = payload.get("expires_in")
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)) or expires_in <= 0:
            expires_in = 3600
        # Refresh a minute early.
        self._access_token = access_token.strip()
        self._expires_at = datetime.now(timezone.utc) + timedelta(seconds=max(int(expires_in) - 60, 30))


class GoogleCalendarSurface(CalendarSurface):
    """
    Calendar surface backed by the Google Calendar v3 REST API.

    Requests carry a bearer token obtained through the OAuth refresh-token
    grant. A 401 triggers one forced token refresh; 429 and 503 are retried
    with exponential backoff, honouring ``Retry-After`` on 429. Every other
    non-success status becomes a ``CalendarSurfaceError``.

    Attributes:
        calendar_id: Target calendar, ``"primary"`` by default.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        calendar_id: str = "primary",
        http_client: httpx.Client | None = None,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.calendar_id = calendar_id
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.Client(timeout=timeout)
        self._oauth = _GoogleOAuthClient(
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
            http_client=self._http_client,
        )
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings, *, http_client: httpx.Client | None = None) -> "GoogleCalendarSurface":
        secret = settings.google_client_secret
        token = settings.google_refresh_token
        if not settings.google_client_id or secret is None or token is None:
            raise ValueError(
                "Google calendar backend needs MAILALERT_GOOGLE_CLIENT_ID, "
                "MAILALERT_GOOGLE_CLIENT_SECRET and MAILALERT_GOOGLE_REFRESH_TOKEN"
            )
        return cls(
            client_id=settings.google_client_id,
            client_secret=secret.get_secret_value(),
            refresh_token=token.get_secret_value(),
            calendar_id=settings.google_calendar_id,
            http_client=http_client,
            timeout=settings.google_timeout_seconds,
        )

    @property
    def name(self) -> str:
        return "google"

    def close(self) -> None:
        if self._owns_http_client:
            self._http_client.close()

    # Request plumbing ------------------------------------------------------

    def _events_path(self, event_id: str | None = None) -> str:
        path = f"/calendars/{quote(self.calendar_id, safe='')}/events"
        if event_id is not None:
            path = f"{path}/{quote(event_id, safe='')}"
        return path

    def _request_once(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
        force_refresh: bool,
    ) -> httpx.Response:
        access_token = self._oauth.get_access_token(force_refresh=force_refresh)
        try:
            return self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise CalendarSurfaceError(f"Google Calendar request failed: {exc}") from exc

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = f"{GOOGLE_CALENDAR_API_BASE_URL}{path}"
        response = self._request_once(
            method, url, params=params, json_body=json_body, force_refresh=False
        )
        if response.status_code == 401:
            response = self._request_once(
                method, url, params=params, json_body=json_body, force_refresh=True
            )

        retry = 0
        while response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and retry < RATE_LIMIT_MAX_RETRIES:
            backoff = RATE_LIMIT_BASE_BACKOFF_SECONDS * (2**retry)
            if response.status_code == 429:
                retry_after = response.headers.get("Retry-After")
                if retry_after is not None:
                    try:
                        backoff = float(retry_after)
                    except ValueError:
                        LOGGER.debug("Ignoring non-numeric Retry-After %r", retry_after)
            LOGGER.warning(
                "Calendar API rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                backoff,
                retry + 1,
                RATE_LIMIT_MAX_RETRIES,
            )
            self._sleep(backoff)
            response = self._request_once(
                method, url, params=params, json_body=json_body, force_refresh=False
            )
            retry += 1
        return response

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        if not response.is_success:
            raise CalendarSurfaceError(
                _safe_google_error_message(response), status_code=response.status_code
            )
        if response.status_code == 204:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarSurfaceError("Google Calendar API returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise CalendarSurfaceError("Google Calendar API returned an unexpected payload shape")
        return payload

    # CalendarSurface -------------------------------------------------------

    def create_event(
        self, *, title: str, start: datetime, end: datetime, description: str
    ) -> str:
        body = {
            "summary": title,
            "description": description,
            "start": {"dateTime": _google_rfc3339(start)},
            "end": {"dateTime": _google_rfc3339(end)},
            "reminders": _reminders_body([]),
        }
        payload = self._json(self._request("POST", self._events_path(), json_body=body))
        event_id = payload.get("id")
        if not isinstance(event_id, str) or not event_id:
            raise CalendarSurfaceError("Google Calendar create response is missing an event id")
        return event_id

    def set_reminders(self, event_id: str, minutes: list[int]) -> None:
        self._json(
            self._request(
                "PATCH",
                self._events_path(event_id),
                json_body={"reminders": _reminders_body(minutes)},
            )
        )

    def find_event_by_marker(
        self, *, start: datetime, end: datetime, marker: str
    ) -> CalendarEvent | None:
        # q= is a fuzzy full-text search; the description line check is authoritative.
        for event in self._list(start=start, end=end, query=marker):
            if description_has_marker(event.description, marker):
                return event
        return None

    def event_exists(self, event_id: str) -> bool:
        response = self._request("GET", self._events_path(event_id))
        if response.status_code in GONE_STATUS_CODES:
            return False
        payload = self._json(response)
        return payload.get("status") != "cancelled"

    def delete_event(self, event_id: str) -> bool:
        response = self._request("DELETE", self._events_path(event_id))
        if response.status_code in GONE_STATUS_CODES:
            LOGGER.debug("Event %s already deleted", event_id)
            return False
        self._json(response)
        return True

    def list_events(self, *, start: datetime, end: datetime) -> list[CalendarEvent]:
        return self._list(start=start, end=end)

    def _list(
        self, *, start: datetime, end: datetime, query: str | None = None
    ) -> list[CalendarEvent]:
        params: dict[str, Any] = {
            "timeMin": _google_rfc3339(start),
            "timeMax": _google_rfc3339(end),
            "singleEvents": True,
            "showDeleted": False,
            "orderBy": "startTime",
            "maxResults": PAGE_SIZE,
        }
        if query:
            params["q"] = query

        events: list[CalendarEvent] = []
        while True:
            payload = self._json(self._request("GET", self._events_path(), params=params))
            items = payload.get("items")
            if not isinstance(items, list):
                raise CalendarSurfaceError("Google Calendar list response is missing items")
            for item in items:
                if isinstance(item, dict):
                    event = _to_calendar_event(item)
                    if event is not None:
                        events.append(event)
            page_token = payload.get("nextPageToken")
            if not page_token:
                return events
            params = {**params, "pageToken": page_token}
