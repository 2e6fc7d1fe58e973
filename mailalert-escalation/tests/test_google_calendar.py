from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from mailalert_escalation.calendar_surface import CalendarSurfaceError
from mailalert_escalation.google_calendar import (
    GOOGLE_OAUTH_TOKEN_URL,
    GoogleCalendarSurface,
)

UTC = timezone.utc
START = datetime(2024, 3, 5, 15, 0, tzinfo=UTC)
EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"


class FakeGoogle:
    """Scripted responder for httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_calls = 0
        self.queue: list[httpx.Response] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == GOOGLE_OAUTH_TOKEN_URL:
            self.token_calls += 1
            return httpx.Response(200, json={"access_token": f"tok-{self.token_calls}", "expires_in": 3600})
        self.requests.append(request)
        if not self.queue:
            raise AssertionError(f"unexpected request {request.method} {request.url}")
        return self.queue.pop(0)


def _event(event_id: str, description: str, *, status: str = "confirmed") -> dict:
    return {
        "id": event_id,
        "status": status,
        "summary": "alert",
        "description": description,
        "start": {"dateTime": "2024-03-05T15:00:00Z"},
        "end": {"dateTime": "2024-03-05T15:05:00Z"},
        "reminders": {"useDefault": False, "overrides": [{"method": "popup", "minutes": 0}]},
    }


@pytest.fixture
def google():
    return FakeGoogle()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def surface(google, sleeps) -> GoogleCalendarSurface:
    return GoogleCalendarSurface(
        client_id="client",
        client_secret="secret",
        refresh_token="refresh",
        http_client=httpx.Client(transport=httpx.MockTransport(google)),
        sleep=sleeps.append,
    )


def test_create_event_posts_body_and_returns_id(surface, google) -> None:
    google.queue.append(httpx.Response(200, json={"id": "g-1"}))

    event_id = surface.create_event(
        title="[MAIL ALERT][LIVE] Hourly", start=START, end=START + timedelta(minutes=5), description="d"
    )

    assert event_id == "g-1"
    (request,) = google.requests
    body = json.loads(request.content)
    assert request.method == "POST"
    assert str(request.url) == EVENTS_URL
    assert request.headers["Authorization"] == "Bearer tok-1"
    assert body["start"] == {"dateTime": "2024-03-05T15:00:00Z"}
    assert body["reminders"] == {"useDefault": False, "overrides": []}


def test_set_reminders_patches_popups(surface, google) -> None:
    google.queue.append(httpx.Response(200, json={"id": "g-1"}))

    surface.set_reminders("g-1", [60, 0])

    (request,) = google.requests
    assert request.method == "PATCH"
    assert json.loads(request.content)["reminders"]["overrides"] == [
        {"method": "popup", "minutes": 60},
        {"method": "popup", "minutes": 0},
    ]


def test_unauthorized_forces_one_token_refresh(surface, google) -> None:
    google.queue.extend([httpx.Response(401), httpx.Response(200, json={"id": "g-1", "status": "confirmed"})])

    assert surface.event_exists("g-1") is True
    assert google.token_calls == 2
    assert google.requests[-1].headers["Authorization"] == "Bearer tok-2"


def test_rate_limit_honours_retry_after(surface, google, sleeps) -> None:
    google.queue.extend(
        [
            httpx.Response(429, headers={"Retry-After": "7"}),
            httpx.Response(503),
            httpx.Response(204),
        ]
    )

    assert surface.delete_event("g-1") is True
    assert sleeps == [7.0, 2.0]


def test_rate_limit_gives_up_after_max_retries(surface, google, sleeps) -> None:
    google.queue.extend([httpx.Response(503) for _ in range(4)])

    with pytest.raises(CalendarSurfaceError) as excinfo:
        surface.event_exists("g-1")
    assert excinfo.value.status_code == 503
    assert sleeps == [1.0, 2.0, 4.0]


@pytest.mark.parametrize("status", [404, 410])
def test_gone_events(surface, google, status) -> None:
    google.queue.extend([httpx.Response(status), httpx.Response(status)])

    assert surface.event_exists("g-1") is False
    assert surface.delete_event("g-1") is False


def test_cancelled_event_counts_as_missing(surface, google) -> None:
    google.queue.append(httpx.Response(200, json=_event("g-1", "", status="cancelled")))
    assert surface.event_exists("g-1") is False


def test_server_error_raises(surface, google) -> None:
    google.queue.append(httpx.Response(500, json={"error": {"message": "Backend  Error"}}))

    with pytest.raises(CalendarSurfaceError) as excinfo:
        surface.create_event(title="t", start=START, end=START, description="")
    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "Backend Error"


def test_find_event_by_marker_confirms_description_line(surface, google) -> None:
    marker = "LIVE|202403051000|Tabcdef12|HCHAIN|B0|202403051500"
    google.queue.append(
        httpx.Response(
            200,
            json={
                "items": [
                    _event("g-near", f"MAILALERT_ID: {marker}0\n"),
                    _event("g-hit", f"MAILALERT_ID: {marker}\nMAILALERT_MODE: LIVE"),
                ]
            },
        )
    )

    event = surface.find_event_by_marker(
        start=START - timedelta(hours=48), end=START + timedelta(hours=48), marker=marker
    )

    assert event is not None and event.event_id == "g-hit"
    params = google.requests[0].url.params
    assert params["q"] == marker
    assert params["singleEvents"] == "true"


def test_list_events_follows_pages_and_skips_all_day(surface, google) -> None:
    all_day = {"id": "g-day", "start": {"date": "2024-03-05"}, "end": {"date": "2024-03-06"}}
    google.queue.extend(
        [
            httpx.Response(200, json={"items": [_event("g-1", "a"), all_day], "nextPageToken": "p2"}),
            httpx.Response(200, json={"items": [_event("g-2", "b")]}),
        ]
    )

    events = surface.list_events(start=START, end=START + timedelta(days=1))

    assert [event.event_id for event in events] == ["g-1", "g-2"]
    assert google.requests[1].url.params["pageToken"] == "p2"
    assert events[0].reminders == [0]


def test_transport_errors_become_surface_errors(sleeps) -> None:
    def explode(request: httpx.Request) -> httpx.Response:
        if str(request.url) == GOOGLE_OAUTH_TOKEN_URL:
            return httpx.Response(200, json={"access_token": "tok"})
        raise httpx.ConnectError("no route", request=request)

    surface = GoogleCalendarSurface(
        client_id="c",
        client_secret="s",
        refresh_token="r",
        http_client=httpx.Client(transport=httpx.MockTransport(explode)),
        sleep=sleeps.append,
    )
    with pytest.raises(CalendarSurfaceError):
        surface.event_exists("g-1")


def test_token_refresh_failure_is_surface_error(sleeps) -> None:
    surface = GoogleCalendarSurface(
        client_id="c",
        client_secret="s",
        refresh_token="r",
        http_client=httpx.Client(
            transport=httpx.MockTransport(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))
        ),
        sleep=sleeps.append,
    )
    with pytest.raises(CalendarSurfaceError, match="invalid_grant"):
        surface.event_exists("g-1")


def test_from_settings_requires_credentials(settings) -> None:
    with pytest.raises(ValueError):
        GoogleCalendarSurface.from_settings(settings)
