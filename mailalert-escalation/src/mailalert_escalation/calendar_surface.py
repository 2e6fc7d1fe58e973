"""
The calendar surface the escalation engine writes reminders to.

``CalendarSurface`` is the narrow interface the chain driver depends on:
create an event, attach popup reminders, find an event by the marker embedded
in its description, check whether an event still exists, delete it and list a
time range. ``InMemoryCalendarSurface`` backs mock mode and the test-suite; the
Google Calendar adapter lives in ``google_calendar``.
"""
from __future__ import annotations

import abc
import itertools
import logging
from datetime import datetime

from pydantic import AwareDatetime, BaseModel, Field

LOGGER = logging.getLogger(__name__)

MARKER_LINE_PREFIX = "MAILALERT_ID: "


class CalendarSurfaceError(RuntimeError):
    """A calendar call failed; the caller may retry on a later invocation."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        self.message = message
        if status_code is None:
            super().__init__(message)
        else:
            super().__init__(f"Calendar request failed ({status_code}): {message}")


class CalendarEvent(BaseModel):
    """A calendar event as seen by the engine."""

    event_id: str
    title: str
    start: AwareDatetime
    end: AwareDatetime
    description: str = ""
    reminders: list[int] = Field(default_factory=list)


def marker_line(marker: str) -> str:
    return f"{MARKER_LINE_PREFIX}{marker}"


def description_has_marker(description: str | None, marker: str) -> bool:
    """True if one line of ``description`` is exactly the marker line."""
    if not description:
        return False
    expected = marker_line(marker)
    return any(line.strip() == expected for line in description.splitlines())


class CalendarSurface(abc.ABC):
    """Abstract calendar backend."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short backend name used in logs."""

    @abc.abstractmethod
    def create_event(
        self, *, title: str, start: datetime, end: datetime, description: str
    ) -> str:
        """Create a timed event and return its id."""

    @abc.abstractmethod
    def set_reminders(self, event_id: str, minutes: list[int]) -> None:
        """Replace the event's reminders with one popup per entry of ``minutes``."""

    @abc.abstractmethod
    def find_event_by_marker(
        self, *, start: datetime, end: datetime, marker: str
    ) -> CalendarEvent | None:
        """Return the first event in ``[start, end]`` whose description carries ``marker``."""

    @abc.abstractmethod
    def event_exists(self, event_id: str) -> bool:
        """True unless the event was deleted."""

    @abc.abstractmethod
    def delete_event(self, event_id: str) -> bool:
        """Delete an event. Returns False when it was already gone."""

    @abc.abstractmethod
    def list_events(self, *, start: datetime, end: datetime) -> list[CalendarEvent]:
        """Return every event overlapping ``[start, end]``."""

    def close(self) -> None:
        """Release any held resources."""


class InMemoryCalendarSurface(CalendarSurface):
    """Process-local calendar used in mock mode and tests."""

    def __init__(self) -> None:
        self.events: dict[str, CalendarEvent] = {}
        self._ids = itertools.count(1)

    @property
    def name(self) -> str:
        return "memory"

    def create_event(
        self, *, title: str, start: datetime, end: datetime, description: str
    ) -> str:
        event_id = f"mem-{next(self._ids)}"
        self.events[event_id] = CalendarEvent(
            event_id=event_id,
            title=title,
            start=start,
            end=end,
            description=description,
        )
        LOGGER.debug("Created in-memory event %s at %s", event_id, start.isoformat())
        return event_id

    def set_reminders(self, event_id: str, minutes: list[int]) -> None:
        event = self.events.get(event_id)
        if event is None:
            raise CalendarSurfaceError(f"event {event_id} not found", status_code=404)
        self.events[event_id] = event.model_copy(update={"reminders": list(minutes)})

    def find_event_by_marker(
        self, *, start: datetime, end: datetime, marker: str
    ) -> CalendarEvent | None:
        for event in self.list_events(start=start, end=end):
            if description_has_marker(event.description, marker):
                return event
        return None

    def event_exists(self, event_id: str) -> bool:
        return event_id in self.events

    def delete_event(self, event_id: str) -> bool:
        return self.events.pop(event_id, None) is not None

    def list_events(self, *, start: datetime, end: datetime) -> list[CalendarEvent]:
        matches = [
            event for event in self.events.values() if event.start <= end and event.end >= start
        ]
        return sorted(matches, key=lambda event: event.start)
