"""
Find-before-create for calendar events.

Every event the engine creates carries a marker derived from the chain id, the
block index (or ``FINAL``) and the event's start minute. Before creating an
event the writer searches a window around its start for that marker and reuses
what it finds, so a run that crashed after creating an event but before saving
chain state does not produce a duplicate on the next attempt.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, tzinfo
from typing import TYPE_CHECKING

from mailalert_contracts import minute_bucket

from .calendar_surface import CalendarSurface

if TYPE_CHECKING:
    from .descriptions import EventDraft

LOGGER = logging.getLogger(__name__)


def block_marker(chain_id: str, index: int, start: datetime, tz: tzinfo) -> str:
    return f"{chain_id}|B{index}|{minute_bucket(start, tz)}"


def final_marker(chain_id: str, deadline: datetime, tz: tzinfo) -> str:
    return f"{chain_id}|FINAL|{minute_bucket(deadline, tz)}"


class IdempotentEventWriter:
    """Create calendar events at most once per marker."""

    def __init__(self, calendar: CalendarSurface, *, search_window: timedelta = timedelta(hours=48)):
        self.calendar = calendar
        self.search_window = search_window

    def find(self, marker: str, around: datetime):
        return self.calendar.find_event_by_marker(
            start=around - self.search_window,
            end=around + self.search_window,
            marker=marker,
        )

    def ensure_event(self, draft: "EventDraft") -> str:
        """Return the id of the event for ``draft.marker``, creating it if needed."""
        existing = self.find(draft.marker, draft.start)
        if existing is not None:
            LOGGER.info("Reusing event %s for marker %s", existing.event_id, draft.marker)
            if existing.reminders != draft.reminders:
                self.calendar.set_reminders(existing.event_id, draft.reminders)
            return existing.event_id

        event_id = self.calendar.create_event(
            title=draft.title,
            start=draft.start,
            end=draft.end,
            description=draft.description,
        )
        self.calendar.set_reminders(event_id, draft.reminders)
        LOGGER.info("Created event %s for marker %s", event_id, draft.marker)
        return event_id
