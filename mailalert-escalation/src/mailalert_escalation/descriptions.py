"""
Titles and descriptions for the calendar events a chain creates.

The description is what the user reads when a reminder pops up, and it is also
how the engine recognises its own events: the first line is the marker line
(``MAILALERT_ID: ...``) and the second names the run mode, which is what the
test-event purge looks for.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from enum import Enum
from typing import Any

from mailalert_contracts import Block, ChainState, RunMode, SourceMeta

from .calendar_surface import marker_line
from .resolver import block_marker, final_marker

ACK_LINE = "Delete this event to acknowledge the mail."
MODE_LINE_PREFIX = "MAILALERT_MODE: "


class EventKind(str, Enum):
    HOURLY = "HOURLY"
    FINAL = "FINAL"


@dataclass(frozen=True)
class EventDraft:
    """Everything needed to create (or find) one calendar event."""

    marker: str
    title: str
    start: datetime
    end: datetime
    description: str
    reminders: list[int]


def mode_line(mode: RunMode | str) -> str:
    return f"{MODE_LINE_PREFIX}{RunMode(mode).value}"


def _format_moment(value: datetime | None, tz: tzinfo) -> str:
    if value is None:
        return ""
    return value.astimezone(tz).strftime("%Y-%m-%d %H:%M %Z")


def build_description(
    *,
    marker: str,
    kind: EventKind,
    source: SourceMeta,
    expires_at: datetime | None,
    reminders: list[int],
    tz: tzinfo,
    expected_sender: str = "",
    inbox: str = "",
    meta: dict[str, Any] | None = None,
) -> str:
    lines = [
        marker_line(marker),
        mode_line(source.mode),
        f"MAILALERT_KIND: {kind.value}",
        f"Expected sender: {expected_sender}",
        f"Inbox: {inbox}",
        f"ThreadId: {source.source_id}",
        f"Subject: {source.subject}",
        f"ReceivedAt: {_format_moment(source.received_at, tz)}",
        f"ExpiresAt: {_format_moment(expires_at, tz)}",
    ]
    if reminders:
        lines.append(f"Reminders (min): {', '.join(str(value) for value in reminders)}")

    merged_meta = {**source.meta, **(meta or {})}
    if merged_meta:
        lines.extend(["", "META:", json.dumps(merged_meta, indent=2, sort_keys=True, default=str)])

    lines.extend(["", "Open mail:", source.link or "", "", ACK_LINE])
    return "\n".join(lines)


class EventComposer:
    """
    Turns chain blocks into event drafts.

    Attributes:
        tz: Zone used for markers and human-readable times.
        event_prefix: Leading tag of every title.
        block_event_minutes: Duration of every created event.
        final_reminder_minutes: Popup reminders on the terminal event.
    """

    def __init__(
        self,
        *,
        tz: tzinfo,
        event_prefix: str = "MAIL ALERT",
        block_event_minutes: int = 5,
        final_reminder_minutes: list[int] | None = None,
        expected_sender: str = "",
        inbox: str = "",
    ) -> None:
        self.tz = tz
        self.event_prefix = event_prefix
        self.block_event_minutes = block_event_minutes
        self.final_reminder_minutes = list(
            final_reminder_minutes if final_reminder_minutes is not None else [40, 30, 20, 10, 0]
        )
        self.expected_sender = expected_sender
        self.inbox = inbox

    @classmethod
    def from_settings(cls, settings) -> "EventComposer":
        return cls(
            tz=settings.tz,
            event_prefix=settings.event_prefix,
            block_event_minutes=settings.block_event_minutes,
            final_reminder_minutes=settings.final_reminder_minutes,
            expected_sender=settings.expected_sender,
            inbox=settings.inbox,
        )

    def title(self, kind: EventKind, source: SourceMeta) -> str:
        label = "Hourly" if kind is EventKind.HOURLY else "Final"
        head = f"[{self.event_prefix}][{source.mode.value}] {label}"
        return f"{head}: {source.subject}" if source.subject else head

    def block_draft(
        self,
        *,
        chain_id: str,
        index: int,
        block: Block,
        source: SourceMeta,
        deadline: datetime,
    ) -> EventDraft:
        marker = block_marker(chain_id, index, block.start, self.tz)
        return EventDraft(
            marker=marker,
            title=self.title(EventKind.HOURLY, source),
            start=block.start,
            end=block.start + timedelta(minutes=self.block_event_minutes),
            description=build_description(
                marker=marker,
                kind=EventKind.HOURLY,
                source=source,
                expires_at=deadline,
                reminders=block.lead_minutes,
                tz=self.tz,
                expected_sender=self.expected_sender,
                inbox=self.inbox,
                meta={"chain_id": chain_id, "block_index": index},
            ),
            reminders=list(block.lead_minutes),
        )

    def final_draft(self, state: ChainState) -> EventDraft:
        marker = final_marker(state.chain_id, state.deadline, self.tz)
        return EventDraft(
            marker=marker,
            title=self.title(EventKind.FINAL, state.source),
            start=state.deadline,
            end=state.deadline + timedelta(minutes=self.block_event_minutes),
            description=build_description(
                marker=marker,
                kind=EventKind.FINAL,
                source=state.source,
                expires_at=state.deadline,
                reminders=self.final_reminder_minutes,
                tz=self.tz,
                expected_sender=self.expected_sender,
                inbox=self.inbox,
                meta={"chain_id": state.chain_id},
            ),
            reminders=list(self.final_reminder_minutes),
        )
