from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from mailalert_contracts import Block, ChainState, RunMode, SourceMeta
from mailalert_escalation.descriptions import ACK_LINE, EventComposer, EventKind

UTC = timezone.utc
START = datetime(2024, 3, 5, 15, 0, tzinfo=UTC)
DEADLINE = START + timedelta(hours=19)
CHAIN_ID = "TEST|202403051000|Tabcdef12|HCHAIN"


def _source(**overrides) -> SourceMeta:
    data = dict(
        source_id="thread-1",
        subject="Contract expires",
        link="https://mail.example.com/t/thread-1",
        received_at=START - timedelta(hours=5),
        mode=RunMode.TEST,
    )
    data.update(overrides)
    return SourceMeta(**data)


def _composer() -> EventComposer:
    return EventComposer(
        tz=UTC,
        event_prefix="MAIL ALERT",
        block_event_minutes=5,
        expected_sender="billing@example.com",
        inbox="me@example.com",
    )


def test_block_draft_layout() -> None:
    draft = _composer().block_draft(
        chain_id=CHAIN_ID,
        index=1,
        block=Block(start=START, lead_minutes=[60, 0]),
        source=_source(),
        deadline=DEADLINE,
    )

    lines = draft.description.splitlines()
    assert lines[0] == f"MAILALERT_ID: {CHAIN_ID}|B1|202403051500"
    assert lines[1] == "MAILALERT_MODE: TEST"
    assert lines[2] == "MAILALERT_KIND: HOURLY"
    assert "Expected sender: billing@example.com" in lines
    assert "Reminders (min): 60, 0" in lines
    assert lines[-1] == ACK_LINE
    assert "https://mail.example.com/t/thread-1" in lines
    assert draft.title == "[MAIL ALERT][TEST] Hourly: Contract expires"
    assert draft.end - draft.start == timedelta(minutes=5)
    assert draft.reminders == [60, 0]


def test_meta_block_is_json() -> None:
    draft = _composer().block_draft(
        chain_id=CHAIN_ID,
        index=0,
        block=Block(start=START, lead_minutes=[0]),
        source=_source(meta={"label": "billing"}),
        deadline=DEADLINE,
    )

    text = draft.description
    meta_json = text.split("META:\n", 1)[1].split("\n\nOpen mail:", 1)[0]
    assert json.loads(meta_json) == {"block_index": 0, "chain_id": CHAIN_ID, "label": "billing"}


def test_final_draft_sits_at_deadline() -> None:
    state = ChainState(
        chain_id=CHAIN_ID,
        fingerprint=CHAIN_ID.rsplit("|", 1)[0],
        source=_source(subject="", deadline_at=DEADLINE),
        blocks=[Block(start=START, lead_minutes=[0])],
    )

    draft = _composer().final_draft(state)

    assert draft.start == DEADLINE
    assert draft.reminders == [40, 30, 20, 10, 0]
    assert draft.marker == f"{CHAIN_ID}|FINAL|202403061000"
    assert draft.title == "[MAIL ALERT][TEST] Final"
    assert "MAILALERT_KIND: FINAL" in draft.description.splitlines()


def test_kind_values() -> None:
    assert EventKind("HOURLY") is EventKind.HOURLY
