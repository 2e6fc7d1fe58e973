"""Tests for notification module."""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from mailalert_contracts.notification import (
    ChainOutcome,
    Notification,
    TickReport,
)


class TestNotification:
    """Tests for Notification model."""

    def test_minimal_payload(self):
        note = Notification(
            source_id="thread-9",
            received_at=datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc),
        )
        assert note.subject == ""
        assert note.link is None

    def test_parses_iso_strings(self):
        note = Notification.model_validate(
            {"source_id": "t", "received_at": "2024-01-01T08:00:00+01:00", "extra": 1}
        )
        assert note.received_at.utcoffset().total_seconds() == 3600

    def test_rejects_empty_source(self):
        with pytest.raises(ValidationError):
            Notification(source_id="", received_at=datetime(2024, 1, 1, tzinfo=timezone.utc))


class TestTickReport:
    """Tests for TickReport model."""

    def test_counts_by_outcome(self):
        report = TickReport(
            run_id="abcd1234",
            outcomes={
                "a": ChainOutcome.ADVANCED,
                "b": ChainOutcome.WAITING,
                "c": ChainOutcome.WAITING,
            },
        )
        assert report.count(ChainOutcome.WAITING) == 2
        assert report.count(ChainOutcome.FAILED) == 0
        assert report.summary() == {"advanced": 1, "waiting": 2}
