"""Tests for fingerprint module."""
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from mailalert_contracts.chain import RunMode
from mailalert_contracts.fingerprint import (
    build_fingerprint,
    chain_id_for,
    minute_bucket,
    source_digest,
)

RECEIVED = datetime(2024, 3, 5, 9, 30, 12, tzinfo=timezone.utc)
NOW = datetime(2024, 3, 5, 11, 45, 59, tzinfo=timezone.utc)


class TestBuildFingerprint:
    """Tests for build_fingerprint."""

    def test_live_uses_received_minute(self):
        fp = build_fingerprint(
            RunMode.LIVE, "thread-1", received_at=RECEIVED, now=NOW, tz=timezone.utc
        )
        assert fp == f"LIVE|202403050930|T{source_digest('thread-1')}"

    def test_test_mode_uses_now(self):
        fp = build_fingerprint(
            RunMode.TEST, "thread-1", received_at=RECEIVED, now=NOW, tz=timezone.utc
        )
        assert fp.startswith("TEST|202403051145|T")

    def test_same_minute_collides(self):
        """Two intakes of one thread in the same minute share a fingerprint."""
        first = build_fingerprint(
            RunMode.LIVE, "thread-1", received_at=RECEIVED, now=NOW, tz=timezone.utc
        )
        second = build_fingerprint(
            RunMode.LIVE,
            "thread-1",
            received_at=RECEIVED + timedelta(seconds=40),
            now=NOW + timedelta(minutes=30),
            tz=timezone.utc,
        )
        assert first == second

    def test_next_minute_differs(self):
        first = build_fingerprint(
            RunMode.LIVE, "thread-1", received_at=RECEIVED, now=NOW, tz=timezone.utc
        )
        second = build_fingerprint(
            RunMode.LIVE,
            "thread-1",
            received_at=RECEIVED + timedelta(minutes=1),
            now=NOW,
            tz=timezone.utc,
        )
        assert first != second

    def test_different_sources_differ(self):
        first = build_fingerprint(
            RunMode.LIVE, "thread-1", received_at=RECEIVED, now=NOW, tz=timezone.utc
        )
        second = build_fingerprint(
            RunMode.LIVE, "thread-2", received_at=RECEIVED, now=NOW, tz=timezone.utc
        )
        assert first != second

    def test_accepts_string_mode(self):
        fp = build_fingerprint("LIVE", "t", received_at=RECEIVED, now=NOW, tz=timezone.utc)
        assert fp.startswith("LIVE|")


def test_minute_bucket_renders_in_local_zone():
    assert minute_bucket(RECEIVED, ZoneInfo("Europe/Berlin")) == "202403051030"


def test_source_digest_is_short_hex():
    digest = source_digest("18e2f0c1a9b7d6e5")
    assert len(digest) == 8
    int(digest, 16)


def test_chain_id_appends_suffix():
    assert chain_id_for("LIVE|202403050930|Tdeadbeef") == "LIVE|202403050930|Tdeadbeef|HCHAIN"
