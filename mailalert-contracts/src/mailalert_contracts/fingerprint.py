"""
Stable identifiers for escalation runs.

A fingerprint names one escalation run. LIVE runs are keyed by the minute in
which the mail arrived, so two intakes of the same thread within that minute
collapse onto one chain. TEST runs are keyed by the minute of the invocation,
which lets a tester start a fresh chain every minute against the same mail.
"""
from __future__ import annotations

import hashlib
from datetime import datetime, tzinfo

from .chain import RunMode

CHAIN_SUFFIX = "HCHAIN"
MINUTE_FORMAT = "%Y%m%d%H%M"


def source_digest(source_id: str) -> str:
    """Return a short, filesystem and calendar safe digest of a source id."""
    return hashlib.sha256(source_id.encode("utf-8")).hexdigest()[:8]


def minute_bucket(moment: datetime, tz: tzinfo) -> str:
    """Format ``moment`` as ``YYYYMMDDHHMM`` in the given timezone."""
    return moment.astimezone(tz).strftime(MINUTE_FORMAT)


def build_fingerprint(
    mode: RunMode,
    source_id: str,
    *,
    received_at: datetime,
    now: datetime,
    tz: tzinfo,
) -> str:
    """
    Build the fingerprint for one escalation run.

    Args:
        mode: LIVE keys on ``received_at``; TEST keys on ``now``.
        source_id: Identifier of the mail thread.
        received_at: When the mail arrived.
        now: The current instant.
        tz: Timezone used to render the minute bucket.

    Returns:
        A string of the form ``"{MODE}|{YYYYMMDDHHMM}|T{digest}"``.
    """
    mode = RunMode(mode)
    anchor = now if mode is RunMode.TEST else received_at
    return f"{mode.value}|{minute_bucket(anchor, tz)}|T{source_digest(source_id)}"


def chain_id_for(fingerprint: str) -> str:
    return f"{fingerprint}|{CHAIN_SUFFIX}"


__all__ = [
    "CHAIN_SUFFIX",
    "MINUTE_FORMAT",
    "build_fingerprint",
    "chain_id_for",
    "minute_bucket",
    "source_digest",
]
