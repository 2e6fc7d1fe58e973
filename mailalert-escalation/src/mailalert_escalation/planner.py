"""
Signal planning and block packing.

``plan_signals`` turns an escalation window into the ordered list of instants at
which a reminder should fire, skipping the quiet window. ``pack_blocks`` groups
those instants into calendar-event sized blocks. Both are pure.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Sequence

from mailalert_contracts import Block

from .quiet import QuietWindowPolicy

END_SIGNAL_LEAD = timedelta(hours=1)


def plan_signals(
    window_start: datetime,
    deadline: datetime,
    policy: QuietWindowPolicy,
    interval_hours: int = 1,
) -> list[datetime]:
    """
    Compute the signal instants for one escalation window.

    The first candidate is one hour after ``window_start`` rounded up to the
    next full local hour; candidates then advance by ``interval_hours`` up to
    and including ``deadline - 1h``. Quiet candidates are dropped. The closing
    ``deadline - 1h`` instant is appended when it is not quiet and not already
    the last signal.

    Returns:
        Strictly increasing UTC instants. An empty list means the window is too
        short (or entirely quiet) and no escalation is needed.
    """
    if interval_hours < 1:
        raise ValueError("interval_hours must be at least 1")
    if window_start.tzinfo is None or deadline.tzinfo is None:
        raise ValueError("window_start and deadline must be timezone-aware")

    step = timedelta(hours=interval_hours)
    end_signal = deadline.astimezone(timezone.utc) - END_SIGNAL_LEAD
    cursor = policy.round_up(window_start + timedelta(hours=1), 60).astimezone(timezone.utc)

    signals: list[datetime] = []
    while cursor <= end_signal:
        if not policy.is_quiet(cursor):
            signals.append(cursor)
        cursor += step

    if not policy.is_quiet(end_signal) and (not signals or signals[-1] != end_signal):
        signals.append(end_signal)
    return signals


def pack_blocks(signals: Sequence[datetime], max_signals_per_block: int) -> list[Block]:
    """Group ``signals`` into consecutive blocks of at most ``max_signals_per_block``."""
    if max_signals_per_block < 1:
        raise ValueError("max_signals_per_block must be at least 1")
    blocks: list[Block] = []
    for offset in range(0, len(signals), max_signals_per_block):
        chunk = signals[offset : offset + max_signals_per_block]
        start = chunk[-1]
        leads = [round((start - signal).total_seconds() / 60) for signal in chunk]
        blocks.append(Block(start=start, lead_minutes=leads))
    return blocks
