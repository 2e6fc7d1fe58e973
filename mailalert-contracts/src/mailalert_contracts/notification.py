"""
Inbound notification payloads and the reports returned by the escalation engine.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from .chain import RunMode


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Notification(BaseModel):
    """A time-sensitive message handed to the engine by the mail intake.

    ``source_id`` is the stable identifier of the mail thread; everything else
    is descriptive and only ends up in calendar event text.
    """

    model_config = ConfigDict(extra="ignore")

    source_id: str = Field(..., min_length=1, description="Mail thread identifier.")
    subject: str = Field(default="", description="Subject line shown in event titles.")
    received_at: AwareDatetime = Field(..., description="When the mail arrived.")
    link: str | None = Field(default=None, description="Deep link back to the mail.")


class IngestStatus(str, Enum):
    """Result of handing a notification to the engine."""

    STARTED = "started"
    EXISTS = "exists"
    SKIPPED = "skipped"


class IngestResult(BaseModel):
    """Outcome of one ingest call."""

    fingerprint: str
    chain_id: str
    mode: RunMode
    status: IngestStatus
    block_count: int = Field(default=0, ge=0)
    deadline: AwareDatetime


class ChainOutcome(str, Enum):
    """What a single tick did to one chain.

    Attributes:
        WAITING: The current block has not started yet; nothing changed.
        ADVANCED: The next block event was created.
        FINALIZED: The terminal event was created and cleanup is pending.
        COMPLETED: Cleanup finished and the chain record was removed.
        CANCELLED: The live block event was deleted by the user.
        ABANDONED: The terminal event could not be created; the chain was dropped.
        DISCARDED: The persisted record could not be parsed and was removed.
        FAILED: A calendar call failed; the chain is retried on the next tick.
    """

    WAITING = "waiting"
    ADVANCED = "advanced"
    FINALIZED = "finalized"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ABANDONED = "abandoned"
    DISCARDED = "discarded"
    FAILED = "failed"


class TickReport(BaseModel):
    """Summary of one tick across every persisted chain."""

    run_id: str
    started_at: AwareDatetime = Field(default_factory=_utc_now)
    outcomes: dict[str, ChainOutcome] = Field(default_factory=dict)
    remaining_chains: int = Field(default=0, ge=0)

    def count(self, outcome: ChainOutcome) -> int:
        return sum(1 for value in self.outcomes.values() if value == outcome)

    def summary(self) -> dict[str, int]:
        """Return non-zero outcome counts keyed by outcome value."""
        totals: dict[str, int] = {}
        for value in self.outcomes.values():
            totals[value.value] = totals.get(value.value, 0) + 1
        return totals


__all__ = [
    "ChainOutcome",
    "IngestResult",
    "IngestStatus",
    "Notification",
    "TickReport",
]
