"""
Pydantic models describing one escalation chain and the blocks it is made of.

A chain is the persisted record that the escalation driver reads and rewrites
on every tick. It carries the full block plan computed at start time, the index
of the block whose calendar event is currently live, and the id of the event
that still has to be removed on the next pass. These models are shared by the
driver, the state store and the HTTP surface so that every component agrees on
the same JSON shape.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator, model_validator


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RunMode(str, Enum):
    """Whether a chain was started from real mail or from a test invocation."""

    LIVE = "LIVE"
    TEST = "TEST"


class ChainStatus(str, Enum):
    """Lifecycle states of a persisted chain.

    Attributes:
        ACTIVE: A block event is live and later blocks may still be created.
        FINAL_CLEANUP: The terminal event exists; the next tick removes the
            last block event and then the chain record itself.
    """

    ACTIVE = "active"
    FINAL_CLEANUP = "final_cleanup"


class Block(BaseModel):
    """A group of consecutive signals collapsed into one calendar event.

    The event starts at ``start`` (the last signal of the group) and carries one
    popup reminder per entry of ``lead_minutes``, each expressed as minutes
    before ``start``.
    """

    model_config = ConfigDict(frozen=True)

    start: AwareDatetime
    lead_minutes: list[int] = Field(..., min_length=1)

    @field_validator("lead_minutes")
    @classmethod
    def _check_leads(cls, value: list[int]) -> list[int]:
        if any(minutes < 0 for minutes in value):
            raise ValueError("lead_minutes must be non-negative")
        if any(later > earlier for earlier, later in zip(value, value[1:])):
            raise ValueError("lead_minutes must be non-increasing")
        if value[-1] != 0:
            raise ValueError("lead_minutes must end with 0")
        return value

    def signals(self) -> list[datetime]:
        """Reconstruct the signal instants this block stands for."""
        return [self.start - timedelta(minutes=minutes) for minutes in self.lead_minutes]


class SourceMeta(BaseModel):
    """Descriptive data about the notification that started a chain."""

    model_config = ConfigDict(extra="ignore")

    source_id: str = Field(..., min_length=1)
    subject: str = ""
    link: str | None = None
    received_at: AwareDatetime
    deadline_at: AwareDatetime | None = None
    mode: RunMode = RunMode.LIVE
    meta: dict[str, Any] = Field(default_factory=dict)


class ChainState(BaseModel):
    """Durable drive state for one escalation run.

    Replaced as a whole on every persist; the chain driver is its only writer.
    The deadline is carried once, on ``source.deadline_at``.
    """

    chain_id: str = Field(..., min_length=1)
    fingerprint: str = Field(..., min_length=1)
    source: SourceMeta
    blocks: list[Block] = Field(..., min_length=1)
    current_index: int = Field(default=0, ge=0)
    current_event_id: str | None = None
    pending_delete_event_id: str | None = None
    status: ChainStatus = ChainStatus.ACTIVE
    created_at: AwareDatetime = Field(default_factory=_utc_now)
    updated_at: AwareDatetime = Field(default_factory=_utc_now)

    @model_validator(mode="after")
    def _check_deadline(self) -> "ChainState":
        if self.source.deadline_at is None:
            raise ValueError("source.deadline_at is required on a chain")
        return self

    @model_validator(mode="after")
    def _check_index(self) -> "ChainState":
        if self.current_index >= len(self.blocks):
            raise ValueError(
                f"current_index {self.current_index} out of range for {len(self.blocks)} blocks"
            )
        return self

    @property
    def deadline(self) -> datetime:
        return self.source.deadline_at

    @property
    def current_block(self) -> Block:
        return self.blocks[self.current_index]

    @property
    def has_next_block(self) -> bool:
        return self.current_index + 1 < len(self.blocks)


__all__ = [
    "Block",
    "ChainState",
    "ChainStatus",
    "RunMode",
    "SourceMeta",
]
