"""Request and response bodies of the HTTP API."""
from __future__ import annotations

from pydantic import BaseModel, Field

from mailalert_contracts import ChainState, Notification, RunMode


class IngestRequest(Notification):
    """A notification plus the mode it should be escalated in."""

    mode: RunMode = RunMode.LIVE

    def to_notification(self) -> Notification:
        return Notification.model_validate(self.model_dump(exclude={"mode"}))


class ChainListResponse(BaseModel):
    chains: list[ChainState]
    total: int = Field(default=0, ge=0)


class PurgeResponse(BaseModel):
    deleted: int = Field(..., ge=0)
    window_days: int
