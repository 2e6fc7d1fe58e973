"""
Shared data contracts for the mail alert escalation engine.

The models here are the single source of truth for what a chain looks like on
disk and over HTTP, what a notification carries, and how escalation runs are
fingerprinted. They are pydantic based so every boundary validates its input.
"""
from .chain import (
    Block,
    ChainState,
    ChainStatus,
    RunMode,
    SourceMeta,
)
from .fingerprint import (
    CHAIN_SUFFIX,
    MINUTE_FORMAT,
    build_fingerprint,
    chain_id_for,
    minute_bucket,
    source_digest,
)
from .notification import (
    ChainOutcome,
    IngestResult,
    IngestStatus,
    Notification,
    TickReport,
)

__version__ = "0.1.0"

__all__ = [
    "Block",
    "ChainState",
    "ChainStatus",
    "RunMode",
    "SourceMeta",
    "CHAIN_SUFFIX",
    "MINUTE_FORMAT",
    "build_fingerprint",
    "chain_id_for",
    "minute_bucket",
    "source_digest",
    "ChainOutcome",
    "IngestResult",
    "IngestStatus",
    "Notification",
    "TickReport",
]
