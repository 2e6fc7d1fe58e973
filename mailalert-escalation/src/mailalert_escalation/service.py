"""
This module encapsulates the business operations of the escalation service.

``EscalationService`` wires the chain driver to its collaborators (state store,
calendar, run lock, audit stream, scheduler) and exposes the operations the
HTTP API, the CLI and the scheduler loop call: ingesting a notification,
running a tick, inspecting chains and purging test events. Every mutating
operation runs under the run lock, gets a short run id for its log lines and
leaves one audit entry behind.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, TypeVar

import redis

from mailalert_contracts import (
    ChainState,
    IngestResult,
    IngestStatus,
    Notification,
    RunMode,
    SourceMeta,
    TickReport,
    build_fingerprint,
    chain_id_for,
)

from .audit import AuditLog
from .calendar_surface import CalendarSurface, InMemoryCalendarSurface
from .config import EscalationSettings
from .descriptions import EventComposer, mode_line
from .driver import ChainDriver, new_run_id
from .google_calendar import GoogleCalendarSurface
from .lock import RunLock, RunLockBusy
from .logging_utils import run_logger
from .mock import get_mock_calendar, get_mock_redis_client
from .quiet import QuietWindowPolicy
from .resolver import IdempotentEventWriter
from .scheduler import TICK_HANDLER, RedisRecurringScheduler, TriggerLifecycle
from .store import ChainStateStore, RedisKeyValueStore, SqliteKeyValueStore

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SYSTEM_MODE = "SYSTEM"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_calendar(settings: EscalationSettings) -> CalendarSurface:
    if settings.mock_mode:
        return get_mock_calendar()
    if settings.calendar_backend == "memory":
        return InMemoryCalendarSurface()
    return GoogleCalendarSurface.from_settings(settings)


def build_redis_client(settings: EscalationSettings) -> Any:
    if settings.mock_mode:
        return get_mock_redis_client()
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


class EscalationService:
    """
    Entry point for every engine operation.

    Attributes:
        settings: Service configuration.
        driver: The chain driver.
        scheduler: Recurring handler registry shared with the scheduler loop.
        lock: Run lock serializing mutating operations.
        audit: Audit stream writer.
    """

    def __init__(
        self,
        *,
        settings: EscalationSettings,
        driver: ChainDriver,
        scheduler: RedisRecurringScheduler,
        lock: RunLock,
        audit: AuditLog,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.settings = settings
        self.driver = driver
        self.scheduler = scheduler
        self.lock = lock
        self.audit = audit
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: EscalationSettings,
        *,
        redis_client: Any = None,
        calendar: CalendarSurface | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> "EscalationService":
        """Build a fully wired service from settings, with optional overrides for tests."""
        client = redis_client if redis_client is not None else build_redis_client(settings)
        calendar = calendar if calendar is not None else build_calendar(settings)

        if settings.state_backend == "sqlite":
            backend = SqliteKeyValueStore(settings.database_path)
            backend.init_schema()
        else:
            backend = RedisKeyValueStore(client)
        store = ChainStateStore(backend, key_prefix=settings.key_prefix)

        scheduler = RedisRecurringScheduler(client, key=settings.scheduler_key, clock=clock)
        trigger = TriggerLifecycle(
            scheduler, store, handler=TICK_HANDLER, every_hours=settings.tick_every_hours
        )
        driver = ChainDriver(
            store=store,
            calendar=calendar,
            composer=EventComposer.from_settings(settings),
            writer=IdempotentEventWriter(
                calendar, search_window=timedelta(hours=settings.marker_search_hours)
            ),
            policy=QuietWindowPolicy.from_settings(settings),
            trigger=trigger,
            interval_hours=settings.interval_hours,
            max_signals_per_block=settings.max_signals_per_block,
            clock=clock,
        )
        lock = RunLock(
            client,
            name=settings.lock_name,
            blocking_timeout=settings.lock_timeout_seconds,
            ttl=settings.lock_ttl_seconds,
        )
        audit = AuditLog(
            client,
            stream=settings.audit_stream,
            max_attempts=settings.audit_max_attempts,
            base_delay=settings.audit_base_delay_seconds,
        )
        return cls(
            settings=settings,
            driver=driver,
            scheduler=scheduler,
            lock=lock,
            audit=audit,
            clock=clock,
        )

    @property
    def store(self) -> ChainStateStore:
        return self.driver.store

    @property
    def calendar(self) -> CalendarSurface:
        return self.driver.calendar

    def close(self) -> None:
        self.calendar.close()

    def _locked(self, run_id: str, mode: str, action: str, operation: Callable[[], T]) -> Optional[T]:
        log = run_logger(LOGGER, run_id)
        try:
            with self.lock.hold():
                return operation()
        except RunLockBusy as exc:
            log.warning("Skipping %s: %s", action, exc)
            self.audit.record(run_id=run_id, mode=mode, status="LOCK_BUSY", message=action)
            return None
        except Exception as exc:
            log.exception("%s failed", action)
            self.audit.record(
                run_id=run_id, mode=mode, status="ERR_FATAL", message=f"{action}: {exc}"
            )
            raise

    def ingest(self, notification: Notification, mode: RunMode = RunMode.LIVE) -> Optional[IngestResult]:
        """
        Start (or find) the escalation chain for a notification.

        The deadline is ``received_at`` plus the active window; TEST runs
        pretend the mail arrived now. The escalation window opens a few minutes
        after intake. Returns None when the run lock is busy.
        """
        mode = RunMode(mode)
        run_id = new_run_id()
        now = self._clock()
        received_at = now if mode is RunMode.TEST else notification.received_at
        deadline = received_at + timedelta(hours=self.settings.active_window_hours)
        window_start = now + timedelta(minutes=self.settings.window_start_offset_minutes)
        fingerprint = build_fingerprint(
            mode,
            notification.source_id,
            received_at=notification.received_at,
            now=now,
            tz=self.settings.tz,
        )
        chain_id = chain_id_for(fingerprint)
        source = SourceMeta(
            source_id=notification.source_id,
            subject=notification.subject,
            link=notification.link,
            received_at=received_at,
            mode=mode,
        )

        def _start() -> IngestResult:
            if self.store.get(chain_id) is not None:
                status, blocks = IngestStatus.EXISTS, 0
            else:
                state = self.driver.start_chain(fingerprint, source, window_start, deadline)
                if state is None:
                    status, blocks = IngestStatus.SKIPPED, 0
                else:
                    status, blocks = IngestStatus.STARTED, len(state.blocks)
            return IngestResult(
                fingerprint=fingerprint,
                chain_id=chain_id,
                mode=mode,
                status=status,
                block_count=blocks,
                deadline=deadline,
            )

        result = self._locked(run_id, mode.value, "ingest", _start)
        if result is not None:
            run_logger(LOGGER, run_id).info(
                "Ingest %s -> %s (%d blocks)", notification.source_id, result.status.value, result.block_count
            )
            self.audit.record(
                run_id=run_id,
                mode=mode.value,
                status=f"CHAIN_{result.status.value.upper()}",
                message=notification.subject,
                payload=result.model_dump(mode="json"),
            )
        return result

    def run_tick(self) -> Optional[TickReport]:
        """Run one tick under the run lock. Returns None when the lock is busy."""
        run_id = new_run_id()
        report = self._locked(run_id, SYSTEM_MODE, "tick", lambda: self.driver.tick(run_id))
        if report is not None:
            self.audit.record(
                run_id=run_id,
                mode=SYSTEM_MODE,
                status="TICK",
                message=f"{len(report.outcomes)} chains",
                payload={"outcomes": report.summary(), "remaining": report.remaining_chains},
            )
        return report

    def list_chains(self) -> list[ChainState]:
        return self.store.list_all()

    def get_chain(self, chain_id: str) -> Optional[ChainState]:
        return self.store.get(chain_id)

    def purge_test_events(self, window_days: int = 180) -> Optional[int]:
        """
        Delete every TEST-mode event within ``window_days`` of now.

        Runs under the run lock so a concurrent tick never sees half of a
        purge. Returns the number of deleted events, or None when the run lock
        is busy.
        """
        run_id = new_run_id()
        mode = RunMode.TEST.value
        deleted = self._locked(run_id, mode, "purge", lambda: self._purge(window_days))
        if deleted is not None:
            run_logger(LOGGER, run_id).info("Purged %d test events", deleted)
            self.audit.record(run_id=run_id, mode=mode, status="PURGE", payload={"deleted": deleted})
        return deleted

    def _purge(self, window_days: int) -> int:
        now = self._clock()
        span = timedelta(days=window_days)
        marker = mode_line(RunMode.TEST)
        deleted = 0
        for event in self.calendar.list_events(start=now - span, end=now + span):
            lines = {line.strip() for line in event.description.splitlines()}
            if marker in lines and self.calendar.delete_event(event.event_id):
                deleted += 1
        return deleted
