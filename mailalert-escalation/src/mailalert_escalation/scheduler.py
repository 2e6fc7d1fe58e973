"""
Recurring tick scheduling.

The chain driver only moves forward when something calls ``tick``. This module
keeps that "something" alive exactly as long as there is work: the trigger
lifecycle registers the hourly ``process_chains`` handler when a chain starts
and cancels it once the last chain is gone. Registrations live in a redis hash
so that every process sharing the redis instance sees the same schedule, and a
``SchedulerLoop`` task inside the HTTP service runs whatever is due.
"""
from __future__ import annotations

import abc
import asyncio
import json
import logging
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional

from .store import ChainStateStore

LOGGER = logging.getLogger(__name__)

TICK_HANDLER = "process_chains"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RecurringScheduler(abc.ABC):
    """Registry of named handlers that should run every N hours."""

    @abc.abstractmethod
    def ensure_recurring(self, handler: str, every_hours: int) -> bool:
        """Register ``handler`` unless it already is. Returns True if it was added."""

    @abc.abstractmethod
    def list_recurring(self) -> list[str]:
        """Names of the registered handlers."""

    @abc.abstractmethod
    def cancel_recurring(self, handler: str) -> bool:
        """Unregister ``handler``. Returns False if it was not registered."""

    @abc.abstractmethod
    def due_handlers(self, now: datetime) -> list[str]:
        """Handlers whose next run time is at or before ``now``."""

    @abc.abstractmethod
    def mark_ran(self, handler: str, now: datetime) -> None:
        """Push ``handler``'s next run time one period past ``now``."""


class RedisRecurringScheduler(RecurringScheduler):
    """
    Recurring handlers stored as one redis hash.

    Each field is a handler name; each value is a JSON object with the period
    in hours and the next due time.
    """

    def __init__(
        self,
        client: Any,
        *,
        key: str = "mailalert:scheduler",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._client = client
        self.key = key
        self._clock = clock

    def _entry(self, handler: str) -> Optional[dict[str, Any]]:
        raw = self._client.hget(self.key, handler)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            LOGGER.warning("Dropping unreadable schedule entry for %s", handler)
            self._client.hdel(self.key, handler)
            return None

    def ensure_recurring(self, handler: str, every_hours: int) -> bool:
        if every_hours < 1:
            raise ValueError("every_hours must be at least 1")
        next_run = self._clock() + timedelta(hours=every_hours)
        value = json.dumps({"every_hours": every_hours, "next_run_at": next_run.isoformat()})
        added = bool(self._client.hsetnx(self.key, handler, value))
        if added:
            LOGGER.info("Scheduled %s every %dh (next run %s)", handler, every_hours, next_run.isoformat())
        return added

    def list_recurring(self) -> list[str]:
        return sorted(self._client.hkeys(self.key))

    def cancel_recurring(self, handler: str) -> bool:
        removed = bool(self._client.hdel(self.key, handler))
        if removed:
            LOGGER.info("Cancelled recurring handler %s", handler)
        return removed

    def due_handlers(self, now: datetime) -> list[str]:
        due: list[str] = []
        for handler in self.list_recurring():
            entry = self._entry(handler)
            if entry is None:
                continue
            next_run_at = datetime.fromisoformat(entry["next_run_at"])
            if next_run_at <= now:
                due.append(handler)
        return due

    def mark_ran(self, handler: str, now: datetime) -> None:
        entry = self._entry(handler)
        if entry is None:
            # Cancelled while running.
            return
        every_hours = int(entry.get("every_hours", 1))
        entry["next_run_at"] = (now + timedelta(hours=every_hours)).isoformat()
        self._client.hset(self.key, handler, json.dumps(entry))


class TriggerLifecycle:
    """Keep the tick handler registered exactly while chains exist."""

    def __init__(
        self,
        scheduler: RecurringScheduler,
        store: ChainStateStore,
        *,
        handler: str = TICK_HANDLER,
        every_hours: int = 1,
    ) -> None:
        self.scheduler = scheduler
        self.store = store
        self.handler = handler
        self.every_hours = every_hours

    def is_armed(self) -> bool:
        return self.handler in self.scheduler.list_recurring()

    def ensure(self) -> None:
        if not self.is_armed():
            self.scheduler.ensure_recurring(self.handler, self.every_hours)

    def cleanup(self) -> None:
        if self.store.count() == 0 and self.is_armed():
            self.scheduler.cancel_recurring(self.handler)


class SchedulerLoop:
    """
    Background task that runs due handlers.

    Handlers are plain callables executed in a worker thread so blocking calendar
    and redis I/O does not stall the event loop. A failing handler is logged and
    rescheduled for its next period.
    """

    def __init__(
        self,
        scheduler: RecurringScheduler,
        handlers: Mapping[str, Callable[[], Any]],
        *,
        poll_seconds: float = 60.0,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.scheduler = scheduler
        self.handlers = dict(handlers)
        self.poll_seconds = max(0.1, poll_seconds)
        self._clock = clock
        self._task: Optional[asyncio.Task[None]] = None

    async def start(self) -> None:
        if self._task:
            return
        LOGGER.info("Scheduler loop starting (poll=%.1fs)", self.poll_seconds)
        self._task = asyncio.create_task(self._loop())

    async def shutdown(self) -> None:
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def run_pending(self) -> list[str]:
        """Run every due handler once and return the names that ran."""
        now = self._clock()
        ran: list[str] = []
        for name in self.scheduler.due_handlers(now):
            callback = self.handlers.get(name)
            if callback is None:
                LOGGER.warning("No callback bound for scheduled handler %s", name)
                continue
            try:
                await asyncio.to_thread(callback)
            except Exception:
                LOGGER.exception("Scheduled handler %s failed", name)
            self.scheduler.mark_ran(name, now)
            ran.append(name)
        return ran

    async def _loop(self) -> None:
        while True:
            await self.run_pending()
            await asyncio.sleep(self.poll_seconds)
