"""Process-wide advisory run lock."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from redis.exceptions import LockError

LOGGER = logging.getLogger(__name__)


class RunLockBusy(RuntimeError):
    """Another invocation holds the run lock."""


class RunLock:
    """
    Mutual exclusion between intake and tick invocations.

    Backed by a redis ``Lock`` with a TTL so a crashed holder cannot block the
    engine forever. Acquisition waits at most ``blocking_timeout`` seconds;
    callers treat ``RunLockBusy`` as "skip this invocation".
    """

    def __init__(
        self,
        client: Any,
        *,
        name: str = "mailalert:run-lock",
        blocking_timeout: float = 5.0,
        ttl: float = 300.0,
    ) -> None:
        self._client = client
        self.name = name
        self.blocking_timeout = blocking_timeout
        self.ttl = ttl

    @contextmanager
    def hold(self) -> Iterator[None]:
        lock = self._client.lock(self.name, timeout=self.ttl, blocking_timeout=self.blocking_timeout)
        if not lock.acquire():
            raise RunLockBusy(f"run lock {self.name} busy after {self.blocking_timeout:.1f}s")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError as exc:
                LOGGER.warning("Run lock %s expired before release: %s", self.name, exc)
