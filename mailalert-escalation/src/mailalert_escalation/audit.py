"""
Audit trail of engine invocations.

Each intake and tick appends one entry to a redis stream. Audit writes are
best effort: they retry a few times with exponential backoff and then give up
with a warning, so a flaky audit sink never blocks reminder delivery.
"""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from redis.exceptions import RedisError

LOGGER = logging.getLogger(__name__)


def _iso_ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _json_dumps(payload: Dict[str, Any]) -> str:
    def _default(value: Any) -> Any:
        if hasattr(value, "model_dump"):
            return value.model_dump(mode="json")
        if isinstance(value, datetime):
            return value.isoformat()
        return str(value)

    return json.dumps(payload, default=_default, separators=(",", ":"))


class AuditLog:
    """Appends invocation outcomes to a redis stream."""

    def __init__(
        self,
        client: Any,
        *,
        stream: str = "mailalert:audit",
        max_attempts: int = 3,
        base_delay: float = 0.5,
        maxlen: int | None = 10_000,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self.stream = stream
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.maxlen = maxlen
        self._sleep = sleep

    def record(
        self,
        *,
        run_id: str,
        mode: str,
        status: str,
        message: str = "",
        payload: Dict[str, Any] | None = None,
    ) -> bool:
        """Append one entry. Returns False if every attempt failed."""
        entry = {
            "timestamp": _iso_ts(),
            "run_id": run_id,
            "mode": mode,
            "status": status,
            "message": message,
            "payload": _json_dumps(payload or {}),
        }
        for attempt in range(self.max_attempts):
            try:
                self._client.xadd(self.stream, entry, maxlen=self.maxlen, approximate=True)
                return True
            except RedisError as exc:
                if attempt + 1 >= self.max_attempts:
                    LOGGER.warning(
                        "Audit write %s/%s failed after %d attempts: %s",
                        run_id,
                        status,
                        self.max_attempts,
                        exc,
                    )
                    return False
                delay = self.base_delay * (2**attempt)
                LOGGER.debug("Audit write failed (%s); retrying in %.2fs", exc, delay)
                self._sleep(delay)
        return False

    def recent(self, count: int = 50) -> list[dict[str, Any]]:
        """Newest entries first, with the JSON payload decoded."""
        rows = self._client.xrevrange(self.stream, count=count)
        entries: list[dict[str, Any]] = []
        for entry_id, fields in rows:
            item = dict(fields)
            item["id"] = entry_id
            try:
                item["payload"] = json.loads(item.get("payload") or "{}")
            except ValueError:
                LOGGER.debug("Audit entry %s has a non-JSON payload", entry_id)
            entries.append(item)
        return entries
