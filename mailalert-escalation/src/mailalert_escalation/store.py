"""
Durable storage for chain state.

``ChainStateStore`` is the repository the chain driver talks to. It serializes
``ChainState`` records as JSON under ``{key_prefix}{chain_id}`` in any
``KeyValueStore``. Two backends are provided: redis (the default, shared with
the run lock and audit stream) and a single-file SQLite database for hosts
without redis.
"""
from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Protocol

from pydantic import ValidationError

from mailalert_contracts import ChainState

LOGGER = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> bool: ...

    def list_keys(self, prefix: str) -> list[str]: ...


class RedisKeyValueStore:
    """Key-value store on top of a ``redis.Redis`` client created with ``decode_responses=True``."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def set(self, key: str, value: str) -> None:
        self._client.set(key, value)

    def delete(self, key: str) -> bool:
        return bool(self._client.delete(key))

    def list_keys(self, prefix: str) -> list[str]:
        pattern = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        return sorted(self._client.scan_iter(match=pattern, count=200))


class SqliteKeyValueStore:
    """
    Key-value store kept in one SQLite table.

    Connections are opened per call and committed on exit so the store can be
    shared between the scheduler loop and request handlers.
    """

    def __init__(self, path: str):
        self.path = path

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        con = sqlite3.connect(self.path, check_same_thread=False)
        try:
            con.row_factory = sqlite3.Row
            yield con
            con.commit()
        finally:
            con.close()

    def init_schema(self) -> None:
        with self.connect() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    def get(self, key: str) -> str | None:
        with self.connect() as con:
            row = con.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        with self.connect() as con:
            con.execute(
                """
                INSERT INTO kv (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                """,
                (key, value),
            )

    def delete(self, key: str) -> bool:
        with self.connect() as con:
            cur = con.execute("DELETE FROM kv WHERE key = ?", (key,))
            return cur.rowcount > 0

    def list_keys(self, prefix: str) -> list[str]:
        with self.connect() as con:
            # substr comparison avoids LIKE wildcards inside chain ids
            cur = con.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            )
            return [row["key"] for row in cur.fetchall()]


class ChainStateStore:
    """
    Repository of ``ChainState`` records.

    Attributes:
        backend: The key-value store the records live in.
        key_prefix: Prefix shared by every chain key.
    """

    def __init__(self, backend: KeyValueStore, key_prefix: str = "MAILALERT_HCHAIN:") -> None:
        self.backend = backend
        self.key_prefix = key_prefix

    def key_for(self, chain_id: str) -> str:
        return f"{self.key_prefix}{chain_id}"

    def get(self, chain_id: str) -> ChainState | None:
        """Load one chain; unparseable records are discarded and reported as missing."""
        key = self.key_for(chain_id)
        raw = self.backend.get(key)
        if raw is None:
            return None
        return self._parse(key, raw)

    def put(self, state: ChainState) -> None:
        self.backend.set(self.key_for(state.chain_id), state.model_dump_json())

    def delete(self, chain_id: str) -> bool:
        return self.backend.delete(self.key_for(chain_id))

    def keys(self) -> list[str]:
        return self.backend.list_keys(self.key_prefix)

    def chain_id_from_key(self, key: str) -> str:
        return key[len(self.key_prefix) :]

    def list_all(self) -> list[ChainState]:
        states: list[ChainState] = []
        for key in self.keys():
            raw = self.backend.get(key)
            if raw is None:
                continue
            state = self._parse(key, raw)
            if state is not None:
                states.append(state)
        return states

    def count(self) -> int:
        return len(self.keys())

    def _parse(self, key: str, raw: str) -> ChainState | None:
        try:
            return ChainState.model_validate_json(raw)
        except ValidationError as exc:
            LOGGER.warning(
                "Discarding malformed chain state %s (%d errors)", key, exc.error_count()
            )
            self.backend.delete(key)
            return None
