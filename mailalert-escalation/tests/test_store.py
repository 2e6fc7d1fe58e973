from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import fakeredis
import pytest

from mailalert_contracts import Block, ChainState, SourceMeta
from mailalert_escalation.store import (
    ChainStateStore,
    RedisKeyValueStore,
    SqliteKeyValueStore,
)

START = datetime(2024, 3, 5, 15, 0, tzinfo=timezone.utc)


def _chain(chain_id: str) -> ChainState:
    return ChainState(
        chain_id=chain_id,
        fingerprint=chain_id.rsplit("|", 1)[0],
        source=SourceMeta(
            source_id="thread",
            received_at=START - timedelta(hours=5),
            deadline_at=START + timedelta(hours=19),
        ),
        blocks=[Block(start=START, lead_minutes=[0])],
        current_event_id="evt-1",
    )


@pytest.fixture(params=["redis", "sqlite"])
def backend(request, tmp_path: Path):
    if request.param == "redis":
        return RedisKeyValueStore(fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True))
    store = SqliteKeyValueStore(str(tmp_path / "kv.db"))
    store.init_schema()
    return store


def test_put_get_delete_roundtrip(backend) -> None:
    store = ChainStateStore(backend)
    chain = _chain("LIVE|202403051000|Taaaa1111|HCHAIN")

    store.put(chain)
    assert store.get(chain.chain_id) == chain
    assert store.count() == 1

    assert store.delete(chain.chain_id) is True
    assert store.get(chain.chain_id) is None
    assert store.delete(chain.chain_id) is False


def test_put_replaces_whole_record(backend) -> None:
    store = ChainStateStore(backend)
    chain = _chain("LIVE|202403051000|Taaaa1111|HCHAIN")
    store.put(chain)
    store.put(chain.model_copy(update={"current_event_id": "evt-2"}))

    assert store.get(chain.chain_id).current_event_id == "evt-2"
    assert store.count() == 1


def test_list_all_only_sees_prefixed_keys(backend) -> None:
    store = ChainStateStore(backend)
    backend.set("OTHER:key", "value")
    first = _chain("LIVE|202403051000|Taaaa1111|HCHAIN")
    second = _chain("TEST|202403051001|Tbbbb2222|HCHAIN")
    store.put(first)
    store.put(second)

    assert {state.chain_id for state in store.list_all()} == {first.chain_id, second.chain_id}
    assert store.keys() == sorted(store.key_for(c.chain_id) for c in (first, second))


def test_malformed_records_are_discarded(backend) -> None:
    store = ChainStateStore(backend)
    backend.set(store.key_for("broken"), "{not json")
    store.put(_chain("LIVE|202403051000|Taaaa1111|HCHAIN"))

    assert len(store.list_all()) == 1
    assert backend.get(store.key_for("broken")) is None


def test_glob_characters_in_prefix_are_literal() -> None:
    backend = RedisKeyValueStore(fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True))
    backend.set("chains[1]:a", "1")
    backend.set("chains1:b", "2")

    assert backend.list_keys("chains[1]:") == ["chains[1]:a"]


def test_sqlite_prefix_does_not_treat_underscore_as_wildcard(tmp_path: Path) -> None:
    backend = SqliteKeyValueStore(str(tmp_path / "kv.db"))
    backend.init_schema()
    backend.set("MAILALERT_HCHAIN:x", "1")
    backend.set("MAILALERTXHCHAIN:y", "2")

    assert backend.list_keys("MAILALERT_HCHAIN:") == ["MAILALERT_HCHAIN:x"]
