from __future__ import annotations

import json

import pytest

from mailalert_escalation import cli
from mailalert_escalation.lock import RunLock


@pytest.fixture(autouse=True)
def _use_test_service(monkeypatch, service):
    monkeypatch.setattr(cli, "_build_service", lambda: service)


def test_ingest_prints_result(capsys) -> None:
    cli.main(["ingest", "thread-7", "--subject", "Renew", "--received-at", "2024-03-05T10:00:00+00:00"])

    result = json.loads(capsys.readouterr().out)
    assert result["status"] == "started"
    assert result["block_count"] == 3


def test_ingest_rejects_naive_timestamp(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["ingest", "thread-7", "--received-at", "2024-03-05T10:00:00"])
    assert excinfo.value.code == 1
    assert "UTC offset" in capsys.readouterr().out


def test_tick_and_chains(capsys, clock) -> None:
    cli.main(["ingest", "thread-7", "--received-at", "2024-03-05T10:00:00+00:00"])
    capsys.readouterr()

    cli.main(["chains"])
    listing = capsys.readouterr().out
    assert "status=active" in listing
    assert "block=1/3" in listing

    cli.main(["tick"])
    report = json.loads(capsys.readouterr().out)
    assert list(report["outcomes"].values()) == ["waiting"]


def test_chains_when_empty(capsys) -> None:
    cli.main(["chains"])
    assert "No active chains" in capsys.readouterr().out


def test_purge_test(capsys) -> None:
    cli.main(["ingest", "thread-7", "--mode", "TEST"])
    capsys.readouterr()

    cli.main(["purge-test", "--days", "10"])
    assert "Deleted 1 test events" in capsys.readouterr().out


def test_purge_test_exits_when_lock_busy(capsys, service, redis_client) -> None:
    with RunLock(redis_client, name=service.settings.lock_name).hold():
        with pytest.raises(SystemExit) as excinfo:
            cli.main(["purge-test"])
    assert excinfo.value.code == 2
    assert "Run lock busy" in capsys.readouterr().out


def test_no_command_prints_help() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main([])
    assert excinfo.value.code == 1
