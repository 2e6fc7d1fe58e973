from __future__ import annotations

from datetime import datetime, timedelta, timezone

import fakeredis
import pytest

from mailalert_escalation.calendar_surface import InMemoryCalendarSurface
from mailalert_escalation.config import EscalationSettings
from mailalert_escalation.service import EscalationService

T0 = datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock handed to every component that asks for "now"."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def calendar() -> InMemoryCalendarSurface:
    return InMemoryCalendarSurface()


@pytest.fixture
def settings(tmp_path) -> EscalationSettings:
    return EscalationSettings(
        _env_file=None,
        timezone="UTC",
        calendar_backend="memory",
        database_path=str(tmp_path / "mailalert.db"),
        lock_timeout_seconds=0.2,
        audit_base_delay_seconds=0.0,
        scheduler_enabled=False,
    )


@pytest.fixture
def service(settings, redis_client, calendar, clock) -> EscalationService:
    return EscalationService.from_settings(
        settings, redis_client=redis_client, calendar=calendar, clock=clock
    )
