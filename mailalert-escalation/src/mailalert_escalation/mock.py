"""
Mock mode support for the escalation service.

With ``MAILALERT_MOCK_MODE=true`` the service runs without external services:

- fakeredis stands in for redis (state, run lock, scheduler, audit stream);
- an in-memory calendar stands in for Google Calendar.

Both are process-wide singletons so the HTTP app, the scheduler loop and the
CLI share one view of the world.

Example:
    MAILALERT_MOCK_MODE=true python -m mailalert_escalation serve
"""
from __future__ import annotations

import logging
from typing import Any

import fakeredis

from .calendar_surface import InMemoryCalendarSurface

LOGGER = logging.getLogger(__name__)

_MOCK_REDIS_CLIENT: Any = None
_MOCK_CALENDAR: InMemoryCalendarSurface | None = None


def get_mock_redis_client() -> Any:
    global _MOCK_REDIS_CLIENT
    if _MOCK_REDIS_CLIENT is None:
        _MOCK_REDIS_CLIENT = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
        LOGGER.info("Mock Redis client initialized (fakeredis)")
    return _MOCK_REDIS_CLIENT


def get_mock_calendar() -> InMemoryCalendarSurface:
    global _MOCK_CALENDAR
    if _MOCK_CALENDAR is None:
        _MOCK_CALENDAR = InMemoryCalendarSurface()
        LOGGER.info("Mock calendar initialized (in-memory)")
    return _MOCK_CALENDAR


def reset_mock_state() -> None:
    """Forget the singletons so the next call starts empty."""
    global _MOCK_REDIS_CLIENT, _MOCK_CALENDAR
    _MOCK_REDIS_CLIENT = None
    _MOCK_CALENDAR = None
