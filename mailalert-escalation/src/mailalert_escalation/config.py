"""
This module defines the configuration settings for the escalation service.

Settings are read from ``MAILALERT_``-prefixed environment variables (and an
optional ``.env`` file) into one validated object that every component is
constructed from: the escalation window, the quiet hours, the calendar backend,
the redis connection used for state, locking and auditing, and the HTTP port.
"""
from __future__ import annotations

from functools import cached_property
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EscalationSettings(BaseSettings):
    """
    Configuration model for the escalation engine.

    Attributes:
        timezone: IANA zone used for quiet hours, minute buckets and markers.
        active_window_hours: Validity window of a notification; the deadline is
            ``received_at`` plus this many hours.
        window_start_offset_minutes: Delay between intake and the start of the
            escalation window.
        interval_hours: Spacing between consecutive signals.
        max_signals_per_block: Upper bound of reminders per calendar event.
        quiet_start_hour: First local hour during which no signal fires.
        quiet_end_hour: First local hour after the quiet window.
        final_reminder_minutes: Popup reminders on the terminal event.
        marker_search_hours: Half-width of the marker search window.
    """

    model_config = SettingsConfigDict(
        env_prefix="MAILALERT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Escalation window
    timezone: str = "UTC"
    active_window_hours: int = Field(default=24, ge=1)
    window_start_offset_minutes: int = Field(default=10, ge=0)
    interval_hours: int = Field(default=1, ge=1)
    max_signals_per_block: int = Field(default=5, ge=1)
    quiet_start_hour: int = Field(default=23, ge=0, le=23)
    quiet_end_hour: int = Field(default=7, ge=0, le=23)

    # Calendar events
    event_prefix: str = "MAIL ALERT"
    block_event_minutes: int = Field(default=5, ge=1)
    final_reminder_minutes: list[int] = Field(default_factory=lambda: [40, 30, 20, 10, 0])
    marker_search_hours: int = Field(default=48, ge=1)
    expected_sender: str = ""
    inbox: str = ""

    # Calendar backend
    calendar_backend: Literal["google", "memory"] = "google"
    google_calendar_id: str = "primary"
    google_client_id: str = ""
    google_client_secret: SecretStr | None = None
    google_refresh_token: SecretStr | None = None
    google_timeout_seconds: float = Field(default=30.0, gt=0)

    # State, locking and scheduling
    redis_url: str = "redis://localhost:6379/0"
    state_backend: Literal["redis", "sqlite"] = "redis"
    database_path: str = "./mailalert.db"
    key_prefix: str = "MAILALERT_HCHAIN:"
    lock_name: str = "mailalert:run-lock"
    lock_timeout_seconds: float = Field(default=5.0, gt=0)
    lock_ttl_seconds: float = Field(default=300.0, gt=0)
    scheduler_key: str = "mailalert:scheduler"
    tick_every_hours: int = Field(default=1, ge=1)
    scheduler_poll_seconds: float = Field(default=60.0, gt=0)
    scheduler_enabled: bool = True

    # Audit stream
    audit_stream: str = "mailalert:audit"
    audit_max_attempts: int = Field(default=3, ge=1)
    audit_base_delay_seconds: float = Field(default=0.5, ge=0)

    # Runtime
    mock_mode: bool = False
    port: int = Field(default=8095, ge=1, le=65535)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @field_validator("final_reminder_minutes")
    @classmethod
    def _check_final_reminders(cls, value: list[int]) -> list[int]:
        if any(minutes < 0 for minutes in value):
            raise ValueError("final_reminder_minutes must be non-negative")
        return value

    @cached_property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)
