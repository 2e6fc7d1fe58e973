"""
Quiet-window arithmetic.

All three helpers reason in the configured local timezone: the quiet window is
a daily range of wall-clock hours, and rounding happens relative to local
midnight. Inputs may be in any zone; outputs are returned in the local zone.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo


@dataclass(frozen=True)
class QuietWindowPolicy:
    """
    Daily range of local hours during which no signal may fire.

    An hour is quiet when it is ``>= quiet_start_hour`` or ``< quiet_end_hour``.
    With the defaults (23 and 7) that is 23:00 to 06:59 local time. A
    configuration with ``quiet_start_hour <= quiet_end_hour`` makes every hour
    quiet.

    Attributes:
        quiet_start_hour: First quiet hour.
        quiet_end_hour: First hour after the quiet window.
        tz: Zone the hours are interpreted in.
    """

    quiet_start_hour: int = 23
    quiet_end_hour: int = 7
    tz: tzinfo = timezone.utc

    def __post_init__(self) -> None:
        for name in ("quiet_start_hour", "quiet_end_hour"):
            value = getattr(self, name)
            if not 0 <= value <= 23:
                raise ValueError(f"{name} must be within 0..23, got {value}")

    def local(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            raise ValueError("naive datetimes are not supported")
        return moment.astimezone(self.tz)

    def is_quiet(self, moment: datetime) -> bool:
        hour = self.local(moment).hour
        return hour >= self.quiet_start_hour or hour < self.quiet_end_hour

    def round_up(self, moment: datetime, step_minutes: int) -> datetime:
        """
        Smallest instant ``>= moment`` on a ``step_minutes`` grid from local midnight.

        The grid is laid out in absolute time, so a repeated or skipped hour on a
        DST transition day shifts the wall-clock labels but never drops a slot.
        """
        if step_minutes <= 0:
            raise ValueError("step_minutes must be positive")
        local = self.local(moment)
        midnight = datetime.combine(local.date(), time(0), tzinfo=self.tz).astimezone(timezone.utc)
        step = timedelta(minutes=step_minutes)
        elapsed = moment.astimezone(timezone.utc) - midnight
        steps = -(-elapsed // step)
        return (midnight + steps * step).astimezone(self.tz)

    def next_quiet_end(self, moment: datetime) -> datetime:
        """The ``quiet_end_hour:00`` that follows ``moment``'s quiet window."""
        local = self.local(moment)
        day = local.date()
        if local.hour >= self.quiet_start_hour:
            day += timedelta(days=1)
        return datetime.combine(day, time(self.quiet_end_hour), tzinfo=self.tz)

    @classmethod
    def from_settings(cls, settings) -> "QuietWindowPolicy":
        return cls(
            quiet_start_hour=settings.quiet_start_hour,
            quiet_end_hour=settings.quiet_end_hour,
            tz=settings.tz,
        )
