"""Clock and calendar providers.

Every component asks an injected clock for "now", "today" and the current
leaderboard period instead of reading the system clock, so day boundaries
are identical on every instance and tests can move time explicitly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo

from .models import LeaderboardWindow
from .utils import iso_week_str, month_str

ALL_TIME_PERIOD = "all_time"


class Clock(ABC):
    """Base calendar provider. Subclasses implement ``now()``."""

    @abstractmethod
    def now(self) -> datetime:
        """Current aware UTC time."""

    def today(self) -> date:
        return self.now().date()

    def period_key(self, window: LeaderboardWindow, day: date | None = None) -> str:
        """Return the leaderboard period containing *day* (default: today)."""
        day = day or self.today()
        if window is LeaderboardWindow.WEEKLY:
            return iso_week_str(day)
        if window is LeaderboardWindow.MONTHLY:
            return month_str(day)
        return ALL_TIME_PERIOD

    def window_bounds(
        self, window: LeaderboardWindow, day: date | None = None,
    ) -> tuple[date | None, date | None]:
        """Return ``(first_day, first_day_of_next_period)`` for *window*.

        All-time has no bounds and returns ``(None, None)``.
        """
        day = day or self.today()
        if window is LeaderboardWindow.WEEKLY:
            start = day - timedelta(days=day.weekday())
            return start, start + timedelta(days=7)
        if window is LeaderboardWindow.MONTHLY:
            start = day.replace(day=1)
            if start.month == 12:
                return start, start.replace(year=start.year + 1, month=1)
            return start, start.replace(month=start.month + 1)
        return None, None


class SystemClock(Clock):
    """Wall clock in a fixed timezone (UTC by default)."""

    def __init__(self, tz: tzinfo = timezone.utc) -> None:
        self._tz = tz

    def now(self) -> datetime:
        return datetime.now(self._tz)


class FixedClock(Clock):
    """Manually driven clock for tests and backfills."""

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        self._now = moment

    def advance(self, days: int = 0, hours: int = 0, minutes: int = 0, seconds: int = 0) -> datetime:
        self._now += timedelta(days=days, hours=hours, minutes=minutes, seconds=seconds)
        return self._now
