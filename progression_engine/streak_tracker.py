"""Streak tracker — daily engagement streaks with freeze protection.

Streak state is never swept in the background; it is derived from the stored
``last_active_date`` and the injected clock's today whenever it is read or an
activity arrives.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import TYPE_CHECKING, Collection

from .models import ResultKind, StreakState

if TYPE_CHECKING:
    from .database import ProgressionChange


@dataclass(frozen=True)
class StreakUpdate:
    """What an activity did to the streak."""
    streak_current: int
    freezes_used: int = 0
    bridged: bool = False
    reset: bool = False
    extended: bool = False


class StreakTracker:
    """Day-boundary streak state machine."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @staticmethod
    def state(last_active: date | None, streak_current: int, today: date) -> StreakState:
        if last_active is None or streak_current == 0:
            return StreakState.NO_STREAK
        if last_active >= today:
            return StreakState.ACTIVE_TODAY
        if last_active == today - timedelta(days=1):
            return StreakState.AT_RISK
        return StreakState.BROKEN

    @staticmethod
    def missing_days(last_active: date, today: date) -> list[date]:
        """Days strictly between *last_active* and *today*."""
        gap = (today - last_active).days
        return [last_active + timedelta(days=i) for i in range(1, gap)]

    def on_activity(
        self,
        change: ProgressionChange,
        today: date,
        protected_days: Collection[date] = (),
    ) -> StreakUpdate:
        """Apply one activity on *today* to the streak fields of *change*.

        A gap is bridged only when the freezes on hand cover every missing day
        that was not already protected. Otherwise the remaining freezes are
        spent anyway and the streak restarts at 1.
        """
        last = change.last_active_date

        if last is not None and last >= today:
            return StreakUpdate(streak_current=change.streak_current)

        if last is None or change.streak_current == 0:
            self._advance(change, today, 1)
            return StreakUpdate(streak_current=1, extended=True)

        if last == today - timedelta(days=1):
            self._advance(change, today, change.streak_current + 1)
            return StreakUpdate(streak_current=change.streak_current, extended=True)

        uncovered = [d for d in self.missing_days(last, today) if d not in protected_days]
        if not uncovered:
            self._advance(change, today, change.streak_current + 1)
            self._logger.debug("Streak for %s bridged by protected days", change.user_id)
            return StreakUpdate(streak_current=change.streak_current, bridged=True, extended=True)

        if change.streak_freezes >= len(uncovered):
            used = len(uncovered)
            change.streak_freezes -= used
            self._advance(change, today, change.streak_current + 1)
            self._logger.info(
                "Streak for %s bridged %d missed day(s) with freezes (%d left)",
                change.user_id, used, change.streak_freezes,
            )
            return StreakUpdate(
                streak_current=change.streak_current, freezes_used=used,
                bridged=True, extended=True,
            )

        used = change.streak_freezes
        previous = change.streak_current
        change.streak_freezes = 0
        self._advance(change, today, 1)
        self._logger.info(
            "Streak for %s reset after %d uncovered day(s) (was %d, %d freeze(s) spent)",
            change.user_id, len(uncovered), previous, used,
        )
        return StreakUpdate(streak_current=1, freezes_used=used, reset=True)

    def use_freeze(self, change: ProgressionChange, day: date, already_protected: bool) -> ResultKind:
        """Protect *day* with one freeze, recording it on *change*."""
        if already_protected or day in change.freeze_days:
            return ResultKind.ALREADY_PROTECTED
        if change.last_active_date is not None and day <= change.last_active_date:
            return ResultKind.ALREADY_PROTECTED
        if change.streak_freezes <= 0:
            return ResultKind.NO_FREEZES_AVAILABLE

        change.streak_freezes -= 1
        change.freeze_days.append(day)
        self._logger.info(
            "Streak freeze used by %s for %s (%d left)",
            change.user_id, day.isoformat(), change.streak_freezes,
        )
        return ResultKind.OK

    @staticmethod
    def _advance(change: ProgressionChange, today: date, streak: int) -> None:
        change.streak_current = streak
        change.streak_longest = max(change.streak_longest, streak)
        change.last_active_date = today
