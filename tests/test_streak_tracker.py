"""Tests for the streak state machine."""

from __future__ import annotations

import logging
from datetime import date, timedelta

import pytest

from progression_engine.models import ResultKind, StreakState
from progression_engine.streak_tracker import StreakTracker
from tests.conftest import make_change

TODAY = date(2026, 3, 4)


@pytest.fixture
def tracker() -> StreakTracker:
    return StreakTracker(logging.getLogger("test.streaks"))


def days_ago(n: int) -> date:
    return TODAY - timedelta(days=n)


class TestState:

    def test_no_activity(self, tracker: StreakTracker):
        assert tracker.state(None, 0, TODAY) is StreakState.NO_STREAK

    def test_active_today(self, tracker: StreakTracker):
        assert tracker.state(TODAY, 3, TODAY) is StreakState.ACTIVE_TODAY

    def test_at_risk(self, tracker: StreakTracker):
        assert tracker.state(days_ago(1), 3, TODAY) is StreakState.AT_RISK

    def test_broken(self, tracker: StreakTracker):
        assert tracker.state(days_ago(2), 3, TODAY) is StreakState.BROKEN


class TestOnActivity:
    """Day-boundary transitions."""

    def test_first_activity(self, tracker: StreakTracker):
        change = make_change()
        update = tracker.on_activity(change, TODAY)
        assert update.streak_current == 1
        assert change.streak_longest == 1
        assert change.last_active_date == TODAY

    def test_same_day_no_change(self, tracker: StreakTracker):
        change = make_change(last_active_date=TODAY, streak_current=4, streak_longest=4)
        update = tracker.on_activity(change, TODAY)
        assert update.streak_current == 4
        assert not update.extended
        assert change.streak_current == 4

    def test_yesterday_increments_by_one(self, tracker: StreakTracker):
        change = make_change(last_active_date=days_ago(1), streak_current=4, streak_longest=10)
        tracker.on_activity(change, TODAY)
        assert change.streak_current == 5
        assert change.streak_longest == 10

    def test_longest_follows_current(self, tracker: StreakTracker):
        change = make_change(last_active_date=days_ago(1), streak_current=10, streak_longest=10)
        tracker.on_activity(change, TODAY)
        assert change.streak_current == 11
        assert change.streak_longest == 11

    def test_gap_with_too_few_freezes_resets(self, tracker: StreakTracker):
        """Two missed days and one freeze: the freeze is spent and the streak restarts."""
        change = make_change(
            last_active_date=days_ago(3), streak_current=6, streak_longest=6, streak_freezes=1,
        )
        update = tracker.on_activity(change, TODAY)
        assert update.reset
        assert update.freezes_used == 1
        assert change.streak_current == 1
        assert change.streak_freezes == 0
        assert change.streak_longest == 6

    def test_gap_fully_covered_by_freezes(self, tracker: StreakTracker):
        change = make_change(
            last_active_date=days_ago(3), streak_current=6, streak_longest=6, streak_freezes=3,
        )
        update = tracker.on_activity(change, TODAY)
        assert update.bridged
        assert update.freezes_used == 2
        assert change.streak_current == 7
        assert change.streak_freezes == 1

    def test_protected_days_reduce_freezes_needed(self, tracker: StreakTracker):
        change = make_change(
            last_active_date=days_ago(3), streak_current=6, streak_longest=6, streak_freezes=1,
        )
        update = tracker.on_activity(change, TODAY, protected_days={days_ago(2)})
        assert update.bridged
        assert update.freezes_used == 1
        assert change.streak_current == 7
        assert change.streak_freezes == 0

    def test_all_days_protected(self, tracker: StreakTracker):
        change = make_change(last_active_date=days_ago(2), streak_current=2, streak_longest=2)
        update = tracker.on_activity(change, TODAY, protected_days={days_ago(1)})
        assert update.bridged
        assert update.freezes_used == 0
        assert change.streak_current == 3

    def test_gap_without_freezes(self, tracker: StreakTracker):
        change = make_change(last_active_date=days_ago(5), streak_current=9, streak_longest=9)
        update = tracker.on_activity(change, TODAY)
        assert update.reset
        assert update.freezes_used == 0
        assert change.streak_current == 1

    def test_future_last_active_ignored(self, tracker: StreakTracker):
        change = make_change(last_active_date=TODAY + timedelta(days=1), streak_current=2)
        tracker.on_activity(change, TODAY)
        assert change.streak_current == 2
        assert change.last_active_date == TODAY + timedelta(days=1)


class TestUseFreeze:
    """Explicit day protection."""

    def test_protects_day(self, tracker: StreakTracker):
        change = make_change(last_active_date=days_ago(1), streak_current=3, streak_freezes=2)
        assert tracker.use_freeze(change, TODAY, already_protected=False) is ResultKind.OK
        assert change.streak_freezes == 1
        assert change.freeze_days == [TODAY]

    def test_already_protected(self, tracker: StreakTracker):
        change = make_change(streak_freezes=2)
        assert tracker.use_freeze(change, TODAY, already_protected=True) is ResultKind.ALREADY_PROTECTED
        assert change.streak_freezes == 2

    def test_active_day_counts_as_protected(self, tracker: StreakTracker):
        change = make_change(last_active_date=TODAY, streak_current=1, streak_freezes=2)
        assert tracker.use_freeze(change, TODAY, already_protected=False) is ResultKind.ALREADY_PROTECTED

    def test_no_freezes(self, tracker: StreakTracker):
        change = make_change(last_active_date=days_ago(1), streak_current=3)
        assert tracker.use_freeze(change, TODAY, already_protected=False) is ResultKind.NO_FREEZES_AVAILABLE
        assert change.freeze_days == []

    def test_protected_checked_before_balance(self, tracker: StreakTracker):
        change = make_change()
        assert tracker.use_freeze(change, TODAY, already_protected=True) is ResultKind.ALREADY_PROTECTED
