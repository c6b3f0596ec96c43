"""Tests for progression_engine.database module."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from progression_engine.database import ActivityRecord, ProgressionChange, ProgressionDatabase
from progression_engine.models import LedgerReason
from progression_engine.utils import VersionConflict

NOW = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


async def _create(database: ProgressionDatabase, user_id: str = "alice", gems: int = 0) -> dict:
    await database.create_user(user_id, NOW, lives=5, max_lives=5, welcome_gems=gems)
    return await database.get_progression(user_id)


class TestInitialization:
    """Database initialization and table creation."""

    async def test_initialize_creates_tables(self, database: ProgressionDatabase):
        assert await database.get_progression("nobody") is None
        assert await database.get_user_count() == 0

    async def test_initialize_idempotent(self, database: ProgressionDatabase):
        await database.initialize()
        assert await database.get_progression("nobody") is None


class TestProgressionRows:

    async def test_create_user(self, database: ProgressionDatabase):
        assert await database.create_user("alice", NOW, lives=5, max_lives=5)
        row = await database.get_progression("alice")
        assert row["total_xp"] == 0
        assert row["version"] == 0
        assert row["last_active_date"] is None

    async def test_create_user_twice(self, database: ProgressionDatabase):
        assert await database.create_user("alice", NOW, lives=5, max_lives=5)
        assert not await database.create_user("alice", NOW, lives=5, max_lives=5)
        assert await database.get_user_count() == 1


class TestCommitChange:
    """Atomic, version-guarded writes."""

    async def test_commit_bumps_version(self, database: ProgressionDatabase):
        row = await _create(database)
        change = ProgressionChange.from_row(row, NOW)
        change.add_xp(40)
        change.last_active_date = date(2026, 3, 4)

        assert await database.commit_change(change) == 1

        row = await database.get_progression("alice")
        assert row["version"] == 1
        assert row["total_xp"] == 40
        assert row["last_active_date"] == "2026-03-04"

    async def test_stale_version_rejected(self, database: ProgressionDatabase):
        row = await _create(database)
        first = ProgressionChange.from_row(row, NOW)
        stale = ProgressionChange.from_row(row, NOW)
        first.add_xp(10)
        stale.add_xp(99)

        await database.commit_change(first)
        with pytest.raises(VersionConflict):
            await database.commit_change(stale)

        assert (await database.get_progression("alice"))["total_xp"] == 10

    async def test_duplicate_achievement_rolls_back(self, database: ProgressionDatabase):
        row = await _create(database)
        change = ProgressionChange.from_row(row, NOW)
        change.achievements.append("first_quiz")
        await database.commit_change(change)

        row = await database.get_progression("alice")
        duplicate = ProgressionChange.from_row(row, NOW)
        duplicate.achievements.append("first_quiz")
        duplicate.add_ledger(50, LedgerReason.ACHIEVEMENT_REWARD, "first_quiz")

        with pytest.raises(VersionConflict):
            await database.commit_change(duplicate)

        row = await database.get_progression("alice")
        assert row["gems"] == 0
        assert row["version"] == 1
        assert await database.get_ledger("alice") == []

    async def test_ledger_rows_carry_running_balance(self, database: ProgressionDatabase):
        row = await _create(database, gems=10)
        change = ProgressionChange.from_row(row, NOW)
        change.add_ledger(5, LedgerReason.ACHIEVEMENT_REWARD, "a")
        change.add_ledger(-12, LedgerReason.PURCHASE, "hint")
        await database.commit_change(change)

        entries = await database.get_ledger("alice")

        assert [(e["delta"], e["balance_after"]) for e in entries] == [(-12, 3), (5, 15), (10, 10)]
        totals = await database.get_ledger_totals("alice")
        assert totals == {"total": 3, "entries": 3}

    async def test_negative_gems_rejected(self):
        row = {
            "user_id": "alice", "version": 0, "total_xp": 0, "gems": 3, "lives": 5, "max_lives": 5,
            "streak_current": 0, "streak_longest": 0, "streak_freezes": 0, "last_active_date": None,
        }
        change = ProgressionChange.from_row(row, NOW)
        with pytest.raises(ValueError):
            change.add_ledger(-4, LedgerReason.CONSUMPTION)

    async def test_claim_once(self, database: ProgressionDatabase):
        row = await _create(database)
        change = ProgressionChange.from_row(row, NOW)
        change.challenge_claims["c1"] = (date(2026, 3, 4), 20)
        await database.commit_change(change)

        row = await database.get_progression("alice")
        again = ProgressionChange.from_row(row, NOW)
        again.challenge_claims["c1"] = (date(2026, 3, 4), 20)
        with pytest.raises(VersionConflict):
            await database.commit_change(again)

        claim = await database.get_challenge_row("alice", "c1")
        assert claim["is_completed"] == 1
        assert claim["claimed_at"] is not None

    async def test_inventory_draw_down_never_negative(self, database: ProgressionDatabase):
        row = await _create(database)
        change = ProgressionChange.from_row(row, NOW)
        change.inventory["hint"] = 2
        await database.commit_change(change)

        row = await database.get_progression("alice")
        overdraw = ProgressionChange.from_row(row, NOW)
        overdraw.inventory_used["hint"] = 3
        with pytest.raises(VersionConflict):
            await database.commit_change(overdraw)
        assert await database.get_inventory("alice") == {"hint": 2}
        assert (await database.get_progression("alice"))["version"] == 1

        use = ProgressionChange.from_row(row, NOW)
        use.inventory_used["hint"] = 2
        await database.commit_change(use)
        assert await database.get_inventory("alice") == {}


class TestHistoryQueries:

    async def test_activity_summary(self, database: ProgressionDatabase):
        row = await _create(database)
        for questions, correct, category in [(10, 10, "yks"), (10, 5, "yks"), (4, 3, "kpss"), (0, 0, None)]:
            change = ProgressionChange.from_row(row, NOW)
            change.activity = ActivityRecord(date(2026, 3, 4), 10, questions, correct, category)
            await database.commit_change(change)
            row = await database.get_progression("alice")

        summary = await database.get_activity_summary("alice", recent_limit=2)

        assert summary["total_questions"] == 24
        assert summary["correct_answers"] == 18
        assert summary["perfect_quizzes"] == 1
        assert summary["recent_accuracies"] == [75.0, 50.0]
        assert summary["category_questions"] == {"yks": 20, "kpss": 4}

    async def test_protected_days_window(self, database: ProgressionDatabase):
        row = await _create(database)
        change = ProgressionChange.from_row(row, NOW)
        change.freeze_days.extend([date(2026, 3, 2), date(2026, 3, 5), date(2026, 3, 9)])
        await database.commit_change(change)

        days = await database.get_protected_days("alice", date(2026, 3, 2), date(2026, 3, 9))

        assert days == {date(2026, 3, 5)}
        assert await database.is_day_protected("alice", date(2026, 3, 9))

    async def test_leaderboard_order(self, database: ProgressionDatabase):
        for user, xp in [("carol", 30), ("alice", 50), ("bob", 50)]:
            row = await _create(database, user)
            change = ProgressionChange.from_row(row, NOW)
            change.add_xp(xp)
            change.leaderboard_periods["weekly"] = "2026-W10"
            await database.commit_change(change)

        rows = await database.get_leaderboard("weekly", "2026-W10", 10)

        assert [r["user_id"] for r in rows] == ["alice", "bob", "carol"]
        assert await database.count_ahead("weekly", "2026-W10", 30, NOW.isoformat(), "carol") == 2
