"""SQLite persistence for the progression engine.

Each public method is async and wraps a synchronous inner function via
asyncio.run_in_executor(None, _sync). A new connection is created per call
(WAL mode, 30s busy timeout, Row factory).

All mutations of a user's progression go through ``commit_change``: one
``BEGIN IMMEDIATE`` transaction guarded by the row's ``version`` column.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from .models import LedgerReason
from .utils import VersionConflict


@dataclass(frozen=True)
class LedgerDelta:
    amount: int
    reason: LedgerReason
    reference: str | None = None


@dataclass(frozen=True)
class ActivityRecord:
    day: date
    xp: int
    questions: int
    correct: int
    category: str | None = None


@dataclass
class ProgressionChange:
    """Everything one operation writes for one user, committed atomically."""

    user_id: str
    expected_version: int
    now: datetime
    total_xp: int
    gems: int
    lives: int
    max_lives: int
    streak_current: int
    streak_longest: int
    streak_freezes: int
    last_active_date: date | None

    xp_earned: int = 0
    ledger: list[LedgerDelta] = field(default_factory=list)
    achievements: list[str] = field(default_factory=list)
    activity: ActivityRecord | None = None
    challenge_progress: dict[str, tuple[date, int]] = field(default_factory=dict)
    challenge_claims: dict[str, tuple[date, int]] = field(default_factory=dict)
    leaderboard_periods: dict[str, str] = field(default_factory=dict)
    freeze_days: list[date] = field(default_factory=list)
    inventory: dict[str, int] = field(default_factory=dict)
    inventory_used: dict[str, int] = field(default_factory=dict)
    social: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict, now: datetime) -> ProgressionChange:
        last = row.get("last_active_date")
        return cls(
            user_id=row["user_id"],
            expected_version=row["version"],
            now=now,
            total_xp=row["total_xp"],
            gems=row["gems"],
            lives=row["lives"],
            max_lives=row["max_lives"],
            streak_current=row["streak_current"],
            streak_longest=row["streak_longest"],
            streak_freezes=row["streak_freezes"],
            last_active_date=date.fromisoformat(last) if last else None,
        )

    @property
    def starting_gems(self) -> int:
        return self.gems - sum(d.amount for d in self.ledger)

    def add_xp(self, amount: int) -> None:
        if amount < 0:
            raise ValueError("XP can only increase")
        self.total_xp += amount
        self.xp_earned += amount

    def add_ledger(self, amount: int, reason: LedgerReason, reference: str | None = None) -> None:
        """Record a signed gem delta; the cached balance follows the ledger."""
        if amount == 0:
            return
        if self.gems + amount < 0:
            raise ValueError("Gem balance cannot go negative")
        self.ledger.append(LedgerDelta(amount, reason, reference))
        self.gems += amount


class ProgressionDatabase:
    """SQLite-backed persistence for user progression."""

    def __init__(self, db_path: str, logger: logging.Logger) -> None:
        self._db_path = db_path
        self._logger = logger

    def _get_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection with standard settings."""
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.row_factory = sqlite3.Row
        return conn

    # ══════════════════════════════════════════════════════════
    #  Initialization
    # ══════════════════════════════════════════════════════════

    async def initialize(self) -> None:
        """Create all tables and indexes. Idempotent."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._create_tables)

    def _create_tables(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_progression (
                    user_id TEXT PRIMARY KEY,
                    total_xp INTEGER NOT NULL DEFAULT 0 CHECK (total_xp >= 0),
                    gems INTEGER NOT NULL DEFAULT 0 CHECK (gems >= 0),
                    lives INTEGER NOT NULL DEFAULT 5 CHECK (lives >= 0),
                    max_lives INTEGER NOT NULL DEFAULT 5,
                    streak_current INTEGER NOT NULL DEFAULT 0,
                    streak_longest INTEGER NOT NULL DEFAULT 0,
                    streak_freezes INTEGER NOT NULL DEFAULT 0 CHECK (streak_freezes >= 0),
                    last_active_date TEXT,
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT,
                    updated_at TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS gem_ledger (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    delta INTEGER NOT NULL,
                    reason TEXT NOT NULL,
                    reference TEXT,
                    balance_after INTEGER NOT NULL CHECK (balance_after >= 0),
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_achievements (
                    user_id TEXT NOT NULL,
                    achievement_id TEXT NOT NULL,
                    earned_at TEXT NOT NULL,
                    UNIQUE(user_id, achievement_id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS activity_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    xp INTEGER NOT NULL DEFAULT 0,
                    questions INTEGER NOT NULL DEFAULT 0,
                    correct INTEGER NOT NULL DEFAULT 0,
                    category TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_challenges (
                    user_id TEXT NOT NULL,
                    challenge_id TEXT NOT NULL,
                    valid_date TEXT NOT NULL,
                    progress INTEGER NOT NULL DEFAULT 0,
                    is_completed BOOLEAN NOT NULL DEFAULT 0,
                    completed_at TEXT,
                    claimed_at TEXT,
                    UNIQUE(user_id, challenge_id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS leaderboard_xp (
                    user_id TEXT NOT NULL,
                    scope TEXT NOT NULL,
                    period TEXT NOT NULL,
                    xp INTEGER NOT NULL DEFAULT 0,
                    reached_at TEXT NOT NULL,
                    UNIQUE(user_id, scope, period)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS streak_freeze_days (
                    user_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE(user_id, day)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS inventory (
                    user_id TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    quantity INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT,
                    UNIQUE(user_id, item_id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS social_counters (
                    user_id TEXT NOT NULL,
                    counter TEXT NOT NULL,
                    value INTEGER NOT NULL DEFAULT 0,
                    UNIQUE(user_id, counter)
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_gem_ledger_user ON gem_ledger(user_id, id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_activity_log_user ON activity_log(user_id, id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_leaderboard_rank "
                "ON leaderboard_xp(scope, period, xp DESC, reached_at, user_id)"
            )

            conn.commit()
            self._logger.info("Database tables created/verified")
        finally:
            conn.close()

    # ══════════════════════════════════════════════════════════
    #  Progression Rows
    # ══════════════════════════════════════════════════════════

    async def create_user(
        self,
        user_id: str,
        now: datetime,
        lives: int,
        max_lives: int,
        freezes: int = 0,
        welcome_gems: int = 0,
    ) -> bool:
        """Insert a progression row. Returns False if the user already exists.

        Welcome gems are credited through the ledger in the same transaction.
        """
        loop = asyncio.get_running_loop()
        stamp = now.isoformat()

        def _sync() -> bool:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO user_progression (user_id, gems, lives, max_lives, "
                    "streak_freezes, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (user_id, welcome_gems, lives, max_lives, freezes, stamp, stamp),
                )
                if cursor.rowcount == 0:
                    conn.rollback()
                    return False
                if welcome_gems > 0:
                    conn.execute(
                        "INSERT INTO gem_ledger (user_id, delta, reason, reference, balance_after, "
                        "created_at) VALUES (?, ?, ?, NULL, ?, ?)",
                        (user_id, welcome_gems, LedgerReason.WELCOME_BONUS.value, welcome_gems, stamp),
                    )
                conn.commit()
                return True
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def get_progression(self, user_id: str) -> dict | None:
        """Return the progression row as dict, or None if not exists."""
        loop = asyncio.get_running_loop()

        def _sync() -> dict | None:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT * FROM user_progression WHERE user_id = ?", (user_id,),
                ).fetchone()
                return dict(row) if row else None
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def commit_change(self, change: ProgressionChange) -> int:
        """Apply *change* atomically. Returns the new row version.

        Raises VersionConflict (after rolling back) if the row moved on since
        the snapshot, or if a unique claim row already exists.
        """
        loop = asyncio.get_running_loop()

        def _sync() -> int:
            conn = self._get_connection()
            stamp = change.now.isoformat()
            try:
                conn.execute("BEGIN IMMEDIATE")
                cursor = conn.execute(
                    "UPDATE user_progression SET total_xp = ?, gems = ?, lives = ?, max_lives = ?, "
                    "streak_current = ?, streak_longest = ?, streak_freezes = ?, "
                    "last_active_date = ?, version = version + 1, updated_at = ? "
                    "WHERE user_id = ? AND version = ?",
                    (
                        change.total_xp,
                        change.gems,
                        change.lives,
                        change.max_lives,
                        change.streak_current,
                        change.streak_longest,
                        change.streak_freezes,
                        change.last_active_date.isoformat() if change.last_active_date else None,
                        stamp,
                        change.user_id,
                        change.expected_version,
                    ),
                )
                if cursor.rowcount == 0:
                    raise VersionConflict(change.user_id)

                balance = change.starting_gems
                for delta in change.ledger:
                    balance += delta.amount
                    conn.execute(
                        "INSERT INTO gem_ledger (user_id, delta, reason, reference, balance_after, "
                        "created_at) VALUES (?, ?, ?, ?, ?, ?)",
                        (change.user_id, delta.amount, delta.reason.value, delta.reference, balance, stamp),
                    )

                for achievement_id in change.achievements:
                    conn.execute(
                        "INSERT INTO user_achievements (user_id, achievement_id, earned_at) "
                        "VALUES (?, ?, ?)",
                        (change.user_id, achievement_id, stamp),
                    )

                if change.activity is not None:
                    act = change.activity
                    conn.execute(
                        "INSERT INTO activity_log (user_id, day, xp, questions, correct, category, "
                        "created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (change.user_id, act.day.isoformat(), act.xp, act.questions,
                         act.correct, act.category, stamp),
                    )

                for challenge_id, (valid_date, progress) in change.challenge_progress.items():
                    conn.execute(
                        "INSERT INTO user_challenges (user_id, challenge_id, valid_date, progress) "
                        "VALUES (?, ?, ?, ?) "
                        "ON CONFLICT(user_id, challenge_id) DO UPDATE "
                        "SET progress = excluded.progress WHERE is_completed = 0",
                        (change.user_id, challenge_id, valid_date.isoformat(), progress),
                    )

                for challenge_id, (valid_date, progress) in change.challenge_claims.items():
                    cursor = conn.execute(
                        "INSERT INTO user_challenges (user_id, challenge_id, valid_date, progress, "
                        "is_completed, completed_at, claimed_at) VALUES (?, ?, ?, ?, 1, ?, ?) "
                        "ON CONFLICT(user_id, challenge_id) DO UPDATE "
                        "SET progress = excluded.progress, is_completed = 1, "
                        "completed_at = excluded.completed_at, claimed_at = excluded.claimed_at "
                        "WHERE is_completed = 0",
                        (change.user_id, challenge_id, valid_date.isoformat(), progress, stamp, stamp),
                    )
                    if cursor.rowcount == 0:
                        raise VersionConflict(change.user_id)

                if change.xp_earned > 0:
                    for window, period in change.leaderboard_periods.items():
                        conn.execute(
                            "INSERT INTO leaderboard_xp (user_id, scope, period, xp, reached_at) "
                            "VALUES (?, ?, ?, ?, ?) "
                            "ON CONFLICT(user_id, scope, period) DO UPDATE "
                            "SET xp = xp + excluded.xp, reached_at = excluded.reached_at",
                            (change.user_id, window, period, change.xp_earned, stamp),
                        )

                for day in change.freeze_days:
                    conn.execute(
                        "INSERT INTO streak_freeze_days (user_id, day, created_at) VALUES (?, ?, ?)",
                        (change.user_id, day.isoformat(), stamp),
                    )

                for item_id, quantity in change.inventory.items():
                    conn.execute(
                        "INSERT INTO inventory (user_id, item_id, quantity, updated_at) "
                        "VALUES (?, ?, ?, ?) "
                        "ON CONFLICT(user_id, item_id) DO UPDATE "
                        "SET quantity = quantity + excluded.quantity, updated_at = excluded.updated_at",
                        (change.user_id, item_id, quantity, stamp),
                    )

                for item_id, quantity in change.inventory_used.items():
                    cursor = conn.execute(
                        "UPDATE inventory SET quantity = quantity - ?, updated_at = ? "
                        "WHERE user_id = ? AND item_id = ? AND quantity >= ?",
                        (quantity, stamp, change.user_id, item_id, quantity),
                    )
                    if cursor.rowcount == 0:
                        raise VersionConflict(change.user_id)

                for counter, value in change.social.items():
                    conn.execute(
                        "INSERT INTO social_counters (user_id, counter, value) VALUES (?, ?, ?) "
                        "ON CONFLICT(user_id, counter) DO UPDATE SET value = value + excluded.value",
                        (change.user_id, counter, value),
                    )

                conn.commit()
                return change.expected_version + 1
            except sqlite3.IntegrityError:
                # Unique achievement / freeze-day row written by a concurrent commit
                conn.rollback()
                raise VersionConflict(change.user_id)
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Achievements & Activity History
    # ══════════════════════════════════════════════════════════

    async def get_achievement_ids(self, user_id: str) -> set[str]:
        """Ids of achievements a user already holds."""
        loop = asyncio.get_running_loop()

        def _sync() -> set[str]:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT achievement_id FROM user_achievements WHERE user_id = ?", (user_id,),
                ).fetchall()
                return {r["achievement_id"] for r in rows}
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def get_user_achievements(self, user_id: str) -> list[dict]:
        """List all achievements for a user, oldest first."""
        loop = asyncio.get_running_loop()

        def _sync() -> list[dict]:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT user_id, achievement_id, earned_at FROM user_achievements "
                    "WHERE user_id = ? ORDER BY earned_at, rowid",
                    (user_id,),
                ).fetchall()
                return [dict(r) for r in rows]
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def get_activity_summary(self, user_id: str, recent_limit: int = 50) -> dict:
        """Aggregate the activity history that achievement stats are built from."""
        loop = asyncio.get_running_loop()

        def _sync() -> dict:
            conn = self._get_connection()
            try:
                totals = conn.execute(
                    "SELECT COALESCE(SUM(questions), 0) AS questions, "
                    "COALESCE(SUM(correct), 0) AS correct, "
                    "COALESCE(SUM(CASE WHEN questions > 0 AND correct = questions "
                    "THEN 1 ELSE 0 END), 0) AS perfect "
                    "FROM activity_log WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
                recent = conn.execute(
                    "SELECT questions, correct FROM activity_log "
                    "WHERE user_id = ? AND questions > 0 ORDER BY id DESC LIMIT ?",
                    (user_id, recent_limit),
                ).fetchall()
                categories = conn.execute(
                    "SELECT category, SUM(questions) AS questions FROM activity_log "
                    "WHERE user_id = ? AND category IS NOT NULL GROUP BY category",
                    (user_id,),
                ).fetchall()
                social = conn.execute(
                    "SELECT counter, value FROM social_counters WHERE user_id = ?", (user_id,),
                ).fetchall()
                return {
                    "total_questions": totals["questions"],
                    "correct_answers": totals["correct"],
                    "perfect_quizzes": totals["perfect"],
                    "recent_accuracies": [
                        r["correct"] * 100.0 / r["questions"] for r in recent
                    ],
                    "category_questions": {r["category"]: r["questions"] for r in categories},
                    "social": {r["counter"]: r["value"] for r in social},
                }
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Streak Freezes
    # ══════════════════════════════════════════════════════════

    async def get_protected_days(self, user_id: str, after: date, before: date) -> set[date]:
        """Freeze-protected days strictly between *after* and *before*."""
        loop = asyncio.get_running_loop()

        def _sync() -> set[date]:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT day FROM streak_freeze_days WHERE user_id = ? AND day > ? AND day < ?",
                    (user_id, after.isoformat(), before.isoformat()),
                ).fetchall()
                return {date.fromisoformat(r["day"]) for r in rows}
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def is_day_protected(self, user_id: str, day: date) -> bool:
        loop = asyncio.get_running_loop()

        def _sync() -> bool:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT 1 FROM streak_freeze_days WHERE user_id = ? AND day = ?",
                    (user_id, day.isoformat()),
                ).fetchone()
                return row is not None
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Daily Challenges
    # ══════════════════════════════════════════════════════════

    async def get_challenge_rows(self, user_id: str, valid_date: date) -> dict[str, dict]:
        """Challenge progress rows for one date, keyed by challenge id."""
        loop = asyncio.get_running_loop()

        def _sync() -> dict[str, dict]:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT * FROM user_challenges WHERE user_id = ? AND valid_date = ?",
                    (user_id, valid_date.isoformat()),
                ).fetchall()
                return {r["challenge_id"]: dict(r) for r in rows}
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def get_challenge_row(self, user_id: str, challenge_id: str) -> dict | None:
        loop = asyncio.get_running_loop()

        def _sync() -> dict | None:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT * FROM user_challenges WHERE user_id = ? AND challenge_id = ?",
                    (user_id, challenge_id),
                ).fetchone()
                return dict(row) if row else None
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Gem Ledger
    # ══════════════════════════════════════════════════════════

    async def get_ledger(self, user_id: str, limit: int = 20) -> list[dict]:
        """Return last N ledger entries for a user, newest first."""
        loop = asyncio.get_running_loop()

        def _sync() -> list[dict]:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT * FROM gem_ledger WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                    (user_id, limit),
                ).fetchall()
                return [dict(r) for r in rows]
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def get_ledger_totals(self, user_id: str) -> dict:
        """Sum and count of a user's ledger entries."""
        loop = asyncio.get_running_loop()

        def _sync() -> dict:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT COALESCE(SUM(delta), 0) AS total, COUNT(*) AS entries "
                    "FROM gem_ledger WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
                return {"total": row["total"], "entries": row["entries"]}
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Inventory
    # ══════════════════════════════════════════════════════════

    async def get_inventory(self, user_id: str) -> dict[str, int]:
        loop = asyncio.get_running_loop()

        def _sync() -> dict[str, int]:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT item_id, quantity FROM inventory WHERE user_id = ? AND quantity > 0",
                    (user_id,),
                ).fetchall()
                return {r["item_id"]: r["quantity"] for r in rows}
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Leaderboards
    # ══════════════════════════════════════════════════════════

    async def get_window_xp(self, user_id: str, window: str, period: str) -> dict | None:
        loop = asyncio.get_running_loop()

        def _sync() -> dict | None:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT * FROM leaderboard_xp WHERE user_id = ? AND scope = ? AND period = ?",
                    (user_id, window, period),
                ).fetchone()
                return dict(row) if row else None
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def get_leaderboard(self, window: str, period: str, limit: int) -> list[dict]:
        """Top rows for a period in rank order."""
        loop = asyncio.get_running_loop()

        def _sync() -> list[dict]:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT user_id, xp, reached_at FROM leaderboard_xp "
                    "WHERE scope = ? AND period = ? AND xp > 0 "
                    "ORDER BY xp DESC, reached_at ASC, user_id ASC LIMIT ?",
                    (window, period, limit),
                ).fetchall()
                return [dict(r) for r in rows]
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def count_ahead(self, window: str, period: str, xp: int, reached_at: str, user_id: str) -> int:
        """Number of rows ranked strictly ahead of the given position."""
        loop = asyncio.get_running_loop()

        def _sync() -> int:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT COUNT(*) AS cnt FROM leaderboard_xp "
                    "WHERE scope = ? AND period = ? AND ("
                    "xp > ? OR (xp = ? AND (reached_at < ? OR (reached_at = ? AND user_id < ?))))",
                    (window, period, xp, xp, reached_at, reached_at, user_id),
                ).fetchone()
                return row["cnt"]
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def prune_leaderboard(self, window: str, keep_periods: list[str]) -> int:
        """Delete rows of *window* whose period is not in *keep_periods*."""
        loop = asyncio.get_running_loop()

        def _sync() -> int:
            conn = self._get_connection()
            try:
                placeholders = ", ".join("?" for _ in keep_periods) or "NULL"
                cursor = conn.execute(
                    f"DELETE FROM leaderboard_xp WHERE scope = ? AND period NOT IN ({placeholders})",
                    (window, *keep_periods),
                )
                conn.commit()
                return cursor.rowcount
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Admin
    # ══════════════════════════════════════════════════════════

    async def get_user_count(self) -> int:
        loop = asyncio.get_running_loop()

        def _sync() -> int:
            conn = self._get_connection()
            try:
                row = conn.execute("SELECT COUNT(*) AS cnt FROM user_progression").fetchone()
                return row["cnt"]
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def execute_raw(self, sql: str, params: tuple[Any, ...] = ()) -> None:
        """Run one write statement outside the versioned path (fixtures, repairs)."""
        loop = asyncio.get_running_loop()

        def _sync() -> None:
            conn = self._get_connection()
            try:
                conn.execute(sql, params)
                conn.commit()
            finally:
                conn.close()

        await loop.run_in_executor(None, _sync)
