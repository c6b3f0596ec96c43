"""Progression engine — facade over the level, streak, achievement, gem,
challenge and leaderboard components.

Every mutating operation follows the same cycle: read the user's progression
snapshot, stage all effects on one ``ProgressionChange``, commit it in a single
version-guarded transaction, and retry from a fresh snapshot on conflict.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from .achievement_engine import AchievementEngine
from .catalog import Catalog
from .challenge_tracker import ChallengeTracker
from .database import ActivityRecord, ProgressionChange
from .gem_ledger import GemLedger
from .leaderboard import LeaderboardAggregator
from .level_curve import LevelCurve, quiz_xp, streak_multiplier
from .models import (
    AchievementStats,
    ActivityMeta,
    ActivityOutcome,
    ChallengeOutcome,
    FreezeOutcome,
    InventoryOutcome,
    ItemUseOutcome,
    LeaderboardEntry,
    LeaderboardWindow,
    LedgerReason,
    ListingOutcome,
    ProgressionOutcome,
    PurchaseOutcome,
    ResultKind,
    StreakState,
    UserAchievement,
    UserProgression,
)
from .streak_tracker import StreakTracker
from .utils import parse_timestamp, retry_on_conflict

if TYPE_CHECKING:
    from .clock import Clock
    from .config import ProgressionConfig
    from .database import ProgressionDatabase

T = TypeVar("T")


class ProgressionEngine:
    """Turns user activity into XP, levels, streaks, achievements and gems."""

    def __init__(
        self,
        config: ProgressionConfig,
        database: ProgressionDatabase,
        clock: Clock,
        logger: logging.Logger,
        catalog: Catalog | None = None,
    ) -> None:
        self._config = config
        self._db = database
        self._clock = clock
        self._logger = logger

        self.catalog = catalog or Catalog(config)
        self.curve = LevelCurve.from_config(config.level_curve)
        self.streaks = StreakTracker(logger)
        self.achievements = AchievementEngine(self.catalog, self.curve, logger)
        self.ledger = GemLedger(config, database, clock, logger)
        self.challenges = ChallengeTracker(self.catalog, logger)
        self.leaderboard = LeaderboardAggregator(config, database, clock, logger)

    # ══════════════════════════════════════════════════════════
    #  Users
    # ══════════════════════════════════════════════════════════

    async def register_user(self, user_id: str) -> ProgressionOutcome:
        """Create the user's progression row if missing. Idempotent."""
        onboarding = self._config.onboarding
        created = await self._db.create_user(
            user_id,
            self._clock.now(),
            lives=onboarding.starting_lives,
            max_lives=onboarding.max_lives,
            freezes=onboarding.starting_freezes,
            welcome_gems=onboarding.welcome_gems,
        )
        if created:
            self._logger.info("Registered %s (%d welcome gems)", user_id, onboarding.welcome_gems)
        return await self.get_progression(user_id)

    async def get_progression(self, user_id: str) -> ProgressionOutcome:
        row = await self._db.get_progression(user_id)
        if row is None:
            return ProgressionOutcome(kind=ResultKind.NOT_FOUND)
        return ProgressionOutcome(kind=ResultKind.OK, progression=self._snapshot(row))

    def _snapshot(self, row: dict) -> UserProgression:
        change = ProgressionChange.from_row(row, self._clock.now())
        return UserProgression(
            user_id=change.user_id,
            total_xp=change.total_xp,
            level=self.curve.level_for_xp(change.total_xp),
            gems=change.gems,
            lives=change.lives,
            max_lives=change.max_lives,
            streak_current=change.streak_current,
            streak_longest=change.streak_longest,
            streak_freezes=change.streak_freezes,
            last_active_date=change.last_active_date,
            streak_state=self.streaks.state(
                change.last_active_date, change.streak_current, self._clock.today(),
            ),
            version=change.expected_version,
        )

    # ══════════════════════════════════════════════════════════
    #  Activity
    # ══════════════════════════════════════════════════════════

    async def record_activity(
        self, user_id: str, xp_gained: int, meta: ActivityMeta | None = None,
    ) -> ActivityOutcome:
        """Record one activity: streak, XP, challenges, achievements, leaderboards."""
        if xp_gained < 0:
            raise ValueError("xp_gained cannot be negative")
        return await self._record(user_id, meta or ActivityMeta(), lambda change, today: xp_gained)

    async def record_quiz(
        self,
        user_id: str,
        meta: ActivityMeta,
        base_xp: int | None = None,
        time_bonus: bool = False,
        difficulty: float = 1.0,
    ) -> ActivityOutcome:
        """Score a finished quiz with ``quiz_xp`` and record it as activity.

        The streak multiplier is read from the same snapshot the activity is
        committed against, so a retry rescores the quiz.
        """
        xp_cfg = self._config.xp

        def score(change: ProgressionChange, today: date) -> int:
            state = self.streaks.state(change.last_active_date, change.streak_current, today)
            # A broken streak earns no multiplier
            live_streak = change.streak_current if state in (StreakState.ACTIVE_TODAY, StreakState.AT_RISK) else 0
            return quiz_xp(
                xp_cfg.base_quiz_xp if base_xp is None else base_xp,
                meta.accuracy,
                time_bonus=time_bonus,
                streak_mult=streak_multiplier(live_streak, xp_cfg),
                difficulty_mult=difficulty,
                time_bonus_mult=xp_cfg.time_bonus_multiplier,
            )

        return await self._record(user_id, meta, score)

    async def _record(
        self,
        user_id: str,
        meta: ActivityMeta,
        score: Callable[[ProgressionChange, date], int],
    ) -> ActivityOutcome:
        async def attempt() -> ActivityOutcome:
            row = await self._db.get_progression(user_id)
            if row is None:
                return ActivityOutcome(kind=ResultKind.NOT_FOUND)

            change = ProgressionChange.from_row(row, self._clock.now())
            today = change.now.date()
            old_level = self.curve.level_for_xp(change.total_xp)
            xp_gained = score(change, today)

            protected: set[date] = set()
            last = change.last_active_date
            if last is not None and (today - last).days >= 2:
                protected = await self._db.get_protected_days(user_id, last, today)
            streak = self.streaks.on_activity(change, today, protected)

            change.add_xp(xp_gained)
            change.activity = ActivityRecord(
                day=today, xp=xp_gained, questions=meta.questions,
                correct=meta.correct, category=meta.category,
            )
            change.social.update({k: v for k, v in meta.social.items() if v})

            rows = await self._db.get_challenge_rows(user_id, today)
            advanced = self.challenges.advance(change, rows, today, xp_gained, meta, active_today=True)

            earned = await self._db.get_achievement_ids(user_id)
            stats = await self._stats(change, meta)
            unlocked = self.achievements.apply_unlocks(change, stats, earned)

            self.leaderboard.track(change)
            await self._db.commit_change(change)

            new_level = self._log_level_change(user_id, old_level, change.total_xp)
            return ActivityOutcome(
                kind=ResultKind.OK,
                xp_gained=xp_gained,
                bonus_xp=change.xp_earned - xp_gained,
                new_xp=change.total_xp,
                new_level=new_level,
                leveled_up=new_level > old_level,
                newly_unlocked=tuple(unlocked),
                streak_current=streak.streak_current,
                freezes_used=streak.freezes_used,
                gems=change.gems,
                challenges_advanced=tuple(advanced),
            )

        return await self._retry(attempt, lambda: ActivityOutcome(kind=ResultKind.CONCURRENCY_CONFLICT))

    def _log_level_change(self, user_id: str, old_level: int, total_xp: int) -> int:
        new_level = self.curve.level_for_xp(total_xp)
        if new_level > old_level:
            self._logger.info("Level up: %s %d → %d (%d XP)", user_id, old_level, new_level, total_xp)
        return new_level

    # ══════════════════════════════════════════════════════════
    #  Streak Freezes
    # ══════════════════════════════════════════════════════════

    async def use_streak_freeze(self, user_id: str, day: date | None = None) -> FreezeOutcome:
        """Protect *day* (default: today) with one of the user's freezes."""
        day = day or self._clock.today()

        async def attempt() -> FreezeOutcome:
            row = await self._db.get_progression(user_id)
            if row is None:
                return FreezeOutcome(kind=ResultKind.NOT_FOUND, day=day)
            change = ProgressionChange.from_row(row, self._clock.now())
            protected = await self._db.is_day_protected(user_id, day)
            kind = self.streaks.use_freeze(change, day, protected)
            if kind is ResultKind.OK:
                await self._db.commit_change(change)
            return FreezeOutcome(kind=kind, day=day, freezes_left=change.streak_freezes)

        return await self._retry(
            attempt, lambda: FreezeOutcome(kind=ResultKind.CONCURRENCY_CONFLICT, day=day),
        )

    # ══════════════════════════════════════════════════════════
    #  Store
    # ══════════════════════════════════════════════════════════

    async def purchase(
        self, user_id: str, item_id: str, cost: int | None = None, quantity: int = 1,
    ) -> PurchaseOutcome:
        """Buy *quantity* of a catalog item at its catalog price.

        *cost*, when given, is the unit price the caller was shown; it must match.
        Life items are charged only for the lives that fit under ``max_lives``.
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        item = self.catalog.store_item(item_id)
        if item is None:
            return PurchaseOutcome(kind=ResultKind.NOT_FOUND, item_id=item_id)
        if cost is not None and cost != item.cost:
            self._logger.warning(
                "Price mismatch for %s buying %s: quoted %d, catalog %d", user_id, item_id, cost, item.cost,
            )
            return PurchaseOutcome(kind=ResultKind.PRICE_MISMATCH, item_id=item_id)

        async def attempt() -> PurchaseOutcome:
            row = await self._db.get_progression(user_id)
            if row is None:
                return PurchaseOutcome(kind=ResultKind.NOT_FOUND, item_id=item_id)
            change = ProgressionChange.from_row(row, self._clock.now())

            delivered = quantity
            if item.kind == "extra_life":
                delivered = min(quantity, change.max_lives - change.lives)
            elif item.kind == "life_refill" and change.lives >= change.max_lives:
                delivered = 0
            if delivered <= 0:
                return PurchaseOutcome(
                    kind=ResultKind.LIVES_FULL, item_id=item_id, remaining_gems=change.gems,
                )

            total = item.cost * delivered
            if not self.ledger.debit(change, total, LedgerReason.PURCHASE, item.id):
                return PurchaseOutcome(
                    kind=ResultKind.INSUFFICIENT_FUNDS, item_id=item_id, remaining_gems=change.gems,
                )

            if item.kind == "streak_freeze":
                change.streak_freezes += delivered
            elif item.kind == "extra_life":
                change.lives += delivered
            elif item.kind == "life_refill":
                change.lives = change.max_lives
            else:
                change.inventory[item.id] = delivered

            await self._db.commit_change(change)
            self._logger.info(
                "Purchase: %s bought %d× %s for %d gems (balance %d)",
                user_id, delivered, item.id, total, change.gems,
            )
            return PurchaseOutcome(
                kind=ResultKind.OK, item_id=item_id, quantity=delivered,
                charged=total, remaining_gems=change.gems,
            )

        return await self._retry(
            attempt, lambda: PurchaseOutcome(kind=ResultKind.CONCURRENCY_CONFLICT, item_id=item_id),
        )

    async def use_item(self, user_id: str, item_id: str, quantity: int = 1) -> ItemUseOutcome:
        """Spend *quantity* of an inventory item (hint, skip) the user holds."""
        if quantity < 1:
            raise ValueError("quantity must be at least 1")

        async def attempt() -> ItemUseOutcome:
            row = await self._db.get_progression(user_id)
            if row is None:
                return ItemUseOutcome(kind=ResultKind.NOT_FOUND, item_id=item_id)
            held = (await self._db.get_inventory(user_id)).get(item_id, 0)
            if held == 0 and self.catalog.store_item(item_id) is None:
                return ItemUseOutcome(kind=ResultKind.NOT_FOUND, item_id=item_id)
            if held < quantity:
                return ItemUseOutcome(kind=ResultKind.OUT_OF_STOCK, item_id=item_id, remaining=held)

            change = ProgressionChange.from_row(row, self._clock.now())
            change.inventory_used[item_id] = quantity
            await self._db.commit_change(change)
            self._logger.info("Item used: %s used %d× %s (%d left)", user_id, quantity, item_id, held - quantity)
            return ItemUseOutcome(
                kind=ResultKind.OK, item_id=item_id, used=quantity, remaining=held - quantity,
            )

        return await self._retry(
            attempt, lambda: ItemUseOutcome(kind=ResultKind.CONCURRENCY_CONFLICT, item_id=item_id),
        )

    async def get_inventory(self, user_id: str) -> InventoryOutcome:
        if await self._db.get_progression(user_id) is None:
            return InventoryOutcome(kind=ResultKind.NOT_FOUND)
        return InventoryOutcome(kind=ResultKind.OK, items=await self._db.get_inventory(user_id))

    # ══════════════════════════════════════════════════════════
    #  Daily Challenges
    # ══════════════════════════════════════════════════════════

    async def complete_challenge(self, user_id: str, challenge_id: str) -> ChallengeOutcome:
        """Claim a finished challenge and grant its rewards exactly once."""
        challenge = self.challenges.challenge(challenge_id)

        async def attempt() -> ChallengeOutcome:
            row = await self._db.get_progression(user_id)
            if row is None:
                return ChallengeOutcome(kind=ResultKind.NOT_FOUND, challenge_id=challenge_id)
            change = ProgressionChange.from_row(row, self._clock.now())
            old_level = self.curve.level_for_xp(change.total_xp)

            progress_row = None
            if challenge is not None:
                progress_row = await self._db.get_challenge_row(user_id, challenge_id)
            kind = self.challenges.claim(change, challenge, progress_row, change.now.date())
            if kind is not ResultKind.OK:
                return ChallengeOutcome(kind=kind, challenge_id=challenge_id)

            earned = await self._db.get_achievement_ids(user_id)
            stats = await self._stats(change)
            unlocked = self.achievements.apply_unlocks(change, stats, earned)
            self.leaderboard.track(change)
            await self._db.commit_change(change)

            new_level = self._log_level_change(user_id, old_level, change.total_xp)
            return ChallengeOutcome(
                kind=ResultKind.OK,
                challenge_id=challenge_id,
                rewards=challenge.rewards,
                newly_unlocked=tuple(unlocked),
                new_xp=change.total_xp,
                new_level=new_level,
                leveled_up=new_level > old_level,
            )

        return await self._retry(
            attempt,
            lambda: ChallengeOutcome(kind=ResultKind.CONCURRENCY_CONFLICT, challenge_id=challenge_id),
        )

    async def get_challenges(self, user_id: str, day: date | None = None) -> ListingOutcome:
        """Challenges for *day* (default: today) as ``ChallengeProgress`` items."""
        if await self._db.get_progression(user_id) is None:
            return ListingOutcome(kind=ResultKind.NOT_FOUND)
        day = day or self._clock.today()
        rows = await self._db.get_challenge_rows(user_id, day)
        return ListingOutcome(kind=ResultKind.OK, items=tuple(self.challenges.progress_for(day, rows)))

    # ══════════════════════════════════════════════════════════
    #  Achievements
    # ══════════════════════════════════════════════════════════

    async def rescan_achievements(self, user_id: str) -> ActivityOutcome:
        """Grant anything the user qualifies for but doesn't hold (e.g. after a catalog change)."""

        async def attempt() -> ActivityOutcome:
            row = await self._db.get_progression(user_id)
            if row is None:
                return ActivityOutcome(kind=ResultKind.NOT_FOUND)
            change = ProgressionChange.from_row(row, self._clock.now())
            old_level = self.curve.level_for_xp(change.total_xp)
            earned = await self._db.get_achievement_ids(user_id)
            stats = await self._stats(change)
            unlocked = self.achievements.apply_unlocks(change, stats, earned)
            if unlocked:
                self.leaderboard.track(change)
                await self._db.commit_change(change)
            new_level = self._log_level_change(user_id, old_level, change.total_xp)
            return ActivityOutcome(
                kind=ResultKind.OK,
                bonus_xp=change.xp_earned,
                new_xp=change.total_xp,
                new_level=new_level,
                leveled_up=new_level > old_level,
                newly_unlocked=tuple(unlocked),
                streak_current=change.streak_current,
                gems=change.gems,
            )

        return await self._retry(attempt, lambda: ActivityOutcome(kind=ResultKind.CONCURRENCY_CONFLICT))

    async def get_achievements(self, user_id: str) -> ListingOutcome:
        if await self._db.get_progression(user_id) is None:
            return ListingOutcome(kind=ResultKind.NOT_FOUND)
        rows = await self._db.get_user_achievements(user_id)
        return ListingOutcome(kind=ResultKind.OK, items=tuple(
            UserAchievement(
                user_id=r["user_id"],
                achievement_id=r["achievement_id"],
                earned_at=parse_timestamp(r["earned_at"]),
            )
            for r in rows
        ))

    async def get_achievement_progress(self, user_id: str) -> ListingOutcome:
        row = await self._db.get_progression(user_id)
        if row is None:
            return ListingOutcome(kind=ResultKind.NOT_FOUND)
        change = ProgressionChange.from_row(row, self._clock.now())
        progress = self.achievements.progress(await self._stats(change))
        return ListingOutcome(kind=ResultKind.OK, items=tuple(progress))

    async def _stats(self, change: ProgressionChange, meta: ActivityMeta | None = None) -> AchievementStats:
        """Achievement stats from stored history plus the uncommitted *change*."""
        window = self._config.engine.recent_accuracy_window
        summary = await self._db.get_activity_summary(change.user_id, window)

        total_questions = summary["total_questions"]
        correct = summary["correct_answers"]
        perfect = summary["perfect_quizzes"]
        recent = list(summary["recent_accuracies"])
        categories = dict(summary["category_questions"])
        social = dict(summary["social"])

        if meta is not None and meta.questions > 0:
            total_questions += meta.questions
            correct += meta.correct
            perfect += 1 if meta.is_perfect else 0
            recent.insert(0, meta.correct * 100.0 / meta.questions)
            if meta.category:
                categories[meta.category] = categories.get(meta.category, 0) + meta.questions
        for counter, value in change.social.items():
            social[counter] = social.get(counter, 0) + value

        return AchievementStats(
            total_xp=change.total_xp,
            level=self.curve.level_for_xp(change.total_xp),
            streak_current=change.streak_current,
            streak_longest=change.streak_longest,
            total_questions=total_questions,
            correct_answers=correct,
            perfect_quizzes=perfect,
            recent_accuracies=tuple(recent[:window]),
            category_questions=categories,
            social=social,
        )

    # ══════════════════════════════════════════════════════════
    #  Leaderboards
    # ══════════════════════════════════════════════════════════

    async def get_leaderboard(
        self, window: LeaderboardWindow | str, limit: int | None = None,
    ) -> list[LeaderboardEntry]:
        return await self.leaderboard.get_leaderboard(window, limit)

    # ── Helpers ──────────────────────────────────────────────

    async def _retry(self, attempt: Callable[[], Awaitable[T]], exhausted: Callable[[], T]) -> T:
        return await retry_on_conflict(attempt, self._config.engine.max_retries, self._logger, exhausted)
