"""Achievement engine — evaluates requirement predicates and grants one-time badges.

Evaluation is pure over an ``AchievementStats`` snapshot. Granting is staged on
a ``ProgressionChange`` so the ``user_achievements`` row and its XP/gem rewards
commit in the same transaction.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Collection

from .config import (
    AccuracyOverWindow,
    MinCategoryQuestions,
    MinLevel,
    MinPerfectQuizzes,
    MinQuestions,
    MinSocial,
    MinStreak,
    MinTotalXP,
)
from .models import AchievementProgress, AchievementStats, LedgerReason

if TYPE_CHECKING:
    from .catalog import Catalog
    from .config import AchievementConfig
    from .database import ProgressionChange
    from .level_curve import LevelCurve


class AchievementEngine:
    """Evaluates achievement requirements and stages unlocks."""

    def __init__(self, catalog: Catalog, curve: LevelCurve, logger: logging.Logger) -> None:
        self._catalog = catalog
        self._curve = curve
        self._logger = logger

    # ── Requirement class → evaluator method name ────────────

    _REQUIREMENT_MAP: dict[type, str] = {
        MinTotalXP: "_eval_min_total_xp",
        MinLevel: "_eval_min_level",
        MinStreak: "_eval_min_streak",
        MinQuestions: "_eval_min_questions",
        MinPerfectQuizzes: "_eval_min_perfect_quizzes",
        AccuracyOverWindow: "_eval_accuracy_over_window",
        MinCategoryQuestions: "_eval_min_category_questions",
        MinSocial: "_eval_min_social",
    }

    # ══════════════════════════════════════════════════════════
    #  Public API
    # ══════════════════════════════════════════════════════════

    def evaluate(self, stats: AchievementStats, achievement: AchievementConfig) -> AchievementProgress:
        """Progress of *stats* toward *achievement*."""
        requirement = achievement.requirement
        method_name = self._REQUIREMENT_MAP.get(type(requirement))
        if method_name is None:
            raise ValueError(f"Unhandled requirement type: {type(requirement).__name__}")
        evaluator: Callable[[AchievementStats, object], tuple[float, float, bool]] = getattr(
            self, method_name,
        )
        current, target, unlocked = evaluator(stats, requirement)
        return AchievementProgress(
            achievement_id=achievement.id, current=current, target=target, unlocked=unlocked,
        )

    def scan(self, stats: AchievementStats, earned: Collection[str]) -> list[AchievementConfig]:
        """Achievements unlocked by *stats* and not in *earned*, in catalog order."""
        return [
            ach for ach in self._catalog.achievements
            if ach.id not in earned and self.evaluate(stats, ach).unlocked
        ]

    def progress(self, stats: AchievementStats) -> list[AchievementProgress]:
        return [self.evaluate(stats, ach) for ach in self._catalog.achievements]

    def apply_unlocks(
        self,
        change: ProgressionChange,
        stats: AchievementStats,
        earned: Collection[str],
    ) -> list[str]:
        """Stage every newly unlocked achievement and its rewards on *change*.

        Rewards can raise XP and level, which can unlock further achievements,
        so the scan repeats until nothing new unlocks. Returns the ids granted.
        """
        held = set(earned) | set(change.achievements)
        granted: list[str] = []

        while True:
            fresh = self.scan(stats, held)
            if not fresh:
                break
            for ach in fresh:
                held.add(ach.id)
                granted.append(ach.id)
                change.achievements.append(ach.id)
                if ach.xp_reward > 0:
                    change.add_xp(ach.xp_reward)
                if ach.gem_reward > 0:
                    change.add_ledger(ach.gem_reward, LedgerReason.ACHIEVEMENT_REWARD, ach.id)
                self._logger.info(
                    "Achievement awarded: %s → %s (+%d XP, +%d gems)",
                    change.user_id, ach.id, ach.xp_reward, ach.gem_reward,
                )
            stats = self.refresh_stats(stats, change)

        return granted

    def refresh_stats(self, stats: AchievementStats, change: ProgressionChange) -> AchievementStats:
        """Copy of *stats* with XP, level and streak taken from *change*."""
        return AchievementStats(
            total_xp=change.total_xp,
            level=self._curve.level_for_xp(change.total_xp),
            streak_current=change.streak_current,
            streak_longest=change.streak_longest,
            total_questions=stats.total_questions,
            correct_answers=stats.correct_answers,
            perfect_quizzes=stats.perfect_quizzes,
            recent_accuracies=stats.recent_accuracies,
            category_questions=stats.category_questions,
            social=stats.social,
        )

    # ══════════════════════════════════════════════════════════
    #  Requirement Evaluators
    # ══════════════════════════════════════════════════════════

    @staticmethod
    def _threshold(current: float, target: float) -> tuple[float, float, bool]:
        return current, target, current >= target

    def _eval_min_total_xp(self, stats: AchievementStats, req: MinTotalXP) -> tuple[float, float, bool]:
        return self._threshold(stats.total_xp, req.value)

    def _eval_min_level(self, stats: AchievementStats, req: MinLevel) -> tuple[float, float, bool]:
        return self._threshold(stats.level, req.value)

    def _eval_min_streak(self, stats: AchievementStats, req: MinStreak) -> tuple[float, float, bool]:
        return self._threshold(stats.streak_current, req.value)

    def _eval_min_questions(self, stats: AchievementStats, req: MinQuestions) -> tuple[float, float, bool]:
        return self._threshold(stats.total_questions, req.value)

    def _eval_min_perfect_quizzes(
        self, stats: AchievementStats, req: MinPerfectQuizzes,
    ) -> tuple[float, float, bool]:
        return self._threshold(stats.perfect_quizzes, req.value)

    def _eval_accuracy_over_window(
        self, stats: AchievementStats, req: AccuracyOverWindow,
    ) -> tuple[float, float, bool]:
        window = stats.recent_accuracies[: req.window_size]
        if not window:
            return 0.0, req.threshold, False
        average = sum(window) / len(window)
        # A short history never unlocks, however accurate
        return average, req.threshold, len(window) >= req.window_size and average >= req.threshold

    def _eval_min_category_questions(
        self, stats: AchievementStats, req: MinCategoryQuestions,
    ) -> tuple[float, float, bool]:
        return self._threshold(stats.category_questions.get(req.category, 0), req.value)

    def _eval_min_social(self, stats: AchievementStats, req: MinSocial) -> tuple[float, float, bool]:
        return self._threshold(stats.social.get(req.counter, 0), req.value)
