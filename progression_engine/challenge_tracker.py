"""Daily challenge tracker — calendar-scoped progress, completion and rewards.

Progress is computed server-side from recorded activity. A claim is accepted
only for today's challenges and only once progress has reached the target.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Mapping

from .models import (
    ActivityMeta,
    ChallengeProgress,
    ChallengeStatus,
    DailyChallenge,
    LedgerReason,
    ResultKind,
)
from .utils import parse_timestamp

if TYPE_CHECKING:
    from .catalog import Catalog
    from .database import ProgressionChange


class ChallengeTracker:
    """Advances and claims daily challenges."""

    def __init__(self, catalog: Catalog, logger: logging.Logger) -> None:
        self._catalog = catalog
        self._logger = logger

    def challenges_for(self, day: date) -> list[DailyChallenge]:
        return self._catalog.challenges_for(day)

    def challenge(self, challenge_id: str) -> DailyChallenge | None:
        return self._catalog.challenge(challenge_id)

    # ══════════════════════════════════════════════════════════
    #  Progress
    # ══════════════════════════════════════════════════════════

    def advance(
        self,
        change: ProgressionChange,
        rows: Mapping[str, dict],
        day: date,
        xp: int,
        meta: ActivityMeta,
        active_today: bool,
    ) -> list[str]:
        """Stage progress from one activity on *change*. Returns advanced ids."""
        advanced: list[str] = []
        for challenge in self.challenges_for(day):
            row = rows.get(challenge.id)
            if row and row["is_completed"]:
                continue
            current = row["progress"] if row else 0
            updated = min(self._next_progress(challenge, current, xp, meta, active_today), challenge.target)
            if updated > current:
                change.challenge_progress[challenge.id] = (day, updated)
                advanced.append(challenge.id)
                self._logger.debug(
                    "Challenge %s for %s: %d/%d", challenge.id, change.user_id, updated, challenge.target,
                )
        return advanced

    @staticmethod
    def _next_progress(
        challenge: DailyChallenge, current: int, xp: int, meta: ActivityMeta, active_today: bool,
    ) -> int:
        kind = challenge.requirement_type
        if kind == "questions":
            return current + meta.questions
        if kind == "xp":
            return current + xp
        if kind == "accuracy":
            if meta.questions == 0:
                return current
            # Best single quiz today, in whole percent
            return max(current, meta.correct * 100 // meta.questions)
        if kind == "perfect_quizzes":
            return current + (1 if meta.is_perfect else 0)
        if kind == "streak":
            return max(current, 1 if active_today else 0)
        raise ValueError(f"Unhandled challenge requirement: {kind}")

    # ══════════════════════════════════════════════════════════
    #  Claims
    # ══════════════════════════════════════════════════════════

    def claim(
        self,
        change: ProgressionChange,
        challenge: DailyChallenge | None,
        row: dict | None,
        today: date,
    ) -> ResultKind:
        """Validate a claim and stage its rewards on *change*."""
        if challenge is None:
            return ResultKind.NOT_FOUND
        if row and row["is_completed"]:
            return ResultKind.ALREADY_COMPLETED
        if challenge.valid_date != today:
            return ResultKind.EXPIRED
        progress = row["progress"] if row else 0
        if progress < challenge.target:
            return ResultKind.NOT_READY

        rewards = challenge.rewards
        change.challenge_claims[challenge.id] = (challenge.valid_date, progress)
        if rewards.xp > 0:
            change.add_xp(rewards.xp)
        if rewards.gems > 0:
            change.add_ledger(rewards.gems, LedgerReason.CHALLENGE_REWARD, challenge.id)
        if rewards.lives > 0:
            change.lives = min(change.max_lives, change.lives + rewards.lives)

        self._logger.info(
            "Challenge %s claimed by %s (+%d XP, +%d gems, +%d lives)",
            challenge.id, change.user_id, rewards.xp, rewards.gems, rewards.lives,
        )
        return ResultKind.OK

    # ══════════════════════════════════════════════════════════
    #  Status
    # ══════════════════════════════════════════════════════════

    @staticmethod
    def status_of(row: dict | None, target: int | None = None) -> ChallengeStatus:
        """Lifecycle status; progress at *target* counts as completed but unclaimed."""
        if row is None:
            return ChallengeStatus.NOT_STARTED
        if row["claimed_at"]:
            return ChallengeStatus.CLAIMED
        if row["is_completed"] or (target is not None and row["progress"] >= target):
            return ChallengeStatus.COMPLETED
        if row["progress"] > 0:
            return ChallengeStatus.IN_PROGRESS
        return ChallengeStatus.NOT_STARTED

    def progress_for(self, day: date, rows: Mapping[str, dict]) -> list[ChallengeProgress]:
        result = []
        for challenge in self.challenges_for(day):
            row = rows.get(challenge.id)
            result.append(ChallengeProgress(
                challenge=challenge,
                progress=row["progress"] if row else 0,
                status=self.status_of(row, challenge.target),
                completed_at=parse_timestamp(row["completed_at"]) if row else None,
                claimed_at=parse_timestamp(row["claimed_at"]) if row else None,
            ))
        return result
