"""Read-only catalog of achievements, daily challenges and store items."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

from .models import ChallengeRewards, DailyChallenge, StoreItem

if TYPE_CHECKING:
    from .config import AchievementConfig, ChallengeTemplateConfig, ProgressionConfig


class Catalog:
    """Static definitions built once from config."""

    def __init__(self, config: ProgressionConfig) -> None:
        self._achievements: list[AchievementConfig] = list(config.achievements)
        self._achievements_by_id = {a.id: a for a in self._achievements}
        self._store = {
            item.id: StoreItem(id=item.id, name=item.name or item.id, kind=item.kind, cost=item.cost)
            for item in config.store.items
            if item.active
        }
        self._templates = {t.id: t for t in config.daily_challenges.templates}
        self._fixed = {
            c.id: self._build_challenge(c, c.id, c.valid_date)
            for c in config.daily_challenges.fixed
        }

    # ── Achievements ─────────────────────────────────────────

    @property
    def achievements(self) -> list[AchievementConfig]:
        return self._achievements

    def achievement(self, achievement_id: str) -> AchievementConfig | None:
        return self._achievements_by_id.get(achievement_id)

    # ── Store ────────────────────────────────────────────────

    @property
    def store_items(self) -> list[StoreItem]:
        return list(self._store.values())

    def store_item(self, item_id: str) -> StoreItem | None:
        return self._store.get(item_id)

    # ── Daily challenges ─────────────────────────────────────

    def challenges_for(self, day: date) -> list[DailyChallenge]:
        """Fixed challenges dated *day*, then every template instantiated for it."""
        fixed = [c for c in self._fixed.values() if c.valid_date == day]
        generated = [
            self._build_challenge(t, f"{t.id}-{day.isoformat()}", day)
            for t in self._templates.values()
        ]
        return fixed + generated

    def challenge(self, challenge_id: str) -> DailyChallenge | None:
        """Resolve a fixed id or a ``<template>-<YYYY-MM-DD>`` id."""
        if challenge_id in self._fixed:
            return self._fixed[challenge_id]

        template_id, sep, day_str = challenge_id.partition("-")
        template = self._templates.get(template_id)
        if not sep or template is None:
            return None
        try:
            day = date.fromisoformat(day_str)
        except ValueError:
            return None
        # Reject non-canonical spellings so one challenge has one id
        if day.isoformat() != day_str:
            return None
        return self._build_challenge(template, challenge_id, day)

    @staticmethod
    def _build_challenge(
        source: ChallengeTemplateConfig, challenge_id: str, day: date,
    ) -> DailyChallenge:
        return DailyChallenge(
            id=challenge_id,
            title=source.title or challenge_id,
            description=source.description,
            requirement_type=source.requirement.type,
            target=source.requirement.target,
            rewards=ChallengeRewards(
                xp=source.rewards.xp, gems=source.rewards.gems, lives=source.rewards.lives,
            ),
            valid_date=day,
        )
