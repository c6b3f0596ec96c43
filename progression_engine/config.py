"""Configuration system for the progression engine.

All Pydantic models are defined here with sensible defaults. The default
achievement, store and daily-challenge catalogs are the ones the quiz product
ships with, so an empty config section still yields a working engine.
"""

from __future__ import annotations

import os
import re
from datetime import date
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from pydantic import BaseModel, Field, model_validator


# ═══════════════════════════════════════════════════════════════
#  Core
# ═══════════════════════════════════════════════════════════════

class DatabaseConfig(BaseModel):
    path: str = "progression.db"


class LevelCurveConfig(BaseModel):
    """Geometric level curve: level L needs ``base_xp * growth^(L-1)`` XP."""
    base_xp: int = Field(default=100, ge=1)
    growth: float = Field(default=1.2, ge=1.0)
    max_level: int = Field(default=100, ge=2, le=1000)


class XpConfig(BaseModel):
    base_quiz_xp: int = Field(default=20, ge=0)
    streak_bonus_per_day: float = Field(default=0.01, ge=0.0)
    streak_bonus_cap_days: int = Field(default=30, ge=0)
    time_bonus_multiplier: float = 1.25


class OnboardingConfig(BaseModel):
    welcome_gems: int = Field(default=0, ge=0)
    starting_lives: int = Field(default=5, ge=0)
    max_lives: int = Field(default=5, ge=1)
    starting_freezes: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _lives_within_max(self) -> OnboardingConfig:
        if self.starting_lives > self.max_lives:
            raise ValueError("starting_lives cannot exceed max_lives")
        return self


class EngineConfig(BaseModel):
    max_retries: int = Field(default=5, ge=1)
    recent_accuracy_window: int = Field(
        default=50, ge=1,
        description="How many recent quizzes are loaded for accuracy achievements",
    )


# ═══════════════════════════════════════════════════════════════
#  Achievements
# ═══════════════════════════════════════════════════════════════

class MinTotalXP(BaseModel):
    type: Literal["min_total_xp"] = "min_total_xp"
    value: int = Field(ge=0)


class MinLevel(BaseModel):
    type: Literal["min_level"] = "min_level"
    value: int = Field(ge=1)


class MinStreak(BaseModel):
    type: Literal["min_streak"] = "min_streak"
    value: int = Field(ge=1)


class MinQuestions(BaseModel):
    type: Literal["min_questions"] = "min_questions"
    value: int = Field(ge=1)


class MinPerfectQuizzes(BaseModel):
    type: Literal["min_perfect_quizzes"] = "min_perfect_quizzes"
    value: int = Field(ge=1)


class AccuracyOverWindow(BaseModel):
    """Average accuracy (percent) over the last *window_size* quizzes."""
    type: Literal["accuracy_over_window"] = "accuracy_over_window"
    threshold: float = Field(ge=0, le=100)
    window_size: int = Field(ge=1)


class MinCategoryQuestions(BaseModel):
    type: Literal["min_category_questions"] = "min_category_questions"
    category: str
    value: int = Field(ge=1)


class MinSocial(BaseModel):
    type: Literal["min_social"] = "min_social"
    counter: str
    value: int = Field(ge=1)


Requirement = Annotated[
    Union[
        MinTotalXP,
        MinLevel,
        MinStreak,
        MinQuestions,
        MinPerfectQuizzes,
        AccuracyOverWindow,
        MinCategoryQuestions,
        MinSocial,
    ],
    Field(discriminator="type"),
]


class AchievementConfig(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    category: Literal["learning", "streak", "social", "challenge", "milestone"] = "learning"
    rarity: Literal["common", "rare", "epic", "legendary"] = "common"
    requirement: Requirement
    xp_reward: int = Field(default=0, ge=0)
    gem_reward: int = Field(default=0, ge=0)


def _achievement(
    id: str, title: str, category: str, rarity: str,
    requirement: dict, xp: int, gems: int, description: str = "",
) -> AchievementConfig:
    return AchievementConfig(
        id=id, title=title, description=description or title, category=category,
        rarity=rarity, requirement=requirement, xp_reward=xp, gem_reward=gems,
    )


def _default_achievements() -> list[AchievementConfig]:
    return [
        # Learning
        _achievement("first_quiz", "First Step", "learning", "common",
                     {"type": "min_questions", "value": 1}, 50, 5),
        _achievement("questions_10", "Getting Started", "learning", "common",
                     {"type": "min_questions", "value": 10}, 100, 10),
        _achievement("questions_50", "Knowledge Hunter", "learning", "common",
                     {"type": "min_questions", "value": 50}, 200, 15),
        _achievement("questions_100", "Hundred Club", "learning", "rare",
                     {"type": "min_questions", "value": 100}, 300, 25),
        _achievement("questions_500", "Knowledge Machine", "learning", "epic",
                     {"type": "min_questions", "value": 500}, 500, 50),
        _achievement("questions_1000", "Thousand Legend", "learning", "legendary",
                     {"type": "min_questions", "value": 1000}, 1000, 100),
        # Streaks
        _achievement("streak_3", "First Streak", "streak", "common",
                     {"type": "min_streak", "value": 3}, 75, 10),
        _achievement("streak_7", "One Week", "streak", "common",
                     {"type": "min_streak", "value": 7}, 150, 20),
        _achievement("streak_30", "One Month", "streak", "rare",
                     {"type": "min_streak", "value": 30}, 500, 75),
        _achievement("streak_100", "Hundred Days", "streak", "epic",
                     {"type": "min_streak", "value": 100}, 1500, 200),
        _achievement("streak_365", "One Year", "streak", "legendary",
                     {"type": "min_streak", "value": 365}, 3650, 500),
        # Accuracy
        _achievement("perfect_quiz", "Perfect Quiz", "learning", "common",
                     {"type": "min_perfect_quizzes", "value": 1}, 100, 15),
        _achievement("perfect_5", "Five Perfect", "learning", "rare",
                     {"type": "min_perfect_quizzes", "value": 5}, 250, 30),
        _achievement("accuracy_90", "Sharpshooter", "learning", "rare",
                     {"type": "accuracy_over_window", "threshold": 90, "window_size": 10}, 300, 40),
        # Categories
        _achievement("yks_master", "YKS Master", "learning", "rare",
                     {"type": "min_category_questions", "category": "yks", "value": 50}, 300, 40),
        _achievement("kpss_expert", "KPSS Expert", "learning", "rare",
                     {"type": "min_category_questions", "category": "kpss", "value": 50}, 300, 40),
        # Milestones
        _achievement("level_5", "Rising", "milestone", "common",
                     {"type": "min_level", "value": 5}, 200, 25),
        _achievement("level_10", "Double Digits", "milestone", "rare",
                     {"type": "min_level", "value": 10}, 400, 50),
        _achievement("level_25", "Quarter Century", "milestone", "epic",
                     {"type": "min_level", "value": 25}, 800, 100),
        _achievement("level_50", "Halfway", "milestone", "legendary",
                     {"type": "min_level", "value": 50}, 2000, 250),
    ]


# ═══════════════════════════════════════════════════════════════
#  Daily Challenges
# ═══════════════════════════════════════════════════════════════

class ChallengeRequirementConfig(BaseModel):
    type: Literal["questions", "xp", "accuracy", "perfect_quizzes", "streak"]
    target: int = Field(ge=1)


class ChallengeRewardsConfig(BaseModel):
    xp: int = Field(default=0, ge=0)
    gems: int = Field(default=0, ge=0)
    lives: int = Field(default=0, ge=0)


class ChallengeTemplateConfig(BaseModel):
    """Instantiated for every calendar date as ``<id>-<YYYY-MM-DD>``."""
    id: str = Field(pattern=r"^[A-Za-z0-9_]+$")
    title: str = ""
    description: str = ""
    requirement: ChallengeRequirementConfig
    rewards: ChallengeRewardsConfig = Field(default_factory=ChallengeRewardsConfig)


class DailyChallengeConfig(ChallengeTemplateConfig):
    """A one-off challenge valid on a single date."""
    id: str
    valid_date: date


class DailyChallengesConfig(BaseModel):
    fixed: list[DailyChallengeConfig] = Field(default_factory=list)
    templates: list[ChallengeTemplateConfig] = Field(default_factory=lambda: [
        ChallengeTemplateConfig(
            id="daily_questions", title="Daily Goal", description="Answer 20 questions today",
            requirement={"type": "questions", "target": 20},
            rewards={"xp": 100, "gems": 15},
        ),
        ChallengeTemplateConfig(
            id="daily_accuracy", title="Sharp Aim", description="Reach 80% accuracy in a quiz today",
            requirement={"type": "accuracy", "target": 80},
            rewards={"xp": 150, "gems": 20},
        ),
        ChallengeTemplateConfig(
            id="daily_streak", title="Keep It Going", description="Study today to extend your streak",
            requirement={"type": "streak", "target": 1},
            rewards={"xp": 75, "gems": 10, "lives": 1},
        ),
    ])


# ═══════════════════════════════════════════════════════════════
#  Store & Leaderboard
# ═══════════════════════════════════════════════════════════════

class StoreItemConfig(BaseModel):
    id: str
    name: str = ""
    kind: Literal["streak_freeze", "life_refill", "extra_life", "hint", "skip"]
    cost: int = Field(ge=1)
    active: bool = True


class StoreConfig(BaseModel):
    items: list[StoreItemConfig] = Field(default_factory=lambda: [
        StoreItemConfig(id="streak_freeze", name="Streak Freeze", kind="streak_freeze", cost=10),
        StoreItemConfig(id="extra_life", name="Extra Life", kind="extra_life", cost=5),
        StoreItemConfig(id="life_refill", name="Full Refill", kind="life_refill", cost=15),
        StoreItemConfig(id="hint", name="Hint", kind="hint", cost=3),
        StoreItemConfig(id="skip", name="Skip Question", kind="skip", cost=8),
    ])


class LeaderboardConfig(BaseModel):
    default_limit: int = Field(default=50, ge=1)
    max_limit: int = Field(default=500, ge=1)


# ═══════════════════════════════════════════════════════════════
#  Top-Level Config
# ═══════════════════════════════════════════════════════════════

class ProgressionConfig(BaseModel):
    """Full engine config."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    level_curve: LevelCurveConfig = Field(default_factory=LevelCurveConfig)
    xp: XpConfig = Field(default_factory=XpConfig)
    onboarding: OnboardingConfig = Field(default_factory=OnboardingConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)

    achievements: list[AchievementConfig] = Field(default_factory=_default_achievements)
    daily_challenges: DailyChallengesConfig = Field(default_factory=DailyChallengesConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    leaderboard: LeaderboardConfig = Field(default_factory=LeaderboardConfig)

    @model_validator(mode="after")
    def _unique_ids(self) -> ProgressionConfig:
        for label, ids in (
            ("achievement", [a.id for a in self.achievements]),
            ("store item", [i.id for i in self.store.items]),
            ("challenge template", [t.id for t in self.daily_challenges.templates]),
            ("daily challenge", [c.id for c in self.daily_challenges.fixed]),
        ):
            seen: set[str] = set()
            for item_id in ids:
                if item_id in seen:
                    raise ValueError(f"Duplicate {label} id: {item_id}")
                seen.add(item_id)
        return self


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def load_config(config_path: str) -> ProgressionConfig:
    """Load and validate YAML config file into ProgressionConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return ProgressionConfig(**raw)
