"""Level curve — the one canonical XP ↔ level mapping.

Level L needs ``floor(base_xp * growth^(L-1))`` XP on top of level L-1's
threshold. The cumulative thresholds are precomputed up to ``max_level``;
XP beyond the last threshold stays at ``max_level``.
"""

from __future__ import annotations

import math
from bisect import bisect_right
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import LevelCurveConfig, XpConfig


class LevelCurve:
    """Precomputed cumulative XP threshold table with binary-search lookup."""

    def __init__(self, base_xp: int = 100, growth: float = 1.2, max_level: int = 100) -> None:
        if base_xp < 1:
            raise ValueError("base_xp must be at least 1")
        if growth < 1.0:
            raise ValueError("growth must be >= 1.0")
        if max_level < 2:
            raise ValueError("max_level must be at least 2")

        # _thresholds[i] is the total XP needed to reach level i + 1
        self._thresholds: list[int] = [0]
        for level in range(1, max_level):
            step = max(1, math.floor(round(base_xp * growth ** (level - 1), 6)))
            self._thresholds.append(self._thresholds[-1] + step)

    @classmethod
    def from_config(cls, config: LevelCurveConfig) -> LevelCurve:
        return cls(config.base_xp, config.growth, config.max_level)

    @property
    def max_level(self) -> int:
        return len(self._thresholds)

    def xp_required_for_level(self, level: int) -> int:
        """Total XP at which *level* is reached."""
        if level < 1 or level > self.max_level:
            raise ValueError(f"Level {level} outside 1..{self.max_level}")
        return self._thresholds[level - 1]

    def level_for_xp(self, xp: int) -> int:
        """Greatest level whose threshold is <= *xp*."""
        if xp < 0:
            raise ValueError("XP cannot be negative")
        return bisect_right(self._thresholds, xp)

    def xp_into_current_level(self, xp: int) -> int:
        return xp - self.xp_required_for_level(self.level_for_xp(xp))

    def xp_to_next_level(self, xp: int) -> int:
        """XP still needed for the next level; 0 at max level."""
        level = self.level_for_xp(xp)
        if level >= self.max_level:
            return 0
        return self.xp_required_for_level(level + 1) - xp


def streak_multiplier(streak: int, config: XpConfig) -> float:
    """XP multiplier for a running streak, capped at ``streak_bonus_cap_days``."""
    days = min(max(streak, 0), config.streak_bonus_cap_days)
    return 1.0 + config.streak_bonus_per_day * days


def quiz_xp(
    base_xp: int,
    accuracy: float,
    time_bonus: bool = False,
    streak_mult: float = 1.0,
    difficulty_mult: float = 1.0,
    time_bonus_mult: float = 1.25,
) -> int:
    """XP earned by a finished quiz.

    80%+ accuracy earns up to +40% (at 100%), a fast finish multiplies by
    *time_bonus_mult*, then streak and difficulty multipliers apply.
    """
    if not 0.0 <= accuracy <= 1.0:
        raise ValueError("accuracy must be a fraction in [0, 1]")
    xp = float(base_xp)
    if accuracy >= 0.8:
        xp *= 1 + (accuracy - 0.8) * 2
    if time_bonus:
        xp *= time_bonus_mult
    xp *= streak_mult
    xp *= difficulty_mult
    # Round first so 0.85 accuracy doesn't floor 109.999... down to 109
    return max(0, math.floor(round(xp, 6)))
