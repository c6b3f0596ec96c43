"""Leaderboard aggregator — XP earned per calendar window, ranked.

Each window keeps its own ``xp_in_window`` counter per period key; a new
week or month simply starts a new key at zero. Rank order is
``xp DESC, reached_at ASC, user_id ASC``.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

from .models import LeaderboardEntry, LeaderboardWindow
from .utils import parse_timestamp

if TYPE_CHECKING:
    from .clock import Clock
    from .config import ProgressionConfig
    from .database import ProgressionChange, ProgressionDatabase


class LeaderboardAggregator:
    """Tracks window XP and answers ranking queries."""

    def __init__(
        self,
        config: ProgressionConfig,
        database: ProgressionDatabase,
        clock: Clock,
        logger: logging.Logger,
    ) -> None:
        self._config = config
        self._db = database
        self._clock = clock
        self._logger = logger

    @staticmethod
    def _window(window: LeaderboardWindow | str) -> LeaderboardWindow:
        if isinstance(window, LeaderboardWindow):
            return window
        try:
            return LeaderboardWindow(window)
        except ValueError:
            raise ValueError(f"Unknown leaderboard window: {window!r}") from None

    def track(self, change: ProgressionChange) -> None:
        """Stage this change's earned XP into every window's current period."""
        if change.xp_earned <= 0:
            return
        day = change.now.date()
        for window in LeaderboardWindow:
            change.leaderboard_periods[window.value] = self._clock.period_key(window, day)

    async def get_leaderboard(
        self,
        window: LeaderboardWindow | str,
        limit: int | None = None,
        day: date | None = None,
    ) -> list[LeaderboardEntry]:
        """Top entries for the period containing *day* (default: today)."""
        lb_window = self._window(window)
        cfg = self._config.leaderboard
        if limit is None:
            limit = cfg.default_limit
        limit = max(1, min(limit, cfg.max_limit))
        period = self._clock.period_key(lb_window, day)

        rows = await self._db.get_leaderboard(lb_window.value, period, limit)
        return [
            LeaderboardEntry(
                rank=i,
                user_id=r["user_id"],
                window=lb_window,
                period=period,
                xp_in_window=r["xp"],
                reached_at=parse_timestamp(r["reached_at"]),
            )
            for i, r in enumerate(rows, 1)
        ]

    async def xp_in_window(
        self, user_id: str, window: LeaderboardWindow | str, day: date | None = None,
    ) -> int:
        lb_window = self._window(window)
        row = await self._db.get_window_xp(
            user_id, lb_window.value, self._clock.period_key(lb_window, day),
        )
        return row["xp"] if row else 0

    async def rank_of(
        self, user_id: str, window: LeaderboardWindow | str, day: date | None = None,
    ) -> int | None:
        """1-based rank in the current period, or None if unranked."""
        lb_window = self._window(window)
        period = self._clock.period_key(lb_window, day)
        row = await self._db.get_window_xp(user_id, lb_window.value, period)
        if row is None or row["xp"] <= 0:
            return None
        ahead = await self._db.count_ahead(
            lb_window.value, period, row["xp"], row["reached_at"], user_id,
        )
        return ahead + 1

    async def prune(self, window: LeaderboardWindow | str, keep_periods: list[str]) -> int:
        """Drop stored periods of *window* not listed in *keep_periods*."""
        lb_window = self._window(window)
        if not keep_periods:
            raise ValueError("keep_periods must name at least one period")
        removed = await self._db.prune_leaderboard(lb_window.value, keep_periods)
        if removed:
            self._logger.info("Pruned %d %s leaderboard rows", removed, lb_window.value)
        return removed
