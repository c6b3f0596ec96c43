"""Shared utility helpers for the progression engine."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class VersionConflict(Exception):
    """A progression row changed between snapshot read and commit."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"Concurrent update on progression for {user_id}")
        self.user_id = user_id


def parse_timestamp(ts: str | None) -> datetime | None:
    """Parse a stored ISO timestamp to a timezone-aware datetime, or None."""
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(ts)
        # Naive timestamps are stored as UTC
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, TypeError):
        return None


def iso_week_str(day: date) -> str:
    """Return ISO week string like '2026-W09'."""
    return day.strftime("%G-W%V")


def month_str(day: date) -> str:
    """Return month string like '2026-03'."""
    return day.strftime("%Y-%m")


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    logger: logging.Logger,
    on_exhausted: Callable[[], T],
) -> T:
    """Run *operation*, re-running it from a fresh snapshot on VersionConflict.

    After *attempts* conflicts the value of ``on_exhausted()`` is returned.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except VersionConflict as e:
            logger.debug(
                "Version conflict for %s (attempt %d/%d)", e.user_id, attempt, attempts,
            )
    logger.warning("Giving up after %d conflicting attempts", attempts)
    return on_exhausted()
