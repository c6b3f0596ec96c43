"""Shared test fixtures for progression-engine."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio

from progression_engine.clock import FixedClock
from progression_engine.config import ProgressionConfig
from progression_engine.database import ProgressionChange, ProgressionDatabase
from progression_engine.engine import ProgressionEngine

# Wednesday of ISO week 2026-W10
START = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


# ── Minimal config dict matching ProgressionConfig schema ────

def make_config_dict(**overrides) -> dict:
    """Build a valid config dict with a small, predictable catalog."""
    base = {
        "database": {"path": ":memory:"},
        "onboarding": {"welcome_gems": 0, "starting_lives": 5, "max_lives": 5, "starting_freezes": 0},
        "engine": {"max_retries": 5, "recent_accuracy_window": 20},
        "achievements": [
            {
                "id": "first_quiz",
                "title": "First Step",
                "requirement": {"type": "min_questions", "value": 1},
                "gem_reward": 5,
            },
            {
                "id": "xp_300",
                "title": "Three Hundred",
                "category": "milestone",
                "requirement": {"type": "min_total_xp", "value": 300},
            },
            {
                "id": "streak_3",
                "title": "First Streak",
                "category": "streak",
                "requirement": {"type": "min_streak", "value": 3},
            },
        ],
        "daily_challenges": {
            "templates": [
                {
                    "id": "daily_questions",
                    "title": "Daily Goal",
                    "requirement": {"type": "questions", "target": 20},
                    "rewards": {"xp": 100, "gems": 15},
                },
                {
                    "id": "daily_accuracy",
                    "title": "Sharp Aim",
                    "requirement": {"type": "accuracy", "target": 80},
                    "rewards": {"xp": 50, "gems": 5, "lives": 2},
                },
                {
                    "id": "daily_streak",
                    "title": "Keep It Going",
                    "requirement": {"type": "streak", "target": 1},
                    "rewards": {"gems": 3},
                },
            ],
            "fixed": [],
        },
    }
    base.update(overrides)
    return base


def make_change(**fields) -> ProgressionChange:
    """A fresh ProgressionChange for pure component tests."""
    base = dict(
        user_id="alice",
        expected_version=0,
        now=START,
        total_xp=0,
        gems=0,
        lives=5,
        max_lives=5,
        streak_current=0,
        streak_longest=0,
        streak_freezes=0,
        last_active_date=None,
    )
    base.update(fields)
    return ProgressionChange(**base)


@pytest.fixture
def config_factory() -> Callable[..., ProgressionConfig]:
    """Return a factory building ProgressionConfig from make_config_dict overrides."""
    def _factory(**overrides) -> ProgressionConfig:
        return ProgressionConfig(**make_config_dict(**overrides))
    return _factory


@pytest.fixture
def sample_config_dict() -> dict:
    """Return a config dict suitable for tests."""
    return make_config_dict()


@pytest.fixture
def sample_config(sample_config_dict: dict) -> ProgressionConfig:
    """Return a parsed ProgressionConfig."""
    return ProgressionConfig(**sample_config_dict)


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> str:
    """Return a temporary SQLite database path."""
    return str(tmp_path / "test_progression.db")


@pytest_asyncio.fixture
async def database(tmp_db_path: str) -> AsyncGenerator[ProgressionDatabase, None]:
    """Provide an initialized database with temp file."""
    db = ProgressionDatabase(tmp_db_path, logging.getLogger("test"))
    await db.initialize()
    yield db


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture
def engine(sample_config: ProgressionConfig, database: ProgressionDatabase, clock: FixedClock) -> ProgressionEngine:
    return ProgressionEngine(sample_config, database, clock, logging.getLogger("test.engine"))


@pytest.fixture
def engine_factory(
    database: ProgressionDatabase, clock: FixedClock,
) -> Callable[[ProgressionConfig], ProgressionEngine]:
    """Build an engine over the shared database and clock with a custom config."""
    def _factory(config: ProgressionConfig) -> ProgressionEngine:
        return ProgressionEngine(config, database, clock, logging.getLogger("test.engine"))
    return _factory
