"""Tests for progression_engine.config module."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from progression_engine.config import (
    AccuracyOverWindow,
    MinTotalXP,
    OnboardingConfig,
    ProgressionConfig,
    load_config,
)


class TestProgressionConfig:
    """ProgressionConfig model parsing and validation."""

    def test_empty_config_uses_defaults(self):
        """An empty config yields the shipped catalogs."""
        cfg = ProgressionConfig()
        assert cfg.database.path == "progression.db"
        assert cfg.level_curve.base_xp == 100
        assert cfg.level_curve.growth == 1.2
        assert cfg.engine.max_retries == 5
        assert any(a.id == "streak_7" for a in cfg.achievements)
        assert {i.id for i in cfg.store.items} >= {"streak_freeze", "extra_life", "life_refill"}
        assert [t.id for t in cfg.daily_challenges.templates] == [
            "daily_questions", "daily_accuracy", "daily_streak",
        ]

    def test_full_config(self, sample_config_dict: dict):
        cfg = ProgressionConfig(**sample_config_dict)
        assert [a.id for a in cfg.achievements] == ["first_quiz", "xp_300", "streak_3"]
        assert cfg.onboarding.max_lives == 5

    def test_requirement_discriminated(self):
        cfg = ProgressionConfig(achievements=[
            {"id": "a", "requirement": {"type": "min_total_xp", "value": 300}},
            {"id": "b", "requirement": {"type": "accuracy_over_window", "threshold": 90, "window_size": 10}},
        ])
        assert isinstance(cfg.achievements[0].requirement, MinTotalXP)
        assert isinstance(cfg.achievements[1].requirement, AccuracyOverWindow)

    def test_unknown_requirement_rejected(self):
        with pytest.raises(ValidationError):
            ProgressionConfig(achievements=[{"id": "a", "requirement": {"type": "min_vibes", "value": 1}}])

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValidationError):
            ProgressionConfig(achievements=[
                {"id": "a", "requirement": {"type": "min_level", "value": 2}},
                {"id": "a", "requirement": {"type": "min_level", "value": 3}},
            ])

    def test_starting_lives_within_max(self):
        with pytest.raises(ValidationError):
            OnboardingConfig(starting_lives=6, max_lives=5)

    def test_template_id_must_be_simple(self):
        """Template ids can't contain '-', which separates the date suffix."""
        with pytest.raises(ValidationError):
            ProgressionConfig(daily_challenges={"templates": [
                {"id": "daily-questions", "requirement": {"type": "questions", "target": 5}},
            ]})

    def test_store_cost_positive(self):
        with pytest.raises(ValidationError):
            ProgressionConfig(store={"items": [{"id": "x", "kind": "hint", "cost": 0}]})


class TestLoadConfig:
    """YAML loading."""

    def test_load_yaml(self, tmp_path: Path, sample_config_dict: dict):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(sample_config_dict))
        cfg = load_config(str(path))
        assert cfg.achievements[0].id == "first_quiz"

    def test_env_expansion(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("PROGRESSION_DB", "/data/prog.db")
        path = tmp_path / "config.yaml"
        path.write_text('database:\n  path: "${PROGRESSION_DB}"\n')
        assert load_config(str(path)).database.path == "/data/prog.db"

    def test_env_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("PROGRESSION_DB", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text('database:\n  path: "${PROGRESSION_DB:-fallback.db}"\n')
        assert load_config(str(path)).database.path == "fallback.db"

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(str(path)).leaderboard.default_limit == 50

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_non_mapping(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            load_config(str(path))

    def test_example_config_is_valid(self):
        example = Path(__file__).resolve().parent.parent / "config.example.yaml"
        cfg = load_config(str(example))
        assert cfg.onboarding.welcome_gems == 20
        assert cfg.daily_challenges.fixed[0].id == "new_year_marathon"
