"""
tests/test_config.py — YAML Configuration Tests
================================================
"""

from __future__ import annotations

from pathlib import Path

import pytest

from squadplanner.config import config_from_mapping, load_config
from squadplanner.engine.lifecycle import AutoConfirmPolicy
from squadplanner.errors import ValidationError

EXAMPLE = Path(__file__).resolve().parent.parent / "config.yaml.example"

REQUIRED = {"app_name": "Squad Planner", "bot_prefix": "!", "api_port": 8000}


class TestLoadConfig:
    def test_example_file_loads(self):
        cfg = load_config(EXAMPLE)
        assert cfg.app_name == "Squad Planner"
        assert cfg.auto_confirm_policy == AutoConfirmPolicy.ON_RSVP
        assert cfg.tz.key == "Europe/Paris"
        assert cfg.announce_channel_id is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_required_key(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("app_name: x\n", encoding="utf-8")
        with pytest.raises(KeyError):
            load_config(path)


class TestConfigFromMapping:
    def test_defaults(self):
        cfg = config_from_mapping(dict(REQUIRED))
        assert cfg.timezone == "UTC"
        assert cfg.default_auto_confirm_threshold == 3
        assert cfg.default_duration_minutes == 120
        assert cfg.recurring_horizon_hours == 48
        assert cfg.materialize_interval_minutes == 15

    def test_manual_policy_and_channel(self):
        cfg = config_from_mapping({
            **REQUIRED, "auto_confirm_policy": "manual", "announce_channel_id": "123",
        })
        assert cfg.auto_confirm_policy == AutoConfirmPolicy.MANUAL
        assert cfg.announce_channel_id == 123

    @pytest.mark.parametrize(
        "override",
        [
            {"auto_confirm_policy": "sometimes"},
            {"timezone": "Mars/Olympus"},
            {"default_auto_confirm_threshold": 0},
            {"default_duration_minutes": -5},
        ],
    )
    def test_invalid_values_rejected(self, override):
        with pytest.raises(ValidationError):
            config_from_mapping({**REQUIRED, **override})
