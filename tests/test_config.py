"""
tests/test_config.py — YAML Configuration Loader Tests
=======================================================
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
import yaml

from rankup.config import build_ladder, load_config
from rankup.engine.ranks import ThresholdMode

EXAMPLE = Path(__file__).resolve().parent.parent / "config.yaml.example"


def _minimal() -> dict:
    return {
        "community_name": "Test Guild",
        "guild_id": 111,
        "admin_role_id": 222,
        "ranks": [
            {"name": "Newcomer", "role_id": 1},
            {"name": "Regular", "role_id": 2, "required_messages": 50, "mode": "OR"},
        ],
    }


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestLoadConfig:

    def test_example_file_loads(self):
        cfg = load_config(EXAMPLE)
        assert cfg.ladder[0].name == "Newcomer"
        assert len(cfg.ladder) == 3
        assert cfg.ladder.permission_role_for(2) == 223456789012345602
        assert cfg.reset_first_boundary == "01-01"

    def test_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, _minimal()))
        assert cfg.bot_prefix == "!"
        assert cfg.cooldown == timedelta(hours=48)
        assert cfg.min_voice_session == timedelta(seconds=60)
        assert cfg.reset_interval_days == 14
        assert cfg.reset_retry_delay == timedelta(minutes=60)
        assert cfg.reset_first_boundary is None
        assert cfg.reset_timezone == "UTC"
        assert cfg.announce_channel_id is None
        assert cfg.require_ranking_role is True

    def test_mode_is_case_insensitive(self, tmp_path):
        cfg = load_config(_write(tmp_path, _minimal()))
        assert cfg.ladder[1].mode is ThresholdMode.OR

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "nope.yaml")

    def test_missing_required_key(self, tmp_path):
        data = _minimal()
        del data["guild_id"]
        with pytest.raises(KeyError):
            load_config(_write(tmp_path, data))

    def test_unknown_timezone(self, tmp_path):
        data = _minimal() | {"reset": {"timezone": "Mars/Olympus"}}
        with pytest.raises(ValueError, match="timezone"):
            load_config(_write(tmp_path, data))

    def test_non_positive_interval(self, tmp_path):
        data = _minimal() | {"reset": {"interval_days": 0}}
        with pytest.raises(ValueError, match="interval_days"):
            load_config(_write(tmp_path, data))

    def test_empty_ladder(self, tmp_path):
        data = _minimal() | {"ranks": []}
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, data))


class TestBuildLadder:

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="threshold mode"):
            build_ladder([{"name": "A", "role_id": 1, "mode": "xor"}], None)

    def test_permission_reference_must_exist(self):
        with pytest.raises(ValueError):
            build_ladder(
                [{"name": "A", "role_id": 1, "permission_id": "ghost"}],
                [{"id": "member", "name": "Member", "role_id": 9}],
            )
