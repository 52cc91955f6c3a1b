"""Tests for configuration management functionality."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from config import (
    DEFAULT_CONFIG,
    clamp_poll_interval,
    clamp_remote_poll_interval,
    get_data_dir,
    get_gh_command,
    get_poll_interval,
    get_remote_poll_interval,
    load_config,
    save_config,
    set_poll_interval,
    set_remote_poll_interval,
)


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_config_existing_file(self, config_file: Path, sample_config: dict):
        assert load_config(config_file) == sample_config

    def test_load_config_nonexistent_file(self, temp_dir: Path):
        config = load_config(temp_dir / "nonexistent.json")
        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_load_config_invalid_json(self, temp_dir: Path):
        bad = temp_dir / "settings.json"
        bad.write_text("{ invalid json }")
        assert load_config(bad) == DEFAULT_CONFIG

    def test_load_config_non_object(self, temp_dir: Path):
        bad = temp_dir / "settings.json"
        bad.write_text("[1, 2, 3]")
        assert load_config(bad) == DEFAULT_CONFIG

    def test_load_config_fills_missing_keys(self, temp_dir: Path):
        partial = temp_dir / "settings.json"
        partial.write_text(json.dumps({"git_poll_interval": 20}))

        config = load_config(partial)

        assert config["git_poll_interval"] == 20
        assert config["remote_poll_interval"] == DEFAULT_CONFIG["remote_poll_interval"]
        assert config["gh_command"] is None

    def test_load_config_clamps_intervals(self, temp_dir: Path):
        path = temp_dir / "settings.json"
        path.write_text(json.dumps({"git_poll_interval": 1, "remote_poll_interval": 5000}))

        config = load_config(path)

        assert config["git_poll_interval"] == 10
        assert config["remote_poll_interval"] == 600

    def test_load_config_replaces_garbage_intervals(self, temp_dir: Path):
        path = temp_dir / "settings.json"
        path.write_text(json.dumps({"git_poll_interval": "soon", "remote_poll_interval": None}))

        config = load_config(path)

        assert config["git_poll_interval"] == 60
        assert config["remote_poll_interval"] == 60


class TestSaveConfig:
    """Tests for save_config function."""

    def test_save_creates_parent_dirs(self, temp_dir: Path, sample_config: dict):
        target = temp_dir / "nested" / "settings.json"
        save_config(sample_config, target)
        assert json.loads(target.read_text()) == sample_config

    def test_save_leaves_no_temp_file(self, temp_dir: Path, sample_config: dict):
        target = temp_dir / "settings.json"
        save_config(sample_config, target)
        assert [p.name for p in temp_dir.iterdir()] == ["settings.json"]


class TestIntervals:
    """Tests for interval accessors and clamping."""

    @pytest.mark.parametrize("value,expected", [(5, 10), (10, 10), (60, 60), (600, 600), (10000, 600)])
    def test_clamp_poll_interval(self, value, expected):
        assert clamp_poll_interval(value) == expected

    @pytest.mark.parametrize("value,expected", [(5, 30), (30, 30), (120, 120), (10000, 600)])
    def test_clamp_remote_poll_interval(self, value, expected):
        assert clamp_remote_poll_interval(value) == expected

    def test_setters_store_clamped_values(self):
        cfg = DEFAULT_CONFIG.copy()
        assert set_poll_interval(cfg, 5) == 10
        assert set_remote_poll_interval(cfg, 10000) == 600
        assert get_poll_interval(cfg) == 10
        assert get_remote_poll_interval(cfg) == 600


class TestOtherSettings:
    """Tests for remaining accessors."""

    def test_gh_command(self, sample_config: dict):
        assert get_gh_command(sample_config) == "/usr/local/bin/gh"
        assert get_gh_command({"gh_command": ""}) is None

    def test_data_dir_override(self, temp_dir: Path):
        assert get_data_dir({"data_dir": str(temp_dir)}) == temp_dir

    def test_data_dir_default(self, temp_dir: Path):
        with patch("config._config_dir", return_value=temp_dir):
            assert get_data_dir({"data_dir": None}) == temp_dir / "data"
