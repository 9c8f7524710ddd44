"""Unit tests for configuration loading."""

import json
from pathlib import Path

from hyprdots.config import (
    DEFAULT_CONFIG, InstallerConfig, TRACKED_BY_NAME, load_config_file,
)


class TestLoadConfigFile:
    """Test the JSON config file merge."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config_file(str(tmp_path / "missing.json")) == DEFAULT_CONFIG

    def test_partial_file_is_merged(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"min_free_mb": 50, "bogus": 1}))

        config = load_config_file(str(path))

        assert config["min_free_mb"] == 50
        assert config["lock_file"] == DEFAULT_CONFIG["lock_file"]
        assert "bogus" not in config

    def test_invalid_json_falls_back(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert load_config_file(str(path)) == DEFAULT_CONFIG


class TestInstallerConfig:
    """Test InstallerConfig construction."""

    def test_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "retry": {"max_attempts": 5},
            "preserve_apps": ["my-app"],
        }))

        config = InstallerConfig.from_environment(
            config_path=str(path), source_dir=str(tmp_path / "src"), dry_run=True)

        assert config.home == tmp_path
        assert config.config_dir == tmp_path / ".config"
        assert config.checkpoint_dir == tmp_path / ".dotfiles-backups" / ".checkpoints"
        assert config.log_dir == tmp_path / ".dotfiles-logs"
        assert config.source_dir == (tmp_path / "src").resolve()
        assert config.retry.max_attempts == 5
        assert config.retry.initial_delay == 5.0
        assert config.preserve_apps == ("my-app",)
        assert config.dry_run is True

    def test_unset_home(self, tmp_path, monkeypatch):
        monkeypatch.delenv("HOME", raising=False)
        config = InstallerConfig.from_environment(config_path=str(tmp_path / "none.json"))
        assert config.home == Path("")

    def test_tracked_entries(self, config):
        assert TRACKED_BY_NAME["hypr"].live_path(config) == config.config_dir / "hypr"
        assert TRACKED_BY_NAME[".zshrc"].live_path(config) == config.home / ".zshrc"
        assert TRACKED_BY_NAME[".zshrc"].is_file
