"""Unit tests for BackupStore."""

import os

import pytest
from unittest.mock import patch

from hyprdots.backups import BackupStore
from hyprdots.errors import BackupVerificationError
from hyprdots.fsops import copy_entry
from tests.helpers import write


class TestBackup:
    """Test backup creation."""

    @pytest.fixture
    def backups(self, config):
        return BackupStore(config)

    def test_nothing_to_backup(self, backups, config):
        """Test an empty home yields an empty result and no directory."""
        result = backups.backup()

        assert result.empty is True
        assert not result.path.exists()
        assert backups.latest() is None

    def test_copies_existing_entries(self, backups, config):
        write(config.config_dir / "waybar" / "config", "{}")
        os.symlink("hypr-stealthiq", config.config_dir / "hypr")
        write(config.home / ".bashrc", "alias x=y\n")
        write(config.config_dir / "untracked" / "file", "skip")

        result = backups.backup()

        assert result.copied == 3
        assert result.failed == 0
        assert (result.path / "waybar" / "config").read_text() == "{}"
        assert os.readlink(result.path / "hypr") == "hypr-stealthiq"
        assert (result.path / ".bashrc").read_text() == "alias x=y\n"
        assert not (result.path / "untracked").exists()

    def test_latest_pointer(self, backups, config):
        write(config.home / ".zshrc", "x")
        result = backups.backup()

        assert config.latest_pointer.read_text() == f"{result.path}\n"
        assert backups.latest() == result.path

    def test_reserved_paths_are_unique(self, backups, config):
        """Test a second backup in the same second gets its own directory."""
        write(config.home / ".zshrc", "x")
        with patch("hyprdots.backups.time.strftime", return_value="20240101-120000"):
            first = backups.backup().path
            second = backups.new_backup_path()

        assert first.name == "backup-20240101-120000"
        assert second.name == "backup-20240101-120000-1"

    def test_copy_failure_is_a_warning(self, backups, config):
        write(config.home / ".zshrc", "x")
        write(config.home / ".bashrc", "y")

        real_copy = copy_entry

        def flaky(source, destination):
            if source.name == ".bashrc":
                raise PermissionError("denied")
            real_copy(source, destination)

        with patch("hyprdots.backups.copy_entry", side_effect=flaky):
            result = backups.backup()

        assert result.copied == 1
        assert result.failed == 1

    def test_verification_failure(self, backups, config):
        """Test copies reported into an empty directory raise."""
        write(config.home / ".zshrc", "x")

        with patch("hyprdots.backups.copy_entry"):
            with pytest.raises(BackupVerificationError) as excinfo:
                backups.backup()

        assert excinfo.value.copied == 1
        assert backups.latest() is None

    def test_dry_run_writes_nothing(self, config):
        write(config.home / ".zshrc", "x")
        result = BackupStore(config.with_options(dry_run=True)).backup()

        assert result.empty
        assert not config.backup_root.exists()
