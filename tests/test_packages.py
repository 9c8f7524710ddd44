"""Unit tests for PackageManager."""

import subprocess

import pytest
from unittest.mock import patch, MagicMock

from hyprdots.config import RetryPolicy
from hyprdots.packages import PackageManager, BASE_PACKAGES


def completed(returncode=0, stdout=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout)


@pytest.fixture
def manager(config):
    return PackageManager(config)


class TestRetryPolicy:
    """Test backoff delays."""

    def test_delays(self):
        assert list(RetryPolicy(3, 5.0, 2.0).delays()) == [5.0, 10.0]
        assert list(RetryPolicy(1, 5.0, 2.0).delays()) == []


class TestInstall:
    """Test package installation with retries."""

    def test_succeeds_first_attempt(self, manager):
        with patch("hyprdots.packages.subprocess.run", return_value=completed()) as run, \
                patch("hyprdots.packages.time.sleep") as sleep:
            assert manager.install(["kitty", "zsh"]) is True

        run.assert_called_once()
        assert run.call_args[0][0] == ["sudo", "pacman", "-S", "--needed", "--noconfirm", "kitty", "zsh"]
        sleep.assert_not_called()

    def test_retries_with_backoff(self, manager):
        results = [completed(1, "error: failed retrieving file"), completed(1), completed(0)]
        policy = RetryPolicy(max_attempts=3, initial_delay=5.0, backoff=2.0)
        with patch("hyprdots.packages.subprocess.run", side_effect=results) as run, \
                patch("hyprdots.packages.time.sleep") as sleep:
            assert manager.install(["kitty"], policy=policy) is True

        assert run.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [5.0, 10.0]

    def test_gives_up_after_max_attempts(self, manager):
        with patch("hyprdots.packages.subprocess.run", return_value=completed(1)) as run, \
                patch("hyprdots.packages.time.sleep") as sleep:
            assert manager.install(["kitty"]) is False

        assert run.call_count == manager.config.retry.max_attempts
        assert sleep.call_count == manager.config.retry.max_attempts - 1

    def test_uses_aur_helper(self, manager):
        with patch("hyprdots.packages.subprocess.run", return_value=completed()) as run:
            manager.install(["quickshell"], helper="paru")
        assert run.call_args[0][0][:2] == ["paru", "-S"]

    def test_missing_command(self, manager):
        with patch("hyprdots.packages.subprocess.run", side_effect=FileNotFoundError("sudo")), \
                patch("hyprdots.packages.time.sleep"):
            assert manager.install(["kitty"]) is False

    def test_dry_run(self, config):
        with patch("hyprdots.packages.subprocess.run") as run:
            assert PackageManager(config.with_options(dry_run=True)).install(["kitty"]) is True
        run.assert_not_called()

    def test_empty_list(self, manager):
        assert manager.install([]) is True


class TestRemove:
    """Test package removal."""

    def test_cascade_fallback(self, manager):
        with patch("hyprdots.packages.subprocess.run",
                   side_effect=[completed(1), completed(0)]) as run:
            assert manager.remove(["waybar"]) is True

        second = run.call_args_list[1][0][0]
        assert second == ["sudo", "pacman", "-Rns", "--noconfirm", "--cascade", "waybar"]

    def test_both_attempts_fail(self, manager):
        with patch("hyprdots.packages.subprocess.run", return_value=completed(1)):
            assert manager.remove(["waybar"]) is False


class TestReset:
    """Test the package side of a full reset."""

    def test_preserves_base_and_apps(self, config):
        manager = PackageManager(config.with_options(preserve_apps=("my-app",)))
        installed = {"firefox", "my-app"}
        manager.is_installed = MagicMock(side_effect=lambda name: name in installed)

        with patch.object(PackageManager, "aur_helper", return_value="paru"):
            keep = manager.preserve_list()

        assert set(BASE_PACKAGES) <= set(keep)
        assert "firefox" in keep
        assert "my-app" in keep
        assert "paru" in keep
        assert "discord" not in keep

    def test_reset_removes_everything_else(self, manager, config):
        manager.save_package_lists = MagicMock()
        manager.preserve_list = MagicMock(return_value=["base", "firefox"])
        manager.list_explicit = MagicMock(return_value=["base", "firefox", "waybar", "kitty"])
        manager.remove = MagicMock(return_value=True)
        manager.clean_orphans = MagicMock()
        manager.clean_cache = MagicMock()

        assert manager.reset_packages() is True
        manager.remove.assert_called_once_with(["waybar", "kitty"])
        manager.save_package_lists.assert_called_once_with(config.backup_root)

    def test_save_package_lists(self, manager, tmp_path):
        with patch("hyprdots.packages.subprocess.run", return_value=completed(0, "kitty 1.0\n")):
            manager.save_package_lists(tmp_path / "lists")
        assert (tmp_path / "lists" / "pre-reset-packages.txt").read_text() == "kitty 1.0\n"
        assert (tmp_path / "lists" / "pre-reset-aur-packages.txt").exists()


class TestInstallDependencies:
    """Test the dependency installation flow."""

    @pytest.fixture
    def quiet(self):
        with patch("hyprdots.packages.SystemProbe.detect_gpu", return_value="intel"), \
                patch.object(PackageManager, "_run", return_value=True):
            yield

    def test_critical_package_missing(self, manager, quiet):
        manager.install_aur_helper = MagicMock(return_value=True)
        manager.install = MagicMock(side_effect=[True, False])
        with patch.object(PackageManager, "aur_helper", return_value="paru"), \
                patch("hyprdots.packages.shutil.which", return_value=None):
            manager.is_installed = MagicMock(side_effect=lambda name: name != "quickshell")
            assert manager.install_dependencies() is False

        manager.install.assert_called_with(["quickshell"], helper="paru")

    def test_without_aur_helper(self, manager, quiet):
        manager.install_aur_helper = MagicMock(return_value=False)
        manager.install = MagicMock(return_value=True)
        manager.is_installed = MagicMock(return_value=True)
        with patch.object(PackageManager, "aur_helper", return_value=None):
            assert manager.install_dependencies() is True

        packages = manager.install.call_args_list[0][0][0]
        assert "hyprland" in packages
        assert "quickshell" not in packages
