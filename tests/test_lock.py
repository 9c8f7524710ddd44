"""Unit tests for InstallLock."""

import os

import pytest
from unittest.mock import patch

from hyprdots.errors import LockError
from hyprdots.lock import InstallLock


class TestLockAcquire:
    """Test lock acquisition and stale lock recovery."""

    @pytest.fixture
    def lock_file(self, tmp_path):
        return tmp_path / "dotfiles-install.lock"

    def test_acquire_writes_own_pid(self, lock_file):
        """Test a fresh lock records the current PID."""
        lock = InstallLock(lock_file)
        lock.acquire()

        assert lock.held is True
        assert lock_file.read_text().strip() == str(os.getpid())
        lock.release()

    def test_live_owner_blocks(self, lock_file):
        """Test a lock held by another live process raises LockError."""
        owner = os.getppid()
        lock_file.write_text(f"{owner}\n")

        with pytest.raises(LockError) as excinfo:
            InstallLock(lock_file).acquire()

        assert excinfo.value.pid == owner
        assert str(lock_file) in str(excinfo.value)
        # The other process's lock is untouched
        assert lock_file.read_text().strip() == str(owner)

    def test_dead_owner_is_reclaimed(self, lock_file):
        """Test a lock whose PID is gone is removed and retaken."""
        lock_file.write_text("424242\n")

        with patch("hyprdots.lock.psutil.pid_exists", return_value=False):
            lock = InstallLock(lock_file)
            lock.acquire()

        assert lock_file.read_text().strip() == str(os.getpid())
        lock.release()

    def test_garbage_content_is_stale(self, lock_file):
        """Test an unreadable PID counts as a stale lock."""
        lock_file.write_text("not-a-pid\n")

        lock = InstallLock(lock_file)
        lock.acquire()

        assert lock_file.read_text().strip() == str(os.getpid())
        lock.release()

    def test_own_pid_is_reentrant(self, lock_file):
        """Test acquiring twice from the same process succeeds."""
        lock = InstallLock(lock_file)
        lock.acquire()
        lock.acquire()

        assert lock.held is True
        lock.release()


class TestLockRelease:
    """Test lock release."""

    def test_release_is_idempotent(self, tmp_path):
        """Test releasing twice, or without holding the lock, never raises."""
        lock_file = tmp_path / "dotfiles-install.lock"
        lock = InstallLock(lock_file)
        lock.release()
        lock.acquire()
        lock.release()
        lock.release()

        assert not lock_file.exists()
        assert lock.held is False

    def test_context_manager_releases_on_error(self, tmp_path):
        """Test the lock file is removed when the block raises."""
        lock_file = tmp_path / "dotfiles-install.lock"

        with pytest.raises(RuntimeError):
            with InstallLock(lock_file):
                assert lock_file.exists()
                raise RuntimeError("boom")

        assert not lock_file.exists()
