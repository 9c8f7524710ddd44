"""Process-exclusion lock shared by every installer run on the machine"""

import os
import logging
from pathlib import Path
from typing import Optional

import psutil

from .errors import LockError

logger = logging.getLogger(__name__)


class InstallLock:
    """
    Lock file holding the owner's PID.

    A lock whose PID is no longer alive is stale and is reclaimed.
    Usable as a context manager; release() never raises.
    """

    def __init__(self, lock_file: Path):
        self.lock_file = Path(lock_file)
        self.held = False

    def read_owner(self) -> Optional[int]:
        """Return the PID recorded in the lock file, if any"""
        try:
            content = self.lock_file.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read lock file {self.lock_file}: {e}")
            return None
        try:
            return int(content)
        except ValueError:
            return None

    @staticmethod
    def is_alive(pid: int) -> bool:
        return pid > 0 and psutil.pid_exists(pid)

    def acquire(self) -> None:
        """
        Take the lock for this process.

        Raises:
            LockError: A live process already holds the lock
        """
        own_pid = os.getpid()
        for _ in range(2):
            try:
                fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                pid = self.read_owner()
                if pid == own_pid:
                    self.held = True
                    return
                if pid is not None and self.is_alive(pid):
                    raise LockError(pid, str(self.lock_file))
                logger.warning("Removing stale lock file")
                self.lock_file.unlink(missing_ok=True)
                continue

            with os.fdopen(fd, "w") as f:
                f.write(f"{own_pid}\n")
            self.held = True
            logger.debug(f"Lock acquired: {self.lock_file}")
            return

        # Lost the race twice to another process recreating the file
        pid = self.read_owner()
        raise LockError(pid or 0, str(self.lock_file))

    def release(self) -> None:
        try:
            self.lock_file.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove lock file {self.lock_file}: {e}")
        self.held = False

    def __enter__(self) -> "InstallLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
