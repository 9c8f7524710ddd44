"""Exceptions for the fatal paths of an installer run"""

from typing import List, Optional


class InstallerError(Exception):
    """Base class for errors that abort a run"""


class LockError(InstallerError):
    """Another live installer process holds the lock"""

    def __init__(self, pid: int, lock_file: str):
        self.pid = pid
        self.lock_file = lock_file
        super().__init__(
            f"Another installation is running (PID: {pid}). "
            f"If this is a mistake, remove: {lock_file}"
        )


class PrerequisiteError(InstallerError):
    def __init__(self, failures: List[str]):
        self.failures = failures
        super().__init__(f"{len(failures)} prerequisite check(s) failed")


class BackupVerificationError(InstallerError):
    def __init__(self, path: str, copied: int):
        self.path = path
        self.copied = copied
        super().__init__(
            f"Backup verification failed: {copied} item(s) reported copied "
            f"but {path} is empty"
        )


class CheckpointError(InstallerError):
    def __init__(self, message: str, checkpoint: Optional[str] = None):
        self.checkpoint = checkpoint
        super().__init__(message)


class RunInterrupted(BaseException):
    """
    Raised from signal handlers so that an interrupted run unwinds
    through the orchestrator's cleanup path.
    """

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}")
