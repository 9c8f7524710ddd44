"""
Run orchestration

Every mutating command runs the same sequence:

    Idle → Locked → PrerequisitesChecked → Checkpointed → BackedUp
         → Mutating → Validated → Success | RolledBack | Failed

A failure or interrupt while mutating or validating restores the run's
checkpoint automatically. Reported validation issues do not: the
checkpoint is reported and rolling back is left to the user. The lock is
released on every exit path, including signals.
"""

import os
import shutil
import signal
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .backups import BackupStore
from .checkpoints import CheckpointStore, CheckpointListing
from .config import InstallerConfig, ACTIVE_LINK, VARIANTS, VARIANT_LABELS
from .conflicts import ConflictDetector
from .dotfiles import Dotfiles
from .errors import (
    LockError, PrerequisiteError, BackupVerificationError, CheckpointError,
    RunInterrupted,
)
from .lock import InstallLock
from .log import success
from .packages import PackageManager
from .system import SystemProbe, require_prerequisites

logger = logging.getLogger(__name__)

INSTALL_MODES = ("stealthiq", "jakoolit", "both")
HANDLED_SIGNALS = ("SIGTERM", "SIGHUP")


class RunState(Enum):
    IDLE = "idle"
    LOCKED = "locked"
    PREREQUISITES_CHECKED = "prerequisites-checked"
    CHECKPOINTED = "checkpointed"
    BACKED_UP = "backed-up"
    MUTATING = "mutating"
    VALIDATED = "validated"
    SUCCESS = "success"
    ROLLED_BACK = "rolled-back"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunResult:
    """Outcome of one orchestrated command"""
    operation: str
    state: RunState = RunState.IDLE
    checkpoint: Optional[Path] = None
    backup: Optional[Path] = None
    issues: List[str] = field(default_factory=list)
    interrupted: bool = False

    @property
    def ok(self) -> bool:
        return self.state in (RunState.SUCCESS, RunState.CANCELLED)

    def fail(self, message: str) -> "RunResult":
        logger.error(message)
        self.issues.append(message)
        self.state = RunState.FAILED
        return self

    def fail_prerequisites(self, error: PrerequisiteError) -> "RunResult":
        self.issues.extend(error.failures)
        self.state = RunState.FAILED
        return self


def prompt_yes_no(question: str, default_yes: bool = True) -> bool:
    suffix = "[Y/n]" if default_yes else "[y/N]"
    try:
        answer = input(f"{question} {suffix}: ").strip().lower()
    except EOFError:
        return default_yes
    if not answer:
        return default_yes
    return answer.startswith("y")


def _raise_interrupted(signum, frame):
    raise RunInterrupted(signum)


@contextmanager
def interruptible():
    """Turn SIGTERM/SIGHUP into RunInterrupted for the duration of a run"""
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = {}
    for name in HANDLED_SIGNALS:
        signum = getattr(signal, name, None)
        if signum is not None:
            previous[signum] = signal.signal(signum, _raise_interrupted)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


class Orchestrator:
    """Sequences lock, checks, checkpoint, backup, mutation and validation"""

    def __init__(self, config: InstallerConfig,
                 lock: Optional[InstallLock] = None,
                 packages: Optional[PackageManager] = None,
                 checkpoints: Optional[CheckpointStore] = None,
                 backups: Optional[BackupStore] = None,
                 conflicts: Optional[ConflictDetector] = None,
                 dotfiles: Optional[Dotfiles] = None,
                 confirm: Callable[..., bool] = prompt_yes_no):
        self.config = config
        self.lock = lock or InstallLock(config.lock_file)
        self.packages = packages or PackageManager(config)
        self.checkpoints = checkpoints or CheckpointStore(config, self.packages)
        self.backups = backups or BackupStore(config)
        self.conflicts = conflicts or ConflictDetector(config)
        self.dotfiles = dotfiles or Dotfiles(config)
        self.confirm = confirm

    # ------------------------------------------------------------------
    # State machine

    def _rollback(self, result: RunResult) -> None:
        logger.warning(f"Rolling back to checkpoint: {result.checkpoint.name}")
        try:
            if not self.checkpoints.restore(result.checkpoint):
                result.issues.append("Some entries could not be restored from the checkpoint")
        except CheckpointError as e:
            result.issues.append(str(e))
            logger.error(str(e))
        result.state = RunState.ROLLED_BACK

    def _confirm_conflicts(self) -> bool:
        conflicts = self.conflicts.detect()
        if conflicts and not self.config.auto_mode and not self.config.dry_run:
            return self.confirm("Continue?", True)
        return True

    def _dry_run(self, result: RunResult, mutate: Callable[[], bool],
                 check_conflicts: bool, need_packages: bool) -> RunResult:
        logger.warning("DRY RUN MODE - No changes will be made")
        try:
            require_prerequisites(self.config, need_packages)
        except PrerequisiteError as e:
            return result.fail_prerequisites(e)
        if check_conflicts:
            self.conflicts.detect()
        self.backups.backup()
        if not mutate():
            return result.fail(f"{result.operation} would fail")
        result.state = RunState.SUCCESS
        return result

    def transaction(self, operation: str, checkpoint_name: str,
                    mutate: Callable[[], bool],
                    validate: Callable[[], List[str]],
                    need_packages: bool = False,
                    need_network: bool = False,
                    check_conflicts: bool = False) -> RunResult:
        """
        Run a destructive operation with checkpoint and rollback.

        Args:
            operation: Name used in messages
            checkpoint_name: Name of the checkpoint taken for this run
            mutate: Performs the change; False or an exception triggers rollback
            validate: Returns unmet post-conditions (empty list when valid)
            need_packages: Require pacman/sudo during prerequisite checks
            need_network: Abort when there is no network connectivity
            check_conflicts: Report existing targets and ask to continue

        Returns:
            RunResult
        """
        result = RunResult(operation)
        if self.config.dry_run:
            return self._dry_run(result, mutate, check_conflicts, need_packages)

        try:
            self.lock.acquire()
        except LockError as e:
            return result.fail(str(e))
        result.state = RunState.LOCKED

        rollback_pending = False
        try:
            with interruptible():
                require_prerequisites(self.config, need_packages)
                if need_network and not SystemProbe.check_network():
                    return result.fail(f"Network required for {operation}")
                result.state = RunState.PREREQUISITES_CHECKED

                if check_conflicts and not self._confirm_conflicts():
                    logger.info("Aborted")
                    result.state = RunState.CANCELLED
                    return result

                backup_path = self.backups.new_backup_path()
                try:
                    result.checkpoint = self.checkpoints.create(checkpoint_name, backup_path)
                except OSError as e:
                    return result.fail(f"Could not create checkpoint: {e}")
                result.state = RunState.CHECKPOINTED

                try:
                    backup = self.backups.backup(backup_path)
                except BackupVerificationError as e:
                    return result.fail(f"Backup failed! Aborting for safety. ({e})")
                if not backup.empty:
                    result.backup = backup.path
                result.state = RunState.BACKED_UP

                result.state = RunState.MUTATING
                rollback_pending = True
                try:
                    mutated = mutate()
                except Exception as e:
                    logger.error(f"{operation} failed: {e}")
                    mutated = False
                if not mutated:
                    rollback_pending = False
                    result.issues.append(f"{operation} failed")
                    self._rollback(result)
                    return result

                logger.info(f"VALIDATING {operation.upper()}")
                issues = validate()
                rollback_pending = False
                result.state = RunState.VALIDATED
                if issues:
                    for issue in issues:
                        logger.error(issue)
                    result.issues.extend(issues)
                    logger.error(f"{operation} validation failed ({len(issues)} issues)")
                    result.state = RunState.FAILED
                    return result

                success(logger, f"{operation} validated")
                result.state = RunState.SUCCESS
                return result
        except PrerequisiteError as e:
            return result.fail_prerequisites(e)
        except (KeyboardInterrupt, RunInterrupted):
            result.interrupted = True
            logger.warning("Operation interrupted")
            if rollback_pending:
                rollback_pending = False
                self._rollback(result)
            else:
                result.state = RunState.FAILED
            return result
        finally:
            if rollback_pending:
                self._rollback(result)
            self.lock.release()

    def locked(self, operation: str, action: Callable[[RunResult], bool],
               need_packages: bool = False) -> RunResult:
        """Run a non-checkpointed command under the lock after prerequisites"""
        result = RunResult(operation)
        acquired = False
        if not self.config.dry_run:
            try:
                self.lock.acquire()
            except LockError as e:
                return result.fail(str(e))
            acquired = True
            result.state = RunState.LOCKED
        try:
            with interruptible():
                require_prerequisites(self.config, need_packages)
                result.state = RunState.PREREQUISITES_CHECKED
                if action(result):
                    result.state = RunState.SUCCESS
                elif result.state is not RunState.FAILED:
                    result.fail(f"{operation} failed")
                return result
        except PrerequisiteError as e:
            return result.fail_prerequisites(e)
        except (KeyboardInterrupt, RunInterrupted):
            result.interrupted = True
            return result.fail("Operation interrupted")
        finally:
            if acquired:
                self.lock.release()

    # ------------------------------------------------------------------
    # Validation helpers

    def _check_active(self, variant: str) -> List[str]:
        link = self.config.config_dir / ACTIVE_LINK
        slot = VARIANTS[variant]
        if not link.is_symlink() or os.readlink(link) != slot:
            return [f"{ACTIVE_LINK} symlink not set correctly (expected → {slot})"]
        return []

    def _check_slot(self, variant: str) -> List[str]:
        if not (self.config.config_dir / VARIANTS[variant]).is_dir():
            return [f"{VARIANT_LABELS[variant]} config missing!"]
        return []

    # ------------------------------------------------------------------
    # Commands

    def install(self, mode: str = "stealthiq") -> RunResult:
        """Install the dotfiles and activate a setup (stealthiq, jakoolit or both)"""
        if mode not in INSTALL_MODES:
            return RunResult("install").fail(f"Unknown install mode: {mode}")
        logger.info(f"Mode: {mode}")

        def mutate() -> bool:
            if mode in ("stealthiq", "both"):
                if not self.dotfiles.copy_dotfiles():
                    return False
                if not self.packages.install_dependencies():
                    logger.warning("Some packages failed")
            if mode == "both":
                logger.info("Both setups installed. Use --switch to activate.")
                return True
            return self.dotfiles.setup_variant(mode)

        def validate() -> List[str]:
            issues = []
            if mode in ("stealthiq", "both"):
                issues += self._check_slot("stealthiq")
            if mode != "both":
                issues += self._check_active(mode)
            return issues

        return self.transaction(
            "installation", "pre-install", mutate, validate,
            need_packages=(mode != "jakoolit"),
            check_conflicts=(mode != "jakoolit"),
        )

    def reset(self) -> RunResult:
        """Remove the desktop packages and configs, then reinstall StealthIQ"""
        logger.info("FULL SYSTEM RESET")
        if not self.config.auto_mode and not self.config.dry_run:
            logger.warning("This will reset your desktop environment! Personal data is preserved.")
            if not self.confirm("Are you sure you want to continue?", False):
                logger.info("Aborted")
                return RunResult("reset", RunState.CANCELLED)

        def mutate() -> bool:
            if not self.packages.reset_packages():
                logger.warning("Package reset had issues")
            if not self.dotfiles.reset_configs():
                return False
            if not self.packages.install_aur_helper():
                logger.warning("Could not reinstall AUR helper")
            if not self.dotfiles.copy_dotfiles():
                return False
            if not self.packages.install_dependencies():
                logger.warning("Some packages failed to install")
            if not self.dotfiles.setup_variant("stealthiq"):
                logger.warning("Setup had issues")
            return True

        def validate() -> List[str]:
            issues = self._check_slot("stealthiq")
            if not (shutil.which("hyprland") or shutil.which("Hyprland")):
                issues.append("Hyprland not installed!")
            return issues

        return self.transaction(
            "reset", "pre-reset", mutate, validate,
            need_packages=True, need_network=True,
        )

    def switch(self, variant: str) -> RunResult:
        if variant not in VARIANTS:
            return RunResult("switch").fail(f"Unknown setup: {variant}")
        logger.info(f"Current: {self.dotfiles.current_variant()}")
        return self.transaction(
            "switch", "pre-switch",
            lambda: self.dotfiles.setup_variant(variant),
            lambda: self._check_active(variant),
        )

    def portable(self) -> RunResult:
        def mutate() -> bool:
            self.dotfiles.make_portable()
            return True

        return self.transaction("portable", "pre-portable", mutate, lambda: [])

    def backup(self) -> RunResult:
        def action(result: RunResult) -> bool:
            try:
                backup = self.backups.backup()
            except BackupVerificationError as e:
                result.fail(str(e))
                return False
            if not backup.empty:
                result.backup = backup.path
            return True

        return self.locked("backup", action)

    def deps(self) -> RunResult:
        def action(result: RunResult) -> bool:
            if not SystemProbe.check_network():
                logger.warning("No network - package installation may fail")
            return self.packages.install_dependencies()

        return self.locked("dependency installation", action, need_packages=True)

    def export(self) -> RunResult:
        result = RunResult("export")
        try:
            require_prerequisites(self.config)
        except PrerequisiteError as e:
            return result.fail_prerequisites(e)
        self.dotfiles.export_dotfiles()
        result.state = RunState.SUCCESS
        return result

    def rollback(self, reference: str) -> RunResult:
        """Restore a checkpoint chosen by path, name or partial name"""
        result = RunResult("rollback")
        try:
            path = self.checkpoints.resolve(reference)
        except CheckpointError as e:
            return result.fail(str(e))
        result.checkpoint = path
        logger.info("ROLLING BACK TO CHECKPOINT")
        logger.info(f"Checkpoint: {path.name}")

        try:
            self.lock.acquire()
        except LockError as e:
            return result.fail(str(e))
        try:
            with interruptible():
                if self.checkpoints.restore(path):
                    result.state = RunState.SUCCESS
                else:
                    result.fail("Some entries could not be restored")
        except CheckpointError as e:
            result.fail(str(e))
        except (KeyboardInterrupt, RunInterrupted):
            result.interrupted = True
            result.fail("Rollback interrupted")
        finally:
            self.lock.release()
        return result

    def list_checkpoints(self) -> CheckpointListing:
        return self.checkpoints.list()
