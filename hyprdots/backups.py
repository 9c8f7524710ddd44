"""Timestamped full copies of the tracked configuration"""

import time
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import InstallerConfig, TRACKED_ENTRIES
from .errors import BackupVerificationError
from .fsops import copy_entry
from .log import success

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupResult:
    path: Path
    copied: int
    failed: int

    @property
    def empty(self) -> bool:
        return self.copied == 0


class BackupStore:
    """
    Copies every existing tracked entry into
    ~/.dotfiles-backups/backup-<YYYYmmdd-HHMMSS>/ and records the newest
    backup in latest.txt.
    """

    def __init__(self, config: InstallerConfig):
        self.config = config

    def new_backup_path(self) -> Path:
        """Reserve a backup path that does not exist yet"""
        stamp = time.strftime("%Y%m%d-%H%M%S")
        path = self.config.backup_root / f"backup-{stamp}"
        suffix = 1
        while path.exists():
            path = self.config.backup_root / f"backup-{stamp}-{suffix}"
            suffix += 1
        return path

    def latest(self) -> Optional[Path]:
        try:
            content = self.config.latest_pointer.read_text().strip()
        except OSError:
            return None
        return Path(content) if content else None

    def backup(self, path: Optional[Path] = None) -> BackupResult:
        """
        Back up the tracked entries.

        Individual copy failures are warnings. A backup with nothing to
        copy is removed again and reported, not treated as an error.

        Args:
            path: Target directory (default: a fresh timestamped path)

        Raises:
            BackupVerificationError: Copies were reported but the backup
                directory is empty

        Returns:
            BackupResult
        """
        logger.info("CREATING BACKUP")
        path = Path(path) if path else self.new_backup_path()

        if self.config.dry_run:
            logger.info(f"[DRY RUN] Would create backup at: {path}")
            return BackupResult(path, 0, 0)

        path.mkdir(parents=True, exist_ok=True)
        copied = 0
        failed = 0

        for entry in TRACKED_ENTRIES:
            source = entry.live_path(self.config)
            if not (source.is_symlink() or source.exists()):
                continue
            try:
                copy_entry(source, path / entry.name)
            except OSError as e:
                logger.warning(f"Failed to backup: {entry.name} ({e})")
                failed += 1
                continue
            copied += 1
            logger.debug(f"BACKUP {entry.name}")

        if failed:
            logger.warning(f"{failed} item(s) failed to backup")

        if copied == 0:
            logger.info("Nothing to backup")
            try:
                path.rmdir()
            except OSError as e:
                logger.debug(f"Could not remove empty backup {path}: {e}")
            return BackupResult(path, 0, failed)

        if not path.is_dir() or not any(path.iterdir()):
            logger.error("Backup verification failed!")
            raise BackupVerificationError(str(path), copied)

        self.config.latest_pointer.write_text(f"{path}\n")
        success(logger, f"Backup created: {path} ({copied} items)")
        return BackupResult(path, copied, failed)
