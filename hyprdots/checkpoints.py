"""
Checkpoint store

A checkpoint is a directory under ~/.dotfiles-backups/.checkpoints named
<name>-<epoch>. It holds:

    metadata.txt   KEY=value lines; written last, so a directory without
                   it is an incomplete checkpoint
    state.txt      one name=value line per tracked entry that existed:
                   name=<link target>, name=directory or name=file
    <file>.bak     byte copies of the tracked shell rc files
    gpu_info.txt, installed_packages.txt, symlinks.txt
                   diagnostics, never read back

Checkpoints are written once and never modified. Directory contents are
not stored; they are recovered from the backup recorded as BACKUP_PATH.
"""

import os
import time
import shutil
import logging
import datetime
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from . import VERSION
from .config import (
    InstallerConfig, EntryKind, TrackedEntry, TRACKED_ENTRIES, TRACKED_BY_NAME,
)
from .errors import CheckpointError
from .fsops import remove_path, copy_entry
from .log import success
from .packages import PackageManager
from .system import SystemProbe

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.txt"
STATE_FILE = "state.txt"


@dataclass(frozen=True)
class EntryRecord:
    """State of one tracked entry at checkpoint time"""
    name: str
    kind: EntryKind
    target: Optional[str] = None

    def to_line(self) -> str:
        if self.kind is EntryKind.SYMLINK:
            return f"{self.name}={self.target}"
        return f"{self.name}={self.kind.value}"

    @classmethod
    def from_line(cls, line: str) -> Optional["EntryRecord"]:
        if "=" not in line:
            return None
        name, value = line.split("=", 1)
        entry = TRACKED_BY_NAME.get(name)
        if entry is not None and entry.is_file:
            return cls(name, EntryKind.TRACKED_FILE)
        if value == EntryKind.DIRECTORY.value:
            return cls(name, EntryKind.DIRECTORY)
        return cls(name, EntryKind.SYMLINK, value)


@dataclass(frozen=True)
class Checkpoint:
    path: Path
    name: str
    created: str
    user: str
    kernel: str
    backup_path: Optional[Path]
    tracked: Tuple[str, ...]
    entries: Tuple[EntryRecord, ...]

    @property
    def id(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class CheckpointSummary:
    id: str
    name: str
    time: str
    kernel: str


def parse_key_values(path: Path) -> Dict[str, str]:
    """Parse KEY=value lines, ignoring blanks and lines without '='"""
    values: Dict[str, str] = {}
    with open(path, 'r', encoding="utf-8") as f:
        for line in f:
            line = line.rstrip("\n")
            if "=" in line:
                key, value = line.split("=", 1)
                values[key] = value
    return values


def checkpoint_epoch(path: Path) -> int:
    """Epoch suffix of a checkpoint directory name, 0 if absent"""
    suffix = path.name.rsplit("-", 1)[-1]
    return int(suffix) if suffix.isdigit() else 0


class CheckpointListing:
    """
    Lazy view of the checkpoint directory, newest first.

    Each iteration rescans the directory, so the listing can be walked
    any number of times.
    """

    def __init__(self, checkpoint_dir: Path):
        self.checkpoint_dir = checkpoint_dir

    def __iter__(self) -> Iterator[CheckpointSummary]:
        if not self.checkpoint_dir.is_dir():
            return
        dirs = [p for p in self.checkpoint_dir.iterdir() if p.is_dir()]
        for cp_dir in sorted(dirs, key=lambda p: (checkpoint_epoch(p), p.name), reverse=True):
            metadata: Dict[str, str] = {}
            try:
                metadata = parse_key_values(cp_dir / METADATA_FILE)
            except OSError:
                pass
            yield CheckpointSummary(
                id=cp_dir.name,
                name=metadata.get("CHECKPOINT_NAME", "unknown"),
                time=metadata.get("CHECKPOINT_TIME", "unknown"),
                kernel=metadata.get("KERNEL_VERSION", ""),
            )


class CheckpointStore:
    """Create, list and restore checkpoints of the tracked entries"""

    def __init__(self, config: InstallerConfig,
                 packages: Optional[PackageManager] = None):
        self.config = config
        self.packages = packages

    def _allocate(self, name: str) -> Path:
        epoch = int(time.time())
        while True:
            path = self.config.checkpoint_dir / f"{name}-{epoch}"
            try:
                path.mkdir(parents=True)
                return path
            except FileExistsError:
                epoch += 1

    def snapshot(self) -> List[EntryRecord]:
        """Current state of every tracked entry that exists"""
        records = []
        for entry in TRACKED_ENTRIES:
            live = entry.live_path(self.config)
            if entry.is_file:
                if live.is_file():
                    records.append(EntryRecord(entry.name, EntryKind.TRACKED_FILE))
            elif live.is_symlink():
                records.append(EntryRecord(entry.name, EntryKind.SYMLINK, os.readlink(live)))
            elif live.is_dir():
                records.append(EntryRecord(entry.name, EntryKind.DIRECTORY))
        return records

    def _write_diagnostics(self, path: Path) -> None:
        # Best effort, never read back by restore
        try:
            gpu = SystemProbe.gpu_descriptor()
            if gpu:
                (path / "gpu_info.txt").write_text(gpu + "\n")
        except Exception as e:
            logger.debug(f"Could not save GPU info: {e}")

        if self.packages is not None:
            try:
                packages = self.packages.explicit_package_text()
                if packages:
                    (path / "installed_packages.txt").write_text(packages)
            except Exception as e:
                logger.debug(f"Could not save package list: {e}")

        try:
            links = sorted(
                str(p) for p in self.config.config_dir.iterdir() if p.is_symlink()
            ) if self.config.config_dir.is_dir() else []
            (path / "symlinks.txt").write_text("".join(f"{link}\n" for link in links))
        except OSError as e:
            logger.debug(f"Could not save symlink list: {e}")

    def create(self, name: str, backup_path: Optional[Path] = None) -> Path:
        """
        Snapshot the tracked entries before a destructive operation.

        Only the checkpoint directory is written; live entries are read.

        Args:
            name: Checkpoint name, e.g. pre-install
            backup_path: The backup paired with this checkpoint, used to
                recover directory contents on restore

        Returns:
            Path of the checkpoint directory (its handle)
        """
        path = self._allocate(name)
        records = self.snapshot()

        state_lines = []
        for record in records:
            if record.kind is EntryKind.TRACKED_FILE:
                source = TRACKED_BY_NAME[record.name].live_path(self.config)
                try:
                    shutil.copy2(source, path / f"{record.name}.bak")
                except OSError as e:
                    # Still recorded, so restore leaves the live file alone
                    logger.warning(f"Could not save {record.name} in checkpoint: {e}")
            state_lines.append(record.to_line() + "\n")

        with open(path / STATE_FILE, 'w', encoding="utf-8") as f:
            f.writelines(state_lines)

        self._write_diagnostics(path)

        metadata = {
            "CHECKPOINT_NAME": name,
            "CHECKPOINT_TIME": datetime.datetime.now().astimezone().isoformat(timespec="seconds"),
            "CHECKPOINT_PATH": str(path),
            "HOME": str(self.config.home),
            "USER": SystemProbe.current_user(),
            "KERNEL_VERSION": SystemProbe.kernel_version(),
            "SCRIPT_VERSION": VERSION,
            "BACKUP_PATH": str(backup_path) if backup_path else "",
            "TRACKED": ",".join(entry.name for entry in TRACKED_ENTRIES),
        }
        with open(path / METADATA_FILE, 'w', encoding="utf-8") as f:
            f.writelines(f"{key}={value}\n" for key, value in metadata.items())

        logger.info(f"Checkpoint created: {path.name}")
        return path

    def load(self, handle: Path) -> Checkpoint:
        """
        Read a checkpoint directory.

        Raises:
            CheckpointError: The directory has no valid metadata
        """
        handle = Path(handle)
        try:
            metadata = parse_key_values(handle / METADATA_FILE)
        except OSError:
            raise CheckpointError(f"Invalid checkpoint: {handle}", str(handle))
        if "CHECKPOINT_NAME" not in metadata:
            raise CheckpointError(f"Invalid checkpoint metadata: {handle}", str(handle))

        entries: List[EntryRecord] = []
        state_file = handle / STATE_FILE
        if state_file.is_file():
            with open(state_file, 'r', encoding="utf-8") as f:
                for line in f:
                    record = EntryRecord.from_line(line.rstrip("\n"))
                    if record is not None:
                        entries.append(record)

        backup = metadata.get("BACKUP_PATH", "")
        tracked = metadata.get("TRACKED", "")
        return Checkpoint(
            path=handle,
            name=metadata["CHECKPOINT_NAME"],
            created=metadata.get("CHECKPOINT_TIME", ""),
            user=metadata.get("USER", ""),
            kernel=metadata.get("KERNEL_VERSION", ""),
            backup_path=Path(backup) if backup else None,
            tracked=tuple(n for n in tracked.split(",") if n),
            entries=tuple(entries),
        )

    def list(self) -> CheckpointListing:
        return CheckpointListing(self.config.checkpoint_dir)

    def resolve(self, reference: str) -> Path:
        """
        Find a checkpoint by path, directory name or partial name.

        A partial name matches the newest checkpoint containing it.

        Raises:
            CheckpointError: No checkpoint matches
        """
        candidate = Path(os.path.expanduser(reference))
        if candidate.is_absolute() and candidate.is_dir():
            return candidate
        named = self.config.checkpoint_dir / reference
        if reference and named.is_dir():
            return named
        if reference:
            for summary in self.list():
                if reference in summary.id:
                    return self.config.checkpoint_dir / summary.id
        raise CheckpointError(f"Checkpoint not found: {reference}", reference)

    def _backup_source(self, checkpoint: Checkpoint, name: str) -> Optional[Path]:
        if checkpoint.backup_path is not None:
            source = checkpoint.backup_path / name
            if source.is_dir() and not source.is_symlink():
                return source
            return None

        # Checkpoints written without a paired backup: newest backup wins
        backups = sorted(self.config.backup_root.glob("backup-*"), reverse=True)
        for backup in backups:
            source = backup / name
            if source.is_dir() and not source.is_symlink():
                logger.warning(f"No paired backup recorded; using {source}")
                return source
        return None

    def _restore_entry(self, checkpoint: Checkpoint, entry: TrackedEntry,
                       record: EntryRecord) -> bool:
        live = entry.live_path(self.config)

        if record.kind is EntryKind.DIRECTORY:
            source = self._backup_source(checkpoint, entry.name)
            if source is None:
                logger.warning(f"No backup found for {entry.name}; leaving {live} as is")
                return False
            remove_path(live)
            copy_entry(source, live)
            success(logger, f"Restored {entry.name} from backup")
            return True

        if record.kind is EntryKind.SYMLINK:
            remove_path(live)
            live.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(record.target, live)
            success(logger, f"Restored {entry.name} symlink to {record.target}")
            return True

        stored = checkpoint.path / f"{entry.name}.bak"
        if not stored.is_file():
            logger.warning(f"Checkpoint copy of {entry.name} is missing")
            return False
        remove_path(live)
        shutil.copy2(stored, live)
        success(logger, f"Restored {entry.name} from checkpoint")
        return True

    def restore(self, handle: Path) -> bool:
        """
        Put every tracked entry back to its checkpointed state.

        Each entry is handled independently; a failure is logged and the
        remaining entries are still restored. Entries that did not exist
        when the checkpoint was taken are removed. Restoring the same
        checkpoint twice yields the same result.

        Raises:
            CheckpointError: handle is not a valid checkpoint

        Returns:
            True if every entry was restored
        """
        checkpoint = self.load(handle)
        logger.info("RESTORING FROM CHECKPOINT")
        logger.info(f"Checkpoint: {checkpoint.name} ({checkpoint.id})")

        if self.config.dry_run:
            for record in checkpoint.entries:
                logger.info(f"[DRY RUN] Would restore {record.to_line()}")
            return True

        all_restored = True
        recorded = set()
        for record in checkpoint.entries:
            recorded.add(record.name)
            entry = TRACKED_BY_NAME.get(record.name)
            if entry is None:
                logger.warning(f"Skipping unknown entry in checkpoint: {record.name}")
                continue
            logger.info(f"Restoring {entry.name}...")
            try:
                restored = self._restore_entry(checkpoint, entry, record)
            except (OSError, shutil.Error) as e:
                logger.error(f"Failed to restore {entry.name}: {e}")
                restored = False
            all_restored = all_restored and restored

        for name in checkpoint.tracked:
            entry = TRACKED_BY_NAME.get(name)
            if entry is None or name in recorded:
                continue
            live = entry.live_path(self.config)
            if live.is_symlink() or live.exists():
                try:
                    remove_path(live)
                    logger.info(f"Removed {name} (absent at checkpoint time)")
                except OSError as e:
                    logger.error(f"Failed to remove {live}: {e}")
                    all_restored = False

        if all_restored:
            success(logger, "Rollback complete")
        else:
            logger.warning("Rollback finished with entries that could not be restored")
        return all_restored
