"""Pre-flight scan for install targets that already exist"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .config import InstallerConfig, TRACKED_BY_NAME
from .log import success

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Conflict:
    name: str
    path: Path
    link_target: Optional[str] = None
    tracked: bool = False

    @property
    def is_symlink(self) -> bool:
        return self.link_target is not None

    def describe(self) -> str:
        if self.is_symlink:
            return f"{self.name}: Symlink exists → {self.link_target}"
        return f"{self.name}: Directory/file exists (will be backed up)"


def payload_name(source: Path) -> str:
    """dot_config/dot_foo installs as foo"""
    name = source.name
    return name[4:] if name.startswith("dot_") else name


class ConflictDetector:
    """Stateless, read-only scan of the install destinations"""

    def __init__(self, config: InstallerConfig):
        self.config = config

    def targets(self) -> List[Path]:
        """Destinations the installer is about to write"""
        targets = []
        payload = self.config.source_dir / "dot_config"
        if payload.is_dir():
            for source in sorted(payload.iterdir()):
                if source.is_dir():
                    targets.append(self.config.config_dir / payload_name(source))
        for rc_name in ("zshrc", "bashrc"):
            if (self.config.source_dir / f"dot_{rc_name}").is_file():
                targets.append(self.config.home / f".{rc_name}")
        return targets

    def detect(self) -> List[Conflict]:
        """
        Report every destination that already exists.

        Returns:
            Conflicts in install order
        """
        logger.info("DETECTING CONFLICTS")
        conflicts = []
        for target in self.targets():
            if target.is_symlink():
                conflict = Conflict(target.name, target, os.readlink(target),
                                    target.name in TRACKED_BY_NAME)
            elif target.exists():
                conflict = Conflict(target.name, target, None, target.name in TRACKED_BY_NAME)
            else:
                continue
            logger.warning(conflict.describe())
            conflicts.append(conflict)

        if conflicts:
            logger.info(f"Found {len(conflicts)} potential conflict(s)")
            logger.info("All existing configs will be backed up before modification")
        else:
            success(logger, "No conflicts detected")
        return conflicts
