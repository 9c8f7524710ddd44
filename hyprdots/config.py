"""
Installer configuration

All paths and mode flags are resolved once at startup into an immutable
InstallerConfig that is handed to every component.
"""

import os
import json
import logging
import tempfile
from enum import Enum
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

logger = logging.getLogger(__name__)

CONFIG_FILE = os.path.expanduser("~/.config/hyprdots/config.json")

# Defaults for the optional JSON config file
DEFAULT_CONFIG = {
    "source_dir": None,
    "min_free_mb": 500,
    "lock_file": os.path.join(tempfile.gettempdir(), "dotfiles-install.lock"),
    "retry": {"max_attempts": 3, "initial_delay": 5.0, "backoff": 2.0},
    "preserve_apps": [],
}

# Tools every mutating run needs; package commands add pacman/sudo
REQUIRED_TOOLS = ("cp", "mv", "rm", "mkdir", "ln", "find")
PACKAGE_TOOLS = ("pacman", "sudo")


class EntryKind(Enum):
    """What a tracked path was when it was snapshotted"""
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    TRACKED_FILE = "file"


class EntryRoot(Enum):
    CONFIG = "config"
    HOME = "home"


@dataclass(frozen=True)
class TrackedEntry:
    """
    One named configuration target.

    Config entries live under ~/.config and may be a directory or a
    symlink at any time; home entries are shell rc files that are copied
    byte for byte.
    """
    name: str
    root: EntryRoot

    @property
    def is_file(self) -> bool:
        return self.root is EntryRoot.HOME

    def live_path(self, config: "InstallerConfig") -> Path:
        if self.root is EntryRoot.HOME:
            return config.home / self.name
        return config.config_dir / self.name


_CONFIG_ENTRIES = (
    "hypr", "hypr-stealthiq", "hypr-jakoolit", "hyprpaper", "dunst",
    "conky", "waybar", "wallust", "rofi", "zsh", "ncmpcpp", "mpd", "cava",
    "nvim", "kitty", "ranger", "neofetch", "bashtop", "X11", "vlc",
)
_HOME_FILES = (".zshrc", ".bashrc")

TRACKED_ENTRIES: Tuple[TrackedEntry, ...] = tuple(
    [TrackedEntry(name, EntryRoot.CONFIG) for name in _CONFIG_ENTRIES]
    + [TrackedEntry(name, EntryRoot.HOME) for name in _HOME_FILES]
)

TRACKED_BY_NAME: Dict[str, TrackedEntry] = {e.name: e for e in TRACKED_ENTRIES}

# The hypr symlink selects the active variant
ACTIVE_LINK = "hypr"
VARIANTS = {
    "stealthiq": "hypr-stealthiq",
    "jakoolit": "hypr-jakoolit",
}
VARIANT_LABELS = {
    "stealthiq": "StealthIQ",
    "jakoolit": "JaKooLit",
}


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for package installation"""
    max_attempts: int = 3
    initial_delay: float = 5.0
    backoff: float = 2.0

    def delays(self):
        """Yield the sleep before each retry (max_attempts - 1 values)"""
        delay = self.initial_delay
        for _ in range(max(self.max_attempts - 1, 0)):
            yield delay
            delay *= self.backoff


@dataclass(frozen=True)
class InstallerConfig:
    home: Path
    source_dir: Path
    lock_file: Path
    dry_run: bool = False
    auto_mode: bool = False
    verbose: bool = False
    debug: bool = False
    min_free_mb: int = 500
    required_tools: Tuple[str, ...] = REQUIRED_TOOLS
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    preserve_apps: Tuple[str, ...] = ()

    @property
    def config_dir(self) -> Path:
        return self.home / ".config"

    @property
    def backup_root(self) -> Path:
        return self.home / ".dotfiles-backups"

    @property
    def checkpoint_dir(self) -> Path:
        return self.backup_root / ".checkpoints"

    @property
    def log_dir(self) -> Path:
        return self.home / ".dotfiles-logs"

    @property
    def latest_pointer(self) -> Path:
        return self.backup_root / "latest.txt"

    def with_options(self, **changes) -> "InstallerConfig":
        return replace(self, **changes)

    @classmethod
    def from_environment(cls, config_path: Optional[str] = None,
                         source_dir: Optional[str] = None,
                         **flags) -> "InstallerConfig":
        """
        Build the configuration from $HOME, the optional JSON config file
        and command line flags.

        Args:
            config_path: JSON config file (default: ~/.config/hyprdots/config.json)
            source_dir: Dotfiles checkout; defaults to the current directory
            **flags: dry_run, auto_mode, verbose, debug

        Returns:
            InstallerConfig
        """
        home = os.environ.get("HOME", "")
        settings = load_config_file(config_path or CONFIG_FILE)
        retry = settings.get("retry") or {}

        source = source_dir or settings.get("source_dir") or os.getcwd()
        return cls(
            home=Path(home) if home else Path(""),
            source_dir=Path(os.path.expanduser(source)).resolve(),
            lock_file=Path(settings["lock_file"]),
            min_free_mb=int(settings["min_free_mb"]),
            retry=RetryPolicy(
                max_attempts=int(retry.get("max_attempts", 3)),
                initial_delay=float(retry.get("initial_delay", 5.0)),
                backoff=float(retry.get("backoff", 2.0)),
            ),
            preserve_apps=tuple(settings.get("preserve_apps") or ()),
            **flags,
        )


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load the JSON config file, merging defaults for any missing keys"""
    config = dict(DEFAULT_CONFIG)
    if not os.path.exists(config_path):
        return config
    try:
        with open(config_path, 'r') as f:
            loaded = json.load(f)
        if not isinstance(loaded, dict):
            logger.error(f"Ignoring config file {config_path}: expected a JSON object")
            return config
        for key, value in loaded.items():
            if key in DEFAULT_CONFIG:
                config[key] = value
            else:
                logger.warning(f"Unknown config key in {config_path}: {key}")
        return config
    except (OSError, ValueError) as e:
        logger.error(f"Error loading config {config_path}: {e}")
        return dict(DEFAULT_CONFIG)
