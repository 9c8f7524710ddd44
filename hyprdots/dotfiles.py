"""Dotfiles payload: copying, variant switching, portability and reset"""

import os
import re
import time
import shutil
import logging
import subprocess
from pathlib import Path
from typing import Callable, Optional

from .config import InstallerConfig, ACTIVE_LINK, VARIANTS, VARIANT_LABELS
from .conflicts import payload_name
from .fsops import safe_copy, safe_symlink, remove_path
from .log import success

logger = logging.getLogger(__name__)

# A /home/<user>/ that is part of a longer path (an already rewritten home) is left alone
HOME_PATH_PATTERN = re.compile(r"(?<![\w.~/-])/home/[^/\s\"']*/")
PORTABLE_SUFFIXES = (".conf", ".sh", ".zsh", ".qml", ".json", ".lua")

# Removed by a reset
RESET_CONFIG_DIRS = (
    "hypr", "hypr-stealthiq", "hypr-jakoolit", "hyprpaper",
    "quickshell", "dunst", "conky", "waybar", "wallust",
    "rofi", "ncmpcpp", "mpd", "cava", "kitty", "ranger",
    "neofetch", "bashtop", "X11", "vlc", "ulauncher",
    "alacritty", "btop", "nvim", "zsh", "illogical-impulse", "matugen",
)
RESET_HOME_FILES = (".zshrc", ".bashrc", ".p10k.zsh")
RESET_STATE_DIRS = (".local/state/quickshell", ".cache/quickshell")

EXPORT_DIRS = (
    "hypr", "hypr-stealthiq", "hypr-jakoolit", "quickshell",
    "hyprpaper", "dunst", "conky", "waybar", "zsh",
)

EXPORT_README = """# Dotfiles

## Install
```bash
hyprdots
```

## Other Options
```bash
hyprdots --auto jakoolit    # Install JaKooLit setup
hyprdots --auto both        # Install both setups
hyprdots --dry-run          # Preview changes
```
"""


class Dotfiles:
    """Operations on the live configuration tree"""

    def __init__(self, config: InstallerConfig):
        self.config = config

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    def _merge_tree(self, source: Path, destination: Path) -> bool:
        """Copy the contents of source into destination, keeping other files"""
        if not source.is_dir():
            return False
        if self.dry_run:
            logger.info(f"[DRY RUN] cp -r {source}/* {destination}/")
            return True
        try:
            shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
            return True
        except (OSError, shutil.Error) as e:
            logger.warning(f"Could not copy {source} to {destination}: {e}")
            return False

    def copy_dotfiles(self) -> bool:
        """
        Copy the payload into place.

        Returns:
            False if any config directory or shell rc file failed to copy
        """
        logger.info("COPYING DOTFILES")
        source_dir = self.config.source_dir
        copied = 0
        failed = 0

        payload = source_dir / "dot_config"
        for source in sorted(payload.iterdir()) if payload.is_dir() else []:
            if not source.is_dir():
                continue
            name = payload_name(source)
            logger.info(f"Copying {name}...")
            if safe_copy(source, self.config.config_dir / name, self.dry_run):
                copied += 1
            else:
                failed += 1

        for rc_name in ("zshrc", "bashrc"):
            source = source_dir / f"dot_{rc_name}"
            if source.is_file():
                logger.info(f"Copying .{rc_name}...")
                if safe_copy(source, self.config.home / f".{rc_name}", self.dry_run):
                    copied += 1
                else:
                    failed += 1

        if (source_dir / "dot_local").is_dir():
            logger.info("Copying .local files...")
            self._merge_tree(source_dir / "dot_local", self.config.home / ".local")

        misc = source_dir / "misc"
        if self._merge_tree(misc / ".wallpapers", self.config.home / "wallpapers"):
            logger.info("Copied wallpapers")
            copied += 1
        if self._merge_tree(misc / ".fonts", self.config.home / ".local" / "share" / "fonts"):
            logger.info("Copied fonts")
            copied += 1
            self._refresh_font_cache()
        if self._merge_tree(misc / ".icons", self.config.home / ".icons"):
            logger.info("Copied icons")
            copied += 1

        if not self.dry_run:
            (self.config.home / "Pictures" / "Screenshots").mkdir(parents=True, exist_ok=True)

        if failed:
            logger.error(f"{failed} copy operation(s) failed")
            return False

        success(logger, f"Copied {copied} item(s)")
        return True

    def _refresh_font_cache(self) -> None:
        if self.dry_run or not shutil.which("fc-cache"):
            return
        try:
            subprocess.run(["fc-cache", "-f"], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.debug(f"fc-cache failed: {e}")

    def current_variant(self) -> str:
        """Human readable name of the active setup"""
        link = self.config.config_dir / ACTIVE_LINK
        if link.is_symlink():
            target = os.readlink(link)
            for variant, slot in VARIANTS.items():
                if target == slot:
                    return VARIANT_LABELS[variant]
            return f"Custom ({target})"
        if link.is_dir():
            return "JaKooLit (original)"
        return "unknown"

    def _move_active_to_jakoolit(self) -> bool:
        active = self.config.config_dir / ACTIVE_LINK
        slot = self.config.config_dir / VARIANTS["jakoolit"]
        logger.info(f"Moving current {ACTIVE_LINK} to {slot.name}...")
        if self.dry_run:
            return True
        try:
            active.rename(slot)
        except OSError as e:
            logger.error(f"Failed to move {active} to {slot}: {e}")
            return False
        return True

    def setup_variant(self, variant: str) -> bool:
        """
        Make variant the active setup by pointing the hypr symlink at its slot.

        A real hypr directory is first moved into the JaKooLit slot, so
        switching back later is only a symlink change.

        Returns:
            True if the variant is now active
        """
        if variant not in VARIANTS:
            logger.error(f"Unknown setup: {variant}")
            return False

        label = VARIANT_LABELS[variant]
        logger.info(f"SETTING UP {label.upper()}")
        config_dir = self.config.config_dir
        active = config_dir / ACTIVE_LINK
        active_is_real_dir = active.is_dir() and not active.is_symlink()
        jakoolit_slot = config_dir / VARIANTS["jakoolit"]

        if variant == "stealthiq":
            if not (config_dir / VARIANTS["stealthiq"]).is_dir() and not self.dry_run:
                logger.error("StealthIQ config not found. Run copy first.")
                return False
            if active_is_real_dir:
                if jakoolit_slot.exists():
                    logger.warning(f"{jakoolit_slot.name} already exists; {active} will be replaced (it is in the backup)")
                elif not self._move_active_to_jakoolit():
                    return False
        else:
            if not jakoolit_slot.is_dir():
                if not active_is_real_dir:
                    logger.error("JaKooLit config not found")
                    return False
                if not self._move_active_to_jakoolit():
                    return False

        if not safe_symlink(VARIANTS[variant], active, self.dry_run):
            return False
        self.make_portable()
        success(logger, f"{label} is now active")
        return True

    def make_portable(self, target_dir: Optional[Path] = None) -> int:
        """
        Replace hardcoded /home/<user>/ paths with the current home.

        conky does not expand $HOME, so its .conkyrc also gets the literal
        variable replaced.

        Returns:
            Number of files rewritten
        """
        target_dir = target_dir or self.config.config_dir
        if self.dry_run:
            logger.info(f"[DRY RUN] Make paths portable in {target_dir}")
            return 0

        logger.info("Making configs portable...")
        home = str(self.config.home)
        files = [
            path for path in target_dir.rglob("*")
            if path.suffix in PORTABLE_SUFFIXES and path.is_file() and not path.is_symlink()
        ] if target_dir.is_dir() else []
        files += [self.config.home / name for name in (".zshrc", ".bashrc")
                  if (self.config.home / name).is_file()]

        fixed = 0
        for path in files:
            if self._rewrite(path, lambda text: HOME_PATH_PATTERN.sub(lambda _: f"{home}/", text)):
                fixed += 1

        conkyrc = self.config.config_dir / "conky" / ".conkyrc"
        if conkyrc.is_file() and not conkyrc.is_symlink():
            logger.info("Fixing conky paths...")
            if self._rewrite(conkyrc, lambda text: HOME_PATH_PATTERN.sub(
                    lambda _: f"{home}/", text.replace("$HOME", home))):
                fixed += 1

        logger.debug(f"PORTABLE Fixed {fixed} files")
        success(logger, "Paths updated")
        return fixed

    @staticmethod
    def _rewrite(path: Path, transform: Callable[[str], str]) -> bool:
        """Apply transform to a text file; True if the file changed"""
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return False
        updated = transform(content)
        if updated == content:
            return False
        try:
            path.write_text(updated, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not update {path}: {e}")
            return False
        return True

    def reset_configs(self) -> bool:
        """Remove the desktop configuration, keeping user data"""
        logger.info("RESETTING CONFIGURATIONS")
        if self.dry_run:
            logger.info("[DRY RUN] Would remove all config directories")
            return True

        ok = True
        paths = [self.config.config_dir / name for name in RESET_CONFIG_DIRS]
        paths += [self.config.home / name for name in RESET_HOME_FILES]
        paths += [self.config.home / name for name in RESET_STATE_DIRS]
        for path in paths:
            if not (path.is_symlink() or path.exists()):
                continue
            logger.info(f"Removing {path.name}...")
            try:
                remove_path(path)
            except OSError as e:
                logger.error(f"Failed to remove {path}: {e}")
                ok = False

        if ok:
            success(logger, "Configurations reset")
        return ok

    def export_dotfiles(self) -> Path:
        """Copy the current desktop configuration into ~/dotfiles-export-<date>"""
        export_dir = self.config.home / f"dotfiles-export-{time.strftime('%Y%m%d')}"
        logger.info("EXPORTING DOTFILES")
        if self.dry_run:
            logger.info(f"[DRY RUN] Would export to: {export_dir}")
            return export_dir
        export_dir.mkdir(parents=True, exist_ok=True)

        for name in EXPORT_DIRS:
            source = self.config.config_dir / name
            if source.is_dir():
                if safe_copy(source, export_dir / name):
                    logger.info(f"  {name}")

        (export_dir / "README.md").write_text(EXPORT_README)
        success(logger, f"Exported to: {export_dir}")
        return export_dir
