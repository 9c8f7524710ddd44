"""Package management through pacman and an AUR helper (paru or yay)"""

import os
import time
import shutil
import logging
import tempfile
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from .config import InstallerConfig, RetryPolicy
from .log import success
from .system import SystemProbe

logger = logging.getLogger(__name__)

OFFICIAL_PACKAGES = [
    # Hyprland ecosystem
    "hyprland", "hyprpaper", "hyprlock", "hypridle", "hyprpicker", "hyprsunset",
    # Notifications
    "dunst", "libnotify",
    # System monitoring
    "conky", "btop", "htop",
    # Audio and music
    "mpd", "ncmpcpp", "mpc", "cava", "playerctl", "pavucontrol",
    "easyeffects", "lsp-plugins", "alsa-utils", "wireplumber", "pipewire", "pipewire-pulse",
    # Terminal and shells
    "kitty", "zsh", "fish",
    # Screenshots and clipboard
    "grim", "slurp", "wl-clipboard", "hyprshot", "cliphist",
    # Launchers and session
    "brightnessctl", "fuzzel", "rofi", "wlogout",
    # File managers
    "thunar", "dolphin", "nautilus", "thunar-archive-plugin", "thunar-volman", "tumbler", "yazi",
    # Desktop plumbing
    "bibata-cursor-theme", "imv", "polkit-gnome", "gnome-keyring",
    "xdg-utils", "xdg-user-dirs", "wtype", "wev", "geoclue", "ydotool",
    "networkmanager", "network-manager-applet", "bluez", "bluez-utils", "blueman",
    # OCR
    "tesseract", "tesseract-data-eng",
    # Archives
    "unzip", "unrar", "p7zip",
    # Fonts
    "ttf-font-awesome", "ttf-jetbrains-mono", "noto-fonts", "noto-fonts-emoji",
    "ttf-nerd-fonts-symbols", "ttf-nerd-fonts-symbols-mono",
    # Script dependencies
    "imagemagick", "jq", "bc", "psmisc", "findutils", "sed", "gawk", "grep", "inotify-tools",
    "python", "python-pip", "python-virtualenv", "python-pillow", "python-numpy", "python-opencv",
    "gnome-desktop", "qt5-base", "qt6-base", "qt6-svg", "qt6-quickcontrols2", "kvantum",
    # Command line tools
    "eza", "zoxide", "bat", "fd", "swww", "fzf",
]

AUR_PACKAGES = [
    "quickshell", "activitywatch-bin", "vicinae-git", "handy-git",
    "python-materialyoucolor", "songrec", "microtex", "pokemon-colorscripts-git",
    "brave-bin", "obsidian", "megasync", "ulauncher", "bitwarden", "spotify",
    "visual-studio-code-bin", "emojione-picker",
]

CRITICAL_PACKAGES = ["hyprland", "zsh", "quickshell"]

# Never removed by a reset
BASE_PACKAGES = [
    "base", "base-devel", "linux", "linux-firmware",
    "pacman", "systemd", "bash", "coreutils", "util-linux",
    "grep", "sed", "gawk", "findutils", "procps",
    "networkmanager", "sudo", "shadow", "filesystem",
]

# User applications kept by a reset when installed
PRESERVE_APPS = [
    "brave-bin", "firefox", "chromium", "google-chrome",
    "visual-studio-code-bin", "code", "vim", "neovim",
    "discord", "telegram-desktop", "slack-desktop",
    "spotify", "vlc", "mpv",
    "obsidian", "notion-app", "libreoffice-fresh",
    "megasync", "dropbox", "nextcloud-client",
    "bitwarden", "keepassxc", "lastpass",
]

PARU_REPO = "https://aur.archlinux.org/paru.git"


class PackageManager:
    """pacman / AUR helper wrapper; every call reports success as a bool"""

    def __init__(self, config: InstallerConfig):
        self.config = config

    def _run(self, cmd: List[str], cwd: Optional[str] = None) -> bool:
        """Run a command, passing its output through to the log"""
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                cwd=cwd
            )
        except OSError as e:
            logger.error(f"Error running {cmd[0]}: {e}")
            return False

        for line in (result.stdout or "").splitlines():
            logger.info(f"  {line}")
        return result.returncode == 0

    def _query(self, cmd: List[str]) -> Optional[str]:
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True
            )
        except OSError as e:
            logger.debug(f"Error running {cmd[0]}: {e}")
            return None
        if result.returncode != 0:
            return None
        return result.stdout

    @staticmethod
    def aur_helper() -> Optional[str]:
        for helper in ("paru", "yay"):
            if shutil.which(helper):
                return helper
        return None

    def is_installed(self, package_name: str) -> bool:
        """Check if a package is installed"""
        return self._query(["pacman", "-Q", package_name]) is not None

    def list_explicit(self) -> List[str]:
        """Names of explicitly installed packages"""
        output = self._query(["pacman", "-Qeq"]) or ""
        return [line.strip() for line in output.splitlines() if line.strip()]

    def explicit_package_text(self) -> str:
        """pacman -Qe output, or an empty string"""
        if not shutil.which("pacman"):
            return ""
        return self._query(["pacman", "-Qe"]) or ""

    def install(self, packages: Sequence[str], policy: Optional[RetryPolicy] = None,
                helper: Optional[str] = None) -> bool:
        """
        Install packages, retrying with exponential backoff.

        Args:
            packages: Package names
            policy: Retry policy (default: the configured one)
            helper: AUR helper to use; pacman via sudo when None

        Returns:
            True if an attempt succeeded
        """
        if not packages:
            return True
        policy = policy or self.config.retry
        if helper:
            cmd = [helper, "-S", "--needed", "--noconfirm", *packages]
        else:
            cmd = ["sudo", "pacman", "-S", "--needed", "--noconfirm", *packages]

        if self.config.dry_run:
            logger.info(f"[DRY RUN] {' '.join(cmd)}")
            return True

        delays = list(policy.delays())
        for attempt in range(1, policy.max_attempts + 1):
            logger.debug(f"Install attempt {attempt}/{policy.max_attempts}: {' '.join(packages)}")
            if self._run(cmd):
                return True
            if attempt < policy.max_attempts:
                delay = delays[attempt - 1]
                logger.warning(f"Attempt {attempt} failed, retrying in {delay:g}s...")
                time.sleep(delay)

        logger.error(f"Failed after {policy.max_attempts} attempts: {' '.join(packages)}")
        return False

    def remove(self, packages: Sequence[str]) -> bool:
        """
        Remove packages with their unneeded dependencies.

        A failed removal is retried once with --cascade; a second failure
        is only a warning.
        """
        if not packages:
            return True
        cmd = ["sudo", "pacman", "-Rns", "--noconfirm", *packages]
        if self.config.dry_run:
            logger.info(f"[DRY RUN] {' '.join(cmd)}")
            return True

        if self._run(cmd):
            success(logger, f"Removed {len(packages)} packages")
            return True

        logger.warning("Some packages could not be removed (may have dependencies)")
        logger.info("Attempting cascade removal...")
        if self._run(cmd[:3] + ["--noconfirm", "--cascade", *packages]):
            success(logger, f"Removed {len(packages)} packages (cascade)")
            return True
        logger.warning("Cascade removal failed; leaving remaining packages installed")
        return False

    def install_aur_helper(self) -> bool:
        """Build and install paru from the AUR when no helper is present"""
        helper = self.aur_helper()
        if helper:
            logger.info(f"AUR helper already installed: {helper}")
            return True
        if self.config.dry_run:
            logger.info("[DRY RUN] Would install paru (AUR helper)")
            return True

        logger.info("INSTALLING AUR HELPER (paru)")
        missing = [dep for dep in ("git", "base-devel") if not self.is_installed(dep)]
        if missing:
            logger.info(f"Installing build dependencies: {' '.join(missing)}")
            if not self._run(["sudo", "pacman", "-S", "--needed", "--noconfirm", *missing]):
                logger.error("Failed to install build dependencies")
                return False

        with tempfile.TemporaryDirectory() as tmp_dir:
            logger.info("Cloning paru from AUR...")
            if not self._run(["git", "clone", PARU_REPO], cwd=tmp_dir):
                logger.error("Failed to clone paru")
                return False
            logger.info("Building and installing paru...")
            if not self._run(["makepkg", "-si", "--noconfirm"], cwd=os.path.join(tmp_dir, "paru")):
                logger.error("Failed to build paru")
                return False

        success(logger, "paru installed successfully")
        return True

    def install_dependencies(self) -> bool:
        """
        Install everything the dotfiles need.

        Returns:
            False only when a critical package is still missing
        """
        logger.info("INSTALLING DEPENDENCIES")
        if self.config.dry_run:
            logger.info("[DRY RUN] Would update CA certificates")
            logger.info("[DRY RUN] Would install paru (AUR helper) if not present")
            logger.info(f"[DRY RUN] Would install pacman packages: {', '.join(OFFICIAL_PACKAGES)}")
            logger.info(f"[DRY RUN] Would install AUR packages: {', '.join(AUR_PACKAGES)}")
            return True

        logger.info("Updating CA certificates...")
        self._run(["sudo", "pacman", "-S", "--needed", "--noconfirm", "ca-certificates"])
        self._run(["sudo", "update-ca-trust"])

        gpu = SystemProbe.detect_gpu()
        if gpu == "unknown":
            logger.warning("Could not detect GPU type")
        else:
            logger.warning(f"GPU detected: {gpu}; driver installation is disabled, install drivers manually")

        if not self.install_aur_helper():
            logger.warning("AUR helper installation failed, AUR packages will be skipped")

        helper = self.aur_helper()
        if helper:
            logger.info(f"Installing all packages with {helper}...")
            if self.install(OFFICIAL_PACKAGES + AUR_PACKAGES, helper=helper):
                success(logger, "All packages installed")
            else:
                logger.warning("Some packages may have failed (see log)")
        else:
            logger.warning("AUR helper not available, using pacman for official packages only")
            if self.install(OFFICIAL_PACKAGES):
                success(logger, "Official packages installed")
            else:
                logger.warning("Some packages may have failed (see log)")
            logger.warning(f"AUR packages skipped: {' '.join(AUR_PACKAGES)}")

        missing = [
            pkg for pkg in CRITICAL_PACKAGES
            if not shutil.which(pkg) and not self.is_installed(pkg)
        ]
        if missing:
            logger.warning(f"Missing critical packages: {' '.join(missing)}, attempting to install...")
            for pkg in missing:
                if not self.install([pkg], helper=helper):
                    logger.error(f"Failed to install: {pkg}")
                    return False
                success(logger, f"Installed: {pkg}")

        success(logger, "Dependencies OK")
        return True

    def save_package_lists(self, directory: Path) -> None:
        """Record explicit and foreign packages before a reset"""
        directory.mkdir(parents=True, exist_ok=True)
        logger.info("Saving current package list...")
        for name, cmd in (("pre-reset-packages.txt", ["pacman", "-Qe"]),
                          ("pre-reset-aur-packages.txt", ["pacman", "-Qm"])):
            output = self._query(cmd)
            if output is not None:
                (directory / name).write_text(output)
        success(logger, f"Package lists saved to {directory}")

    def preserve_list(self) -> List[str]:
        keep = list(BASE_PACKAGES)
        for app in PRESERVE_APPS + list(self.config.preserve_apps):
            if self.is_installed(app):
                keep.append(app)
        helper = self.aur_helper()
        if helper:
            keep.append(helper)
        return keep

    def reset_packages(self) -> bool:
        """Remove every explicit package except the base system and preserved apps"""
        logger.info("RESETTING SYSTEM PACKAGES")
        if self.config.dry_run:
            logger.info("[DRY RUN] Would remove all non-essential packages")
            logger.info(f"[DRY RUN] Would preserve: base system, {len(PRESERVE_APPS)} user apps")
            return True

        self.save_package_lists(self.config.backup_root)
        keep = set(self.preserve_list())
        logger.info(f"Packages to preserve: {' '.join(sorted(keep))}")

        to_remove = [pkg for pkg in self.list_explicit() if pkg not in keep]
        if not to_remove:
            success(logger, "No packages to remove")
            return True

        logger.info(f"Removing {len(to_remove)} packages...")
        self.remove(to_remove)
        self.clean_orphans()
        self.clean_cache()
        success(logger, "System reset complete")
        return True

    def clean_orphans(self) -> None:
        logger.info("Cleaning orphan packages...")
        orphans = (self._query(["pacman", "-Qdtq"]) or "").split()
        if orphans:
            self._run(["sudo", "pacman", "-Rns", "--noconfirm", *orphans])

    def clean_cache(self) -> None:
        logger.info("Cleaning package cache...")
        if shutil.which("paccache"):
            self._run(["sudo", "paccache", "-r"])
