"""System probes: prerequisites, disk space, network and GPU detection"""

import os
import getpass
import logging
import platform
import shutil
import subprocess
from typing import List

import psutil

from .config import InstallerConfig, PACKAGE_TOOLS
from .errors import PrerequisiteError

logger = logging.getLogger(__name__)

NETWORK_HOSTS = ("archlinux.org", "google.com", "github.com")


class SystemProbe:
    """Read-only questions about the running system"""

    @staticmethod
    def kernel_version() -> str:
        return platform.release()

    @staticmethod
    def current_user() -> str:
        try:
            return getpass.getuser()
        except (KeyError, OSError):
            return str(os.getuid())

    @staticmethod
    def is_arch() -> bool:
        return os.path.exists("/etc/arch-release")

    @staticmethod
    def free_space_mb(path: str) -> int:
        """Free space in MB on the filesystem holding path"""
        return psutil.disk_usage(path).free // (1024 * 1024)

    @staticmethod
    def check_network() -> bool:
        """Check connectivity by pinging a few well known hosts"""
        logger.info("Checking network connectivity...")
        for host in NETWORK_HOSTS:
            try:
                result = subprocess.run(
                    ["ping", "-c", "1", "-W", "3", host],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            except OSError as e:
                logger.debug(f"ping unavailable: {e}")
                break
            if result.returncode == 0:
                logger.debug(f"Network OK: Connected to {host}")
                return True

        logger.warning("No network connectivity detected")
        return False

    @staticmethod
    def gpu_descriptor() -> str:
        """Display controller lines from lspci, or an empty string"""
        if not shutil.which("lspci"):
            return ""
        try:
            result = subprocess.run(
                ["lspci"],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True
            )
        except OSError as e:
            logger.debug(f"lspci failed: {e}")
            return ""
        lines = [
            line for line in result.stdout.splitlines()
            if any(word in line.lower() for word in ("vga", "3d", "display"))
        ]
        return "\n".join(lines)

    @staticmethod
    def detect_gpu() -> str:
        """
        Classify the GPU

        Returns:
            One of nvidia, amd, intel, virtual, unknown
        """
        descriptor = SystemProbe.gpu_descriptor().lower()
        if "nvidia" in descriptor:
            return "nvidia"
        if "amd" in descriptor or "radeon" in descriptor:
            return "amd"
        if "intel" in descriptor:
            return "intel"
        if "vmware" in descriptor or "virtualbox" in descriptor:
            return "virtual"
        return "unknown"


def check_prerequisites(config: InstallerConfig, need_packages: bool = False) -> List[str]:
    """
    Run the pre-flight checks for a mutating command.

    Args:
        config: Installer configuration
        need_packages: Also require the package manager tools

    Returns:
        Descriptions of the failed checks (empty when all passed)
    """
    logger.info("CHECKING PREREQUISITES")
    failures: List[str] = []
    home = config.home

    if not str(home) or not home.is_absolute():
        failures.append("HOME environment variable is not set")
    elif not home.is_dir():
        failures.append(f"Home directory does not exist: {home}")
    elif not os.access(home, os.W_OK):
        failures.append(f"No write permission to home directory: {home}")

    tools = tuple(config.required_tools)
    if need_packages:
        tools += PACKAGE_TOOLS
    for tool in tools:
        if not shutil.which(tool):
            failures.append(f"Required command not found: {tool}")

    if not (config.source_dir / "dot_config").is_dir():
        failures.append(f"Dotfiles source directory not found: {config.source_dir / 'dot_config'}")

    if not SystemProbe.is_arch():
        logger.warning("This installer is designed for Arch Linux; some features may not work")

    if not failures and not config.dry_run:
        try:
            for path in (config.config_dir, config.backup_root, config.checkpoint_dir):
                path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            failures.append(f"Failed to create required directories: {e}")

    if home.is_absolute() and home.is_dir():
        try:
            available = SystemProbe.free_space_mb(str(home))
        except OSError as e:
            logger.warning(f"Could not determine available disk space: {e}")
        else:
            logger.debug(f"Disk space: {available}MB available, {config.min_free_mb}MB required")
            if available < config.min_free_mb:
                failures.append(
                    f"Insufficient disk space: {available}MB available, "
                    f"{config.min_free_mb}MB required"
                )

    for failure in failures:
        logger.error(failure)
    return failures


def require_prerequisites(config: InstallerConfig, need_packages: bool = False) -> None:
    """
    Raises:
        PrerequisiteError: One or more checks failed
    """
    failures = check_prerequisites(config, need_packages)
    if failures:
        raise PrerequisiteError(failures)
