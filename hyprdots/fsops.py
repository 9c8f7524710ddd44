"""
Destructive-overwrite filesystem primitives

Both operations remove whatever is at the destination before recreating
it. Recoverability comes from the checkpoint and backup stores, not from
these functions. Failures are logged and reported as False.
"""

import os
import shutil
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def remove_path(path: Path) -> None:
    """Remove a file, symlink or directory tree; missing paths are ignored"""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def copy_entry(source: Path, destination: Path) -> None:
    """Copy a file, directory tree or symlink (the link itself, not its target)"""
    if source.is_symlink():
        os.symlink(os.readlink(source), destination)
    elif source.is_dir():
        shutil.copytree(source, destination, symlinks=True)
    else:
        shutil.copy2(source, destination)


def safe_copy(source: Path, destination: Path, dry_run: bool = False) -> bool:
    """
    Copy source over destination, replacing anything already there.

    Args:
        source: File or directory to copy
        destination: Target path; its parent is created when missing
        dry_run: Only report the copy

    Returns:
        True if the copy succeeded
    """
    source, destination = Path(source), Path(destination)
    if dry_run:
        logger.info(f"[DRY RUN] cp -r {source} {destination}")
        return True

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Failed to create {destination.parent}: {e}")
        return False

    if destination.is_symlink() or destination.exists():
        try:
            remove_path(destination)
        except OSError as e:
            logger.error(f"Failed to remove existing: {destination} ({e})")
            return False

    try:
        copy_entry(source, destination)
    except (OSError, shutil.Error) as e:
        logger.error(f"Failed to copy: {source} → {destination} ({e})")
        return False

    logger.debug(f"COPY {source} → {destination}")
    return True


def safe_symlink(target: str, link_path: Path, dry_run: bool = False) -> bool:
    """
    Point link_path at target, replacing any file, directory or link.

    Args:
        target: Link target, stored as given (relative targets stay relative)
        link_path: Path of the symlink
        dry_run: Only report the link

    Returns:
        True if the link was created
    """
    link_path = Path(link_path)
    if dry_run:
        logger.info(f"[DRY RUN] ln -sf {target} {link_path}")
        return True

    if link_path.is_symlink() or link_path.exists():
        try:
            remove_path(link_path)
        except OSError as e:
            logger.error(f"Failed to remove existing: {link_path} ({e})")
            return False

    try:
        os.symlink(target, link_path)
    except OSError as e:
        logger.error(f"Failed to create symlink: {link_path} → {target} ({e})")
        return False

    logger.debug(f"SYMLINK {link_path} → {target}")
    return True
