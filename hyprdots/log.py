"""Logging setup: one append-only log file per run plus console output"""

import time
import logging
from pathlib import Path
from typing import Optional

SUCCESS = 25

logging.addLevelName(SUCCESS, "SUCCESS")
logging.addLevelName(logging.WARNING, "WARN")

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def success(logger: logging.Logger, message: str) -> None:
    """Log at the SUCCESS level"""
    logger.log(SUCCESS, message)


def setup_logging(log_dir: Path, verbose: bool = False) -> Optional[Path]:
    """
    Configure the hyprdots logger.

    Args:
        log_dir: Directory for install-<timestamp>.log
        verbose: Show DEBUG messages on the console

    Returns:
        Path of the log file, or None if it could not be created
    """
    root = logging.getLogger("hyprdots")
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    root.addHandler(console)

    log_file = log_dir / f"install-{time.strftime('%Y%m%d-%H%M%S')}.log"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    except OSError as e:
        root.warning(f"Could not open log file {log_file}: {e}")
        return None

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(file_handler)
    return log_file
