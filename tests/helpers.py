"""Helpers shared by the test modules."""

import os
from pathlib import Path

from hyprdots.config import TRACKED_ENTRIES


def write(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def live_state(config):
    """Snapshot of tracked entries: link targets, file contents, directory listings."""
    state = {}
    for entry in TRACKED_ENTRIES:
        path = entry.live_path(config)
        if path.is_symlink():
            state[entry.name] = ("link", os.readlink(path))
        elif path.is_file():
            state[entry.name] = ("file", path.read_text())
        elif path.is_dir():
            state[entry.name] = ("dir", sorted(
                (str(p.relative_to(path)), p.read_text() if p.is_file() else None)
                for p in path.rglob("*")
            ))
    return state
