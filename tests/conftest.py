"""Shared fixtures: a throwaway home directory and dotfiles checkout."""

import pytest

from hyprdots.config import InstallerConfig, RetryPolicy
from tests.helpers import write


@pytest.fixture
def home(tmp_path):
    """Provide an empty home directory."""
    path = tmp_path / "home"
    (path / ".config").mkdir(parents=True)
    return path


@pytest.fixture
def source(tmp_path):
    """Provide a dotfiles checkout with one setup, a few configs and a zshrc."""
    path = tmp_path / "dotfiles"
    write(path / "dot_config" / "hypr-stealthiq" / "hyprland.conf",
          "exec = /home/stealthiq/.local/bin/bar.sh\n")
    write(path / "dot_config" / "kitty" / "kitty.conf", "font_size 11\n")
    write(path / "dot_config" / "dot_zsh" / "aliases.zsh", "alias ll='ls -l'\n")
    write(path / "dot_zshrc", "export ZDOTDIR=/home/stealthiq/.config/zsh\n")
    write(path / "misc" / ".wallpapers" / "wall.png", "png")
    return path


@pytest.fixture
def config(home, source, tmp_path):
    """Provide an InstallerConfig rooted in the temporary directories."""
    return InstallerConfig(
        home=home,
        source_dir=source,
        lock_file=tmp_path / "dotfiles-install.lock",
        auto_mode=True,
        min_free_mb=0,
        required_tools=(),
        retry=RetryPolicy(max_attempts=3, initial_delay=0.01, backoff=2.0),
    )
