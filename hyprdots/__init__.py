"""
hyprdots: dotfiles installer for an Arch Linux / Hyprland desktop

Copies the dotfiles payload into the user's home, installs the required
packages and switches between the StealthIQ and JaKooLit setups, with
checkpoints and backups taken before anything destructive happens.
"""

VERSION = "2.0.0"
