#!/usr/bin/env python3

"""
hyprdots command line interface

With no action flag the StealthIQ setup is installed, asking before
existing configs are replaced. --auto runs the same install unattended.
"""

import sys
import argparse
import logging
from itertools import islice
from typing import Optional

from . import VERSION
from .backups import BackupStore
from .config import InstallerConfig, VARIANTS
from .log import setup_logging
from .orchestrator import Orchestrator, RunResult, INSTALL_MODES

logger = logging.getLogger("hyprdots")

EXIT_INTERRUPTED = 130


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="hyprdots",
        description=f"Dotfiles installer for Arch Linux / Hyprland (v{VERSION})"
    )
    parser.add_argument("--config", help="JSON config file")
    parser.add_argument("--source", help="Dotfiles checkout (default: current directory)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show all commands")
    parser.add_argument("-d", "--debug", action="store_true", help="Show debug output")
    parser.add_argument("--dry-run", action="store_true", help="Preview changes")
    parser.add_argument("-y", "--yes", action="store_true", help="Don't ask for confirmation")

    actions = parser.add_mutually_exclusive_group()
    actions.add_argument("--auto", nargs="?", const="stealthiq", choices=INSTALL_MODES,
                         metavar="VARIANT", help="Unattended install (stealthiq, jakoolit or both)")
    actions.add_argument("--switch", choices=sorted(VARIANTS), metavar="VARIANT",
                         help="Switch the active setup")
    actions.add_argument("--backup", action="store_true", help="Backup configs")
    actions.add_argument("--deps", action="store_true", help="Install packages")
    actions.add_argument("--reset", action="store_true",
                         help="Full reset: remove desktop packages and configs, then reinstall")
    actions.add_argument("--portable", action="store_true", help="Fix hardcoded home paths")
    actions.add_argument("--export", action="store_true", help="Export dotfiles")
    actions.add_argument("--rollback", metavar="CHECKPOINT", help="Rollback to a checkpoint")
    actions.add_argument("--list-checkpoints", action="store_true",
                         help="List available checkpoints")

    return parser.parse_args(argv)


def print_checkpoints(orchestrator: Orchestrator) -> None:
    found = False
    for summary in orchestrator.list_checkpoints():
        found = True
        print(summary.id)
        print(f"  Name: {summary.name}")
        print(f"  Time: {summary.time}")
        if summary.kernel:
            print(f"  Kernel: {summary.kernel}")
        print()
    if not found:
        print("No checkpoints found")


def report_failure(result: RunResult, orchestrator: Orchestrator,
                   log_file: Optional[str]) -> None:
    """Tell the user what failed, where the log is and how to recover"""
    status = "interrupted" if result.interrupted else result.state.value
    logger.error(f"{result.operation.capitalize()} {status}")
    for issue in result.issues:
        logger.error(f"  {issue}")
    if log_file:
        logger.error(f"Check log: {log_file}")

    latest = BackupStore(orchestrator.config).latest()
    if latest:
        logger.info(f"Backup location: {latest}")

    if result.checkpoint is not None:
        logger.warning(f"Checkpoint saved at: {result.checkpoint}")
        logger.warning(f"To rollback: hyprdots --rollback {result.checkpoint.name}")
        return

    recent = list(islice(orchestrator.list_checkpoints(), 5))
    if recent:
        logger.info("Available checkpoints for rollback:")
        for summary in recent:
            logger.info(f"  - {summary.id}")


def run(args, orchestrator: Orchestrator) -> Optional[RunResult]:
    if args.list_checkpoints:
        print_checkpoints(orchestrator)
        return None
    if args.rollback:
        return orchestrator.rollback(args.rollback)
    if args.switch:
        return orchestrator.switch(args.switch)
    if args.backup:
        return orchestrator.backup()
    if args.deps:
        return orchestrator.deps()
    if args.reset:
        return orchestrator.reset()
    if args.portable:
        return orchestrator.portable()
    if args.export:
        return orchestrator.export()
    return orchestrator.install(args.auto or "stealthiq")


def main(argv=None):
    """Main function"""
    args = parse_arguments(argv)
    config = InstallerConfig.from_environment(
        config_path=args.config,
        source_dir=args.source,
        dry_run=args.dry_run,
        auto_mode=bool(args.auto or args.yes),
        verbose=args.verbose or args.debug,
        debug=args.debug,
    )

    log_file = setup_logging(config.log_dir, verbose=config.verbose) if config.home.is_absolute() else None
    logger.info(f"=== Dotfiles Installer v{VERSION} ===")
    if log_file:
        logger.info(f"Log file: {log_file}")
    logger.debug(f"Home: {config.home}, Source: {config.source_dir}")

    orchestrator = Orchestrator(config)
    result = run(args, orchestrator)
    if result is None:
        sys.exit(0)

    if result.ok:
        latest = BackupStore(config).latest()
        if latest:
            logger.info(f"Backup: {latest}")
        if log_file:
            logger.info(f"Log: {log_file}")
        sys.exit(0)

    report_failure(result, orchestrator, str(log_file) if log_file else None)
    sys.exit(EXIT_INTERRUPTED if result.interrupted else 1)


if __name__ == "__main__":
    main()
