"""Tests for argument parsing and exit codes."""

import json
import logging

import pytest
from unittest.mock import patch, MagicMock

from hyprdots import cli
from hyprdots.orchestrator import RunResult, RunState
from tests.helpers import write


class TestParseArguments:
    """Test command line parsing."""

    def test_defaults(self):
        args = cli.parse_arguments([])
        assert args.auto is None
        assert args.dry_run is False
        assert args.yes is False

    def test_auto_variants(self):
        assert cli.parse_arguments(["--auto"]).auto == "stealthiq"
        assert cli.parse_arguments(["--auto", "both"]).auto == "both"

    def test_invalid_variant(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments(["--switch", "gnome"])

    def test_actions_are_exclusive(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments(["--backup", "--deps"])


class TestRun:
    """Test dispatch from arguments to orchestrator commands."""

    @pytest.fixture
    def orchestrator(self):
        return MagicMock()

    def test_default_is_stealthiq_install(self, orchestrator):
        cli.run(cli.parse_arguments([]), orchestrator)
        orchestrator.install.assert_called_once_with("stealthiq")

    def test_auto_mode(self, orchestrator):
        cli.run(cli.parse_arguments(["--auto", "jakoolit"]), orchestrator)
        orchestrator.install.assert_called_once_with("jakoolit")

    def test_switch(self, orchestrator):
        cli.run(cli.parse_arguments(["--switch", "jakoolit"]), orchestrator)
        orchestrator.switch.assert_called_once_with("jakoolit")

    def test_rollback(self, orchestrator):
        cli.run(cli.parse_arguments(["--rollback", "pre-install"]), orchestrator)
        orchestrator.rollback.assert_called_once_with("pre-install")

    def test_reset(self, orchestrator):
        cli.run(cli.parse_arguments(["--reset"]), orchestrator)
        orchestrator.reset.assert_called_once_with()


class TestMain:
    """Test exit codes of the installer entry point."""

    @pytest.fixture
    def argv(self, home, source, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(home))
        config_file = write(tmp_path / "config.json", json.dumps({
            "min_free_mb": 0,
            "lock_file": str(tmp_path / "dotfiles-install.lock"),
            "retry": {"max_attempts": 1},
        }))
        yield ["--config", str(config_file), "--source", str(source)]
        hyprdots_logger = logging.getLogger("hyprdots")
        for handler in list(hyprdots_logger.handlers):
            hyprdots_logger.removeHandler(handler)
            handler.close()

    def test_list_checkpoints_empty(self, argv, capsys):
        with pytest.raises(SystemExit) as excinfo:
            cli.main(argv + ["--list-checkpoints"])

        assert excinfo.value.code == 0
        assert "No checkpoints found" in capsys.readouterr().out

    def test_backup_success(self, argv, home):
        write(home / ".zshrc", "export A=1\n")

        with pytest.raises(SystemExit) as excinfo:
            cli.main(argv + ["--backup"])

        assert excinfo.value.code == 0
        assert (home / ".dotfiles-backups" / "latest.txt").exists()
        assert list((home / ".dotfiles-logs").glob("install-*.log"))

    def test_rollback_unknown_fails(self, argv):
        with pytest.raises(SystemExit) as excinfo:
            cli.main(argv + ["--rollback", "pre-nothing"])
        assert excinfo.value.code == 1

    def test_interrupted_exit_code(self, argv):
        result = RunResult("installation", RunState.ROLLED_BACK, interrupted=True)
        with patch("hyprdots.cli.run", return_value=result):
            with pytest.raises(SystemExit) as excinfo:
                cli.main(argv + ["--auto"])
        assert excinfo.value.code == cli.EXIT_INTERRUPTED

    def test_failure_reports_checkpoint(self, argv, home, caplog):
        checkpoint = home / ".dotfiles-backups" / ".checkpoints" / "pre-install-1700000000"
        result = RunResult("installation", RunState.ROLLED_BACK, checkpoint=checkpoint,
                           issues=["installation failed"])
        with patch("hyprdots.cli.run", return_value=result):
            with pytest.raises(SystemExit) as excinfo:
                cli.main(argv + ["--auto"])

        assert excinfo.value.code == 1
        assert "hyprdots --rollback pre-install-1700000000" in caplog.text
