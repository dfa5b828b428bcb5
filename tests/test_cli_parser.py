#!/usr/bin/env python3
"""
grnctl CLI argument parser and entry point tests.
"""

import json
import tomllib
from pathlib import Path
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from grnctl.cli import main, parse_arguments  # noqa: E402


class TestParseArgumentsDefaults:
    def test_default_values(self):
        args = parse_arguments(["deploy"])

        assert args.action == "deploy"
        assert args.environment == "local"
        assert args.node_type == "validator"
        assert args.force is False
        assert args.no_build is False
        assert args.no_git_lfs is False
        assert args.skip_network is False
        assert args.logs is False
        assert args.log_tail is None
        assert args.dry_run is False
        assert args.repo_root is None
        assert args.render_toml is False
        assert args.print_context is False


class TestParseArgumentsFlags:
    def test_positionals(self):
        args = parse_arguments(["init", "live", "seed"])

        assert (args.action, args.environment, args.node_type) == ("init", "live", "seed")

    def test_boolean_flags(self):
        args = parse_arguments([
            "deploy", "test",
            "--no-build",
            "--no-git-lfs",
            "--skip-network",
            "-l",
            "--dry-run",
        ])

        assert args.no_build is True
        assert args.no_git_lfs is True
        assert args.skip_network is True
        assert args.logs is True
        assert args.dry_run is True

    def test_force_with_init(self):
        assert parse_arguments(["init", "test", "--force"]).force is True

    def test_log_tail_and_repo_root(self):
        args = parse_arguments(["deploy", "--log-tail", "100", "--repo-root", "/srv/graphene"])

        assert args.log_tail == 100
        assert args.repo_root == Path("/srv/graphene")


class TestParseArgumentsEdgeCases:
    @pytest.mark.parametrize("argv", [
        [],
        ["upgrade"],
        ["deploy", "staging"],
        ["init", "local", "archive"],
        ["deploy", "--force"],
        ["init", "--dry-run"],
        ["show-validator", "local", "full"],
        ["deploy", "--log-tail", "0"],
    ])
    def test_invalid_usage_exits_with_2(self, argv):
        with pytest.raises(SystemExit) as exc_info:
            parse_arguments(argv)

        assert exc_info.value.code == 2

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            parse_arguments(["--version"])

        assert exc_info.value.code == 0
        assert "grnctl" in capsys.readouterr().out


class TestMain:
    def test_print_context(self, repo, capsys):
        code = main(["deploy", "test", "--repo-root", str(repo), "--print-context"])

        assert code == 0
        context = json.loads(capsys.readouterr().out)
        assert context["identity"]["image"] == "graphene/tendermint:test"

    def test_render_toml(self, repo):
        code = main(["validate", "live", "--repo-root", str(repo), "--render-toml"])

        assert code == 0
        with open(repo / "grnctl.toml", "rb") as f:
            assert tomllib.load(f)["deploy"]["env_config_dir"] == "config/env/live"

    def test_configuration_error_exit_code(self, repo, monkeypatch):
        monkeypatch.setenv("GRNCTL_SKIP_DEPENDENCY_CHECK", "1")

        with patch("subprocess.run") as mock_run:
            code = main(["deploy", "live", "--repo-root", str(repo)])

        assert code == 2
        mock_run.assert_not_called()

    def test_tooling_error_exit_code(self, repo, monkeypatch):
        monkeypatch.delenv("GRNCTL_SKIP_DEPENDENCY_CHECK", raising=False)

        with patch("subprocess.run", side_effect=FileNotFoundError()):
            code = main(["deploy", "test", "--repo-root", str(repo)])

        assert code == 3

    def test_missing_repo_root(self, tmp_path):
        assert main(["validate", "--repo-root", str(tmp_path / "absent")]) == 2
