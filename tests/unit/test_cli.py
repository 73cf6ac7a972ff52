"""
Unit tests for the ingestion CLI.

Only paths that stop before a database connection are exercised here.
"""

import json

import pytest

from forcam_ingest.cli.ingest_cli import EXIT_CONFIG, EXIT_CRASH, build_parser, main


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ("DB_PASSWORD", "FORCAM_ROOT", "FORCAM_API_TOKEN", "FORCAM_API_BASE_URL"):
        monkeypatch.delenv(name, raising=False)


class TestParser:
    def test_run_flags(self):
        args = build_parser().parse_args(["run", "--config", "c.yaml", "--no-api", "--watch"])
        assert args.command == "run"
        assert args.config == "c.yaml"
        assert args.no_api and args.watch and not args.no_files

    def test_ingest_file_machine_is_optional(self):
        args = build_parser().parse_args(["ingest-file", "/data/MachineX/a.csv"])
        assert args.machine is None
        assert args.path == "/data/MachineX/a.csv"


class TestExitCodes:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_CRASH
        assert "usage" in capsys.readouterr().out.lower()

    def test_missing_password_is_a_configuration_error(self, capsys):
        assert main(["run", "--no-api"]) == EXIT_CONFIG
        error = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert error["error_type"] == "configuration"
        assert "password" in error["error"].lower()

    def test_missing_config_file(self, tmp_path, capsys):
        assert main(["init-db", "--config", str(tmp_path / "missing.yaml")]) == EXIT_CONFIG

    def test_missing_file_root(self, monkeypatch):
        monkeypatch.setenv("DB_PASSWORD", "secret")
        assert main(["run", "--no-api"]) == EXIT_CONFIG

    def test_ingest_file_missing_path(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DB_PASSWORD", "secret")
        assert main(["ingest-file", str(tmp_path / "MachineX" / "missing.csv")]) == EXIT_CONFIG
