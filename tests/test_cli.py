"""Tests for the sqlcover command line."""

from types import SimpleNamespace

import pytest
import yaml

from common import PROC1_NAME
from sqlcoverlib import cli


@pytest.fixture
def fake_factory(monkeypatch, make_coverage):
    """Replaces CodeCoverage in the cli with one wired to the fake server, and records the config it got."""
    seen = {}

    def from_config(config):
        seen["config"] = config
        seen["coverage"] = make_coverage(config.exclude_filter)
        return seen["coverage"]

    monkeypatch.setattr(cli, "CodeCoverage", SimpleNamespace(from_config=from_config))
    monkeypatch.delenv("SQLCOVERLIB_LOGGING", raising=False)
    monkeypatch.delenv("SQLCOVERLIB_DISPATCH_LATENCY", raising=False)
    return seen


def run_cli(capsys, argv):
    assert cli.cli_main(argv) == 0
    return yaml.safe_load(capsys.readouterr().out)


def test_command_workload(capsys, fake_factory):
    summary = run_cli(capsys, [
        "--connection", "mssql+pyodbc://db", "--database", "TestDb",
        "--command", "EXEC dbo.Proc1 @id = 1",
    ])

    assert summary["database"] == "TestDb"
    proc = summary["objects"][PROC1_NAME]
    assert (proc["hit_count"], proc["total"]) == (1, 3)
    assert proc["missed_lines"] == [4, 6]
    assert summary["overall"]["total"] == 5
    assert summary["diagnostics"] == []


def test_exe_workload(capsys, fake_factory):
    summary = run_cli(capsys, [
        "--connection", "mssql+pyodbc://db", "--database", "TestDb",
        "--exclude", "Internal*", "--exe", "/usr/bin/workload", "--args", "EXEC dbo.Proc1 @id = 1",
    ])

    assert list(summary["objects"]) == [PROC1_NAME]
    runner = fake_factory["coverage"].process_runner
    assert runner.runs[0][1] == "EXEC dbo.Proc1 @id = 1"


def test_config_file_with_overrides(tmp_path, capsys, fake_factory):
    path = tmp_path / "coverage.yaml"
    path.write_text(yaml.safe_dump({
        "connection": "mssql+pyodbc://db",
        "database": "TestDb",
        "exclude_filter": ["Internal*"],
    }))

    run_cli(capsys, [
        "--config", str(path), "--exclude", "Audit*", "--workers", "3", "--dispatch-latency", "0.5",
        "--command", "EXEC dbo.Proc1 @id = 1",
    ])

    config = fake_factory["config"]
    assert config.exclude_filter == ["Internal*", "Audit*"]
    assert config.max_workers == 3
    assert config.dispatch_latency_seconds == 0.5


def test_connection_is_required_without_config(fake_factory):
    with pytest.raises(SystemExit):
        cli.cli_main(["--database", "TestDb", "--command", "SELECT 1"])


def test_workload_is_required(fake_factory):
    with pytest.raises(SystemExit):
        cli.cli_main(["--connection", "x://", "--database", "TestDb"])
