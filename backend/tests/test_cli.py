"""Tests for the dbanchor CLI: JSON on stdout, exit status 0/1."""

import json
import sqlite3
from pathlib import Path
from unittest.mock import patch

import pytest

from dbanchor.cli import main
from dbanchor.core.exceptions import ConfigurationError, ConnectivityError
from dbanchor.core.selector import BackendSelector
from dbanchor.models import BackendDescriptor, BackendKindEnum, DialectEnum


def _run(selector: BackendSelector, capsys, *argv: str) -> tuple[int, dict, str]:
    with patch("dbanchor.cli.BackendSelector.from_settings", return_value=selector):
        code = main(list(argv))
    captured = capsys.readouterr()
    return code, json.loads(captured.out), captured.err


@pytest.fixture
def dead_selector(tmp_path: Path) -> BackendSelector:
    bogus = tmp_path / "bogus.db"
    bogus.write_bytes(b"not a database at all, just some bytes" * 20)
    descriptor = BackendDescriptor(
        kind=BackendKindEnum.EMBEDDED, dialect=DialectEnum.SQLITE, path=str(bogus)
    )
    return BackendSelector([descriptor], probe_timeout=1.0)


def test_check_connection_ok(selector, capsys):
    code, out, _ = _run(selector, capsys, "check-connection")
    assert code == 0
    assert out["ok"] is True
    assert out["selected"] == "embedded:sqlite"
    assert out["backends"][0]["status"] == "healthy"


def test_check_connection_nothing_healthy(dead_selector, capsys):
    code, out, err = _run(dead_selector, capsys, "check-connection")
    assert code == 1
    assert out["ok"] is False
    assert out["backends"][0]["status"] == "unreachable"
    assert "no backend is healthy" in err


def test_run_migrations_then_status(selector, capsys):
    code, out, _ = _run(selector, capsys, "run-migrations")
    assert code == 0
    assert out["applied"] == 3
    assert out["failed"] == 0

    code, out, _ = _run(selector, capsys, "run-migrations")
    assert out["applied"] == 0
    assert out["skipped"] == 3

    code, out, _ = _run(selector, capsys, "migration-status")
    assert code == 0
    assert out["applied"] == ["001", "002", "003"]
    assert out["pending"] == []


def test_run_migrations_failure_exit_code(selector, capsys, tmp_path):
    scripts = tmp_path / "scripts"
    scripts.mkdir()
    (scripts / "001_ok.sql").write_text("CREATE TABLE a (id INTEGER);")
    (scripts / "002_broken.sql").write_text("CREATE TABLEE b;")
    code, out, err = _run(selector, capsys, "run-migrations", "--migrations-dir", str(scripts))
    assert code == 1
    assert out["ok"] is False
    assert out["error"] == "MigrationFailure"
    assert out["failed_version"] == "002"
    assert out["applied_versions"] == ["001"]
    assert "run-migrations" in err


def test_seed_and_verify(selector, capsys):
    _run(selector, capsys, "run-migrations")
    code, out, _ = _run(selector, capsys, "seed")
    assert code == 0
    assert out["tables"]["districts"]["inserted"] == 9

    code, out, _ = _run(selector, capsys, "seed")
    assert out["inserted"] == 0
    assert out["tables"]["districts"]["already_present"] == 9

    code, out, _ = _run(selector, capsys, "verify-schema", "--strict")
    assert code == 0
    assert out["ok"] is True


def test_verify_schema_missing_tables(selector, capsys):
    code, out, _ = _run(selector, capsys, "verify-schema")
    assert code == 0
    assert out["ok"] is False
    assert out["tables"]["districts"] == "missing"

    code, out, err = _run(selector, capsys, "verify-schema", "--strict")
    assert code == 1
    assert "missing tables" in err


def test_bootstrap(selector, capsys):
    code, out, _ = _run(selector, capsys, "bootstrap")
    assert code == 0
    assert out["schema_ok"] is True
    assert out["migrations"]["applied"] == 3
    assert out["seed"]["modules"]["inserted"] == 8


def test_no_backend_available(dead_selector, capsys):
    code, out, err = _run(dead_selector, capsys, "seed")
    assert code == 1
    assert out["error"] == "NoBackendAvailable"
    assert len(out["backends"]) == 1
    assert "no backend available" in err


def test_configuration_error(capsys):
    with patch(
        "dbanchor.cli.BackendSelector.from_settings",
        side_effect=ConfigurationError("no backend configured"),
    ):
        code = main(["check-connection"])
    captured = capsys.readouterr()
    assert code == 1
    assert json.loads(captured.out)["error"] == "ConfigurationError"
    assert "no backend configured" in captured.err


def test_connectivity_error_reported_as_json(selector, capsys):
    error = ConnectivityError("embedded:sqlite", OSError("disk went away"))
    with patch("dbanchor.cli.seed_reference_data", side_effect=error):
        code, out, err = _run(selector, capsys, "seed")
    assert code == 1
    assert out["ok"] is False
    assert out["error"] == "ConnectivityError"
    assert "disk went away" in out["cause"]
    assert "disk went away" in err


def test_driver_error_reported_as_json(selector, capsys):
    with patch(
        "dbanchor.cli.seed_reference_data",
        side_effect=sqlite3.IntegrityError("NOT NULL constraint failed: districts.name"),
    ):
        code, out, _ = _run(selector, capsys, "seed")
    assert code == 1
    assert out == {
        "command": "seed",
        "ok": False,
        "error": "IntegrityError",
        "cause": "NOT NULL constraint failed: districts.name",
    }


def test_unknown_command_exits_2():
    with pytest.raises(SystemExit) as exc_info:
        main(["frobnicate"])
    assert exc_info.value.code == 2
