from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from taskrelay.cli import cli
from taskrelay.config import get_settings


@pytest.fixture
def sqlite_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    # Separate CLI invocations only share state through a persistent store.
    path = tmp_path / "cli.db"
    monkeypatch.setenv("STORE_BACKEND", "sqlite")
    monkeypatch.setenv("STORE_PATH", str(path))
    get_settings.cache_clear()
    return path


def test_enqueue_work_result_roundtrip(sqlite_env: Path) -> None:
    runner = CliRunner()
    r = runner.invoke(cli, ["enqueue", "--id", "cli-1", "--content", "hello", "--priority", "high"])
    assert r.exit_code == 0, r.output
    out = json.loads(r.output[r.output.index("{") :])
    assert out["accepted"] is True
    assert out["receipt"]["id"] == "cli-1"

    r = runner.invoke(cli, ["pending"])
    assert r.exit_code == 0, r.output
    assert '"cli-1"' in r.output

    r = runner.invoke(cli, ["worker", "--once"])
    assert r.exit_code == 0, r.output

    r = runner.invoke(cli, ["result", "cli-1"])
    assert r.exit_code == 0, r.output
    assert '"output": "hello"' in r.output
    assert '"status": "completed"' in r.output


def test_worker_once_with_empty_queue_exits_nonzero(sqlite_env: Path) -> None:
    r = CliRunner().invoke(cli, ["worker", "--once"])
    assert r.exit_code == 1


def test_enqueue_rejects_invalid_input() -> None:
    runner = CliRunner()
    r = runner.invoke(cli, ["enqueue", "--id", "bad id", "--content", "x"])
    assert r.exit_code != 0
    assert "id" in r.output

    r = runner.invoke(cli, ["enqueue", "--content", "x", "--metadata", "{nope"])
    assert r.exit_code != 0


def test_result_missing() -> None:
    r = CliRunner().invoke(cli, ["result", "nothing-here"])
    assert r.exit_code != 0
    assert "Result not found" in r.output


def test_worker_rejects_bad_handler() -> None:
    r = CliRunner().invoke(cli, ["worker", "--once", "--handler", "no_colon"])
    assert r.exit_code != 0


def test_config_report_has_no_secret_values() -> None:
    r = CliRunner().invoke(cli, ["config"])
    assert r.exit_code == 0, r.output
    key = get_settings().secret.queue_api_key.get_secret_value()
    assert key not in r.output
    assert '"queue_api_key": "SET"' in r.output
