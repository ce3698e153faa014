"""Tests for the click entry points and the headless query path."""

import io

import pytest
from click.testing import CliRunner
from loguru import logger
from rich.console import Console

import main
from config import app_config, console_config
from main import cli, run_query


@pytest.fixture
def out():
    return Console(file=io.StringIO(), width=100, color_system=None)


@pytest.fixture
def log_to_tmp(tmp_path, monkeypatch):
    monkeypatch.setattr(app_config, "log_file", str(tmp_path / "lithia.log"))
    yield tmp_path / "lithia.log"
    logger.remove()


def test_version_masks_default_password():
    result = CliRunner().invoke(cli, ["version"])

    assert result.exit_code == 0
    assert "Lithia v" in result.output
    assert "abc123" not in result.output
    assert "●●●●●●" in result.output


def test_run_query_against_sqlite(out):
    status = run_query("sqlite://:memory:", "SELECT 1 AS one, NULL AS nothing", out)

    output = out.file.getvalue()
    assert status == 0
    assert "one" in output
    assert "NULL" in output
    assert "1 row in set" in output


def test_run_query_reports_unknown_scheme(out):
    status = run_query("oracle://scott:tiger@db/orcl", "SELECT 1", out)

    output = out.file.getvalue()
    assert status == 1
    assert "ERROR" in output
    assert "unsupported scheme" in output
    assert "tiger" not in output


def test_run_query_reports_sql_error(out):
    status = run_query("sqlite://:memory:", "SELECT * FROM missing_table", out)

    assert status == 1
    assert "no such table" in out.file.getvalue()


def test_query_command_exit_status(log_to_tmp):
    runner = CliRunner()

    ok = runner.invoke(cli, ["query", "sqlite://:memory:", "SELECT 42 AS answer"])
    failed = runner.invoke(cli, ["query", "sqlite://:memory:", "SELEC 1"])

    assert ok.exit_code == 0
    assert "42" in ok.output
    assert failed.exit_code == 1
    assert "ERROR" in failed.output
    assert log_to_tmp.exists()


def test_console_requires_a_terminal(log_to_tmp):
    result = CliRunner().invoke(cli, ["console"], input="")

    assert result.exit_code != 0
    assert "interactive terminal" in result.output


@pytest.fixture
def fake_console(monkeypatch, log_to_tmp):
    calls = []
    monkeypatch.setattr(main, "_stdin_is_tty", lambda: True)
    monkeypatch.setattr("ui.console.run_console", lambda *args: calls.append(args))
    return calls


def test_console_uses_configured_tick_rate(fake_console, monkeypatch):
    monkeypatch.setattr(console_config, "tick_rate_ms", 500)

    result = CliRunner().invoke(cli, ["console", "-c", "sqlite://:memory:", "-q", "SELECT 1"])

    assert result.exit_code == 0
    assert fake_console == [("sqlite://:memory:", "SELECT 1", 0.5)]


def test_console_tick_rate_option(fake_console):
    result = CliRunner().invoke(cli, ["console", "--tick-rate", "100"])

    assert result.exit_code == 0
    assert fake_console == [(console_config.default_connection, console_config.default_query, 0.1)]
