"""End-to-end CLI tests with typer's CliRunner and the offline stub provider."""

from __future__ import annotations

import logging

import pytest
from typer.testing import CliRunner

from tootoo.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Config file with the stub provider, no log file, DB under tmp_path."""
    db_path = tmp_path / "db" / "tootoo.db"
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        "\n".join([
            "[database]",
            f'db_path = "{db_path.as_posix()}"',
            "[llm]",
            'provider = "stub"',
            'model = "stub"',
            "[logging]",
            'log_file = ""',
        ]),
        encoding="utf-8",
    )
    for var in ("TOOTOO_DB_PATH", "TOOTOO_LLM_PROVIDER", "TOOTOO_USE_STUB_UNIVERSE",
                "TOOTOO_UNIVERSE_SIZE", "TOOTOO_MIN_TRADING_VALUE"):
        monkeypatch.delenv(var, raising=False)
    return ["--config", str(config_file)], db_path


def test_init_db(cli_env):
    config_args, db_path = cli_env
    result = runner.invoke(app, ["init-db", *config_args])
    assert result.exit_code == 0, result.output
    assert "[OK] Database ready." in result.output
    assert db_path.exists()


def test_validate_config(cli_env):
    config_args, _ = cli_env
    result = runner.invoke(app, ["validate-config", *config_args, "--full"])
    assert result.exit_code == 0, result.output
    assert "LLM provider:      stub" in result.output
    assert '"max_candidates": 200' in result.output


def test_missing_config_file_exits_1(tmp_path):
    result = runner.invoke(app, ["validate-config", "--config", str(tmp_path / "nope.toml")])
    assert result.exit_code == 1
    assert "[ERROR]" in result.output


def test_seed_then_run_then_show(cli_env):
    config_args, _ = cli_env

    seeded = runner.invoke(app, ["seed-features", *config_args, "--as-of-date", "2026-01-15", "--size", "300"])
    assert seeded.exit_code == 0, seeded.output
    assert "Seeded 300 new rows" in seeded.output

    first = runner.invoke(app, ["run-eod", *config_args, "--as-of-date", "2026-01-15"])
    assert first.exit_code == 0, first.output
    assert "outcome=success" in first.output
    assert "(200 candidates)" in first.output

    second = runner.invoke(app, ["run-eod", *config_args, "--as-of-date", "2026-01-15"])
    assert second.exit_code == 0, second.output
    assert "outcome=already_exists" in second.output

    shown = runner.invoke(app, ["show-snapshot", *config_args, "--as-of-date", "2026-01-15"])
    assert shown.exit_code == 0, shown.output
    assert "KRX:000001" in shown.output
    assert " 20. " in shown.output

    history = runner.invoke(app, ["show-snapshot", *config_args, "--as-of-date", "2026-01-15", "--history"])
    assert history.exit_code == 0, history.output
    assert "success" in history.output


def test_run_without_features_records_failure(cli_env):
    config_args, _ = cli_env
    result = runner.invoke(app, ["run-eod", *config_args, "--as-of-date", "2026-01-15"])
    assert result.exit_code == 1
    assert "No feature data" in result.output

    history = runner.invoke(app, ["show-snapshot", *config_args, "--as-of-date", "2026-01-15", "--history"])
    assert "failed" in history.output


def test_dry_run_exits_0(cli_env):
    config_args, _ = cli_env
    runner.invoke(app, ["seed-features", *config_args, "--as-of-date", "2026-01-15", "--size", "250"])
    result = runner.invoke(app, ["run-eod", *config_args, "--as-of-date", "2026-01-15", "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "Dry run: 200 candidates" in result.output


def test_run_invalid_date(cli_env):
    config_args, _ = cli_env
    result = runner.invoke(app, ["run-eod", *config_args, "--as-of-date", "15/01/2026"])
    assert result.exit_code == 1
    assert "Invalid as-of date" in result.output


def test_seed_invalid_size(cli_env):
    config_args, _ = cli_env
    result = runner.invoke(app, ["seed-features", *config_args, "--as-of-date", "2026-01-15", "--size", "9999"])
    assert result.exit_code == 1


def test_show_snapshot_without_database(cli_env):
    config_args, _ = cli_env
    result = runner.invoke(app, ["show-snapshot", *config_args])
    assert result.exit_code == 1
    assert "Cannot read snapshot store" in result.output


def test_history_requires_date(cli_env):
    config_args, _ = cli_env
    result = runner.invoke(app, ["show-snapshot", *config_args, "--history"])
    assert result.exit_code == 1
