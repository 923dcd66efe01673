"""
Command line for the EOD job, feature ingestion and the read API.

Every command loads the config (``--config``, ``--db-path``), installs
logging, does its work, and prints a summary. Expected failures are printed
as ``[ERROR] ...`` on stderr with exit code 1. Heavy imports happen inside
the commands so ``--help`` stays fast.

Install and run::

    pip install -e .
    tootoo --help
    tootoo init-db
    tootoo seed-features --as-of-date 2026-01-15 --size 300
    tootoo run-eod --as-of-date 2026-01-15
    tootoo show-snapshot --as-of-date 2026-01-15
    tootoo serve-api

Exit codes for ``run-eod``: 0 for success and for benign no-ops (snapshot
already stored, date locked by another run, dry run); 1 when a failed
snapshot was recorded or the run could not complete.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="tootoo",
    help="tootoo — end-of-day LLM stock recommendation job.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None, db_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from tootoo.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        config = load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)

    if db_path:
        config = config.model_copy(
            update={"database": config.database.model_copy(update={"db_path": db_path})}
        )
    return config


def _configure_logging(config):
    """Set up logging from config."""
    from tootoo.utils.logging import configure_logging
    configure_logging(config.logging)


def _ensure_schema(config) -> int:
    """Create missing tables and apply pending migrations; returns migrations run."""
    from tootoo.db.connection import get_connection
    from tootoo.db.migrations import run_migrations
    from tootoo.db.schema import apply_schema

    with get_connection(
        config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)
        return run_migrations(conn)


def _parse_date_or_exit(value: str):
    from tootoo.utils.time_utils import parse_iso_date

    try:
        return parse_iso_date(value)
    except ValueError:
        typer.echo(f"[ERROR] Invalid date '{value}'. Expected YYYY-MM-DD.", err=True)
        raise typer.Exit(code=1)


_DB_PATH_OPTION = typer.Option(None, "--db-path", help="Override DB path from config.")
_CONFIG_OPTION = typer.Option(None, "--config", help="Path to TOML config file.")


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Create the snapshot and feature tables (idempotent) and run migrations."""
    from tootoo.db.schema import ALL_TABLE_NAMES

    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)

    typer.echo(f"Database: {config.database.db_path}")
    try:
        applied = _ensure_schema(config)
    except sqlite3.Error as exc:
        typer.echo(f"[ERROR] Could not initialise the database: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"  Tables verified:    {', '.join(ALL_TABLE_NAMES)}")
    typer.echo(f"  Migrations applied: {applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = _CONFIG_OPTION,
    show_full: bool = typer.Option(False, "--full", help="Print full config as JSON."),
) -> None:
    """Load and validate the config, then print the values that matter for a run."""
    config = _load_config_or_exit(config_path)

    typer.echo(f"  Database path:     {config.database.db_path}")
    typer.echo(f"  Lock directory:    {config.database.resolved_lock_dir()}")
    typer.echo(f"  Market offset:     UTC{config.market.utc_offset_hours:+d}, close {config.market.close_cutoff}")
    typer.echo(f"  Non-trading days:  {config.market.non_trading_day_policy}")
    typer.echo(f"  Universe size:     {config.universe.max_candidates} (min {config.universe.min_candidates})")
    typer.echo(f"  Stub universe:     {config.universe.use_stub}")
    typer.echo(f"  LLM provider:      {config.llm.provider} ({config.llm.model})")
    typer.echo(f"  Log level:         {config.logging.level}")
    typer.echo(f"  Debug mode:        {config.debug}")

    if show_full:
        typer.echo(json.dumps(config.model_dump(mode="json"), indent=2))

    typer.echo("[OK] Config is valid.")


@app.command("seed-features")
def seed_features(
    as_of_date: str = typer.Option(..., "--as-of-date", help="Feature date (YYYY-MM-DD)."),
    size: Optional[int] = typer.Option(None, "--size", help="Number of synthetic rows (1-5000)."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Seed deterministic synthetic feature rows for offline runs."""
    from tootoo.pipeline.ingest import StubFeatureIngestStage

    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)
    day = _parse_date_or_exit(as_of_date)
    _ensure_schema(config)

    try:
        run = StubFeatureIngestStage(config).run(day, size=size)
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"[OK] Seeded {run.rows_processed} new rows for {day.isoformat()}.")


@app.command("ingest-features")
def ingest_features(
    as_of_date: str = typer.Option(..., "--as-of-date", help="Feature date (YYYY-MM-DD)."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Fetch a day of features from the external provider and upsert them."""
    from tootoo.pipeline.ingest import HttpFeatureIngestStage

    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)
    day = _parse_date_or_exit(as_of_date)
    _ensure_schema(config)

    try:
        stage = HttpFeatureIngestStage(config)
        try:
            run = stage.run(day)
        finally:
            stage.close()
    except Exception as exc:
        typer.echo(f"[ERROR] Feature ingestion failed: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"[OK] Upserted {run.rows_processed} rows for {day.isoformat()} (run {run.run_id}).")


@app.command("run-eod")
def run_eod(
    as_of_date: Optional[str] = typer.Option(
        None, "--as-of-date", help="Explicit as-of date (YYYY-MM-DD). Default: most recent close.",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Build the universe only; no LLM, no writes."),
    wait_for_lock: bool = typer.Option(False, "--wait-for-lock", help="Wait if another run holds the date."),
    lock_timeout: Optional[float] = typer.Option(None, "--lock-timeout", help="Seconds to wait with --wait-for-lock."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Run the end-of-day recommendation job once."""
    from tootoo.errors import InvalidDate, StoreError
    from tootoo.pipeline.eod import EodRunCoordinator, RunOutcome

    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)
    _ensure_schema(config)

    try:
        with EodRunCoordinator(config) as coordinator:
            result = coordinator.run(
                as_of_date,
                dry_run=dry_run,
                wait_for_lock=wait_for_lock,
                lock_timeout=lock_timeout,
            )
    except InvalidDate as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except (StoreError, sqlite3.Error) as exc:
        typer.echo(f"[ERROR] Snapshot store failed: {exc}", err=True)
        raise typer.Exit(code=1)
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    day = result.as_of_date.isoformat()
    trail = " → ".join(s.value for s in result.states)
    typer.echo(f"as_of_date={day} | outcome={result.outcome.value} | states: {trail}")

    if result.outcome == RunOutcome.SUCCESS:
        typer.echo(f"[OK] Stored snapshot {result.snapshot_id} ({result.candidate_count} candidates).")
    elif result.outcome == RunOutcome.ALREADY_EXISTS:
        typer.echo(f"[OK] A successful snapshot already exists for {day}; nothing to do.")
    elif result.outcome == RunOutcome.LOCKED:
        typer.echo(f"[OK] Another run holds the lock for {day}; skipped.")
    elif result.outcome == RunOutcome.DRY_RUN:
        if result.error:
            typer.echo(f"[WARN] Dry run: {result.error}")
        else:
            typer.echo(f"[OK] Dry run: {result.candidate_count} candidates for {day}.")
    else:
        typer.echo(f"[ERROR] Recorded failed snapshot {result.snapshot_id}: {result.error}", err=True)
        raise typer.Exit(code=1)


@app.command("show-snapshot")
def show_snapshot(
    as_of_date: Optional[str] = typer.Option(
        None, "--as-of-date", help="Date to show (YYYY-MM-DD). Default: latest success.",
    ),
    history: bool = typer.Option(False, "--history", help="List every attempt for the date."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Print a stored snapshot (or the attempt history for a date)."""
    from tootoo.db.connection import get_connection
    from tootoo.db.repositories.snapshot_repo import SnapshotRepository

    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)
    day = _parse_date_or_exit(as_of_date) if as_of_date else None

    if history and day is None:
        typer.echo("[ERROR] --history requires --as-of-date.", err=True)
        raise typer.Exit(code=1)

    try:
        with get_connection(config.database.db_path, create=False) as conn:
            repo = SnapshotRepository(conn)
            if history:
                runs = repo.list_by_date(day)
                snapshot = None
            else:
                snapshot = repo.get_success_by_date(day) if day else repo.get_latest_success()
    except sqlite3.Error as exc:
        typer.echo(f"[ERROR] Cannot read snapshot store: {exc}", err=True)
        raise typer.Exit(code=1)

    if history:
        if not runs:
            typer.echo(f"No attempts recorded for {day.isoformat()}.")
            return
        for snap in runs:
            detail = f"{len(snap.items)} items" if snap.error is None else snap.error
            typer.echo(
                f"  {snap.generated_at.isoformat()}  {snap.status.value:<8} "
                f"{snap.provider:<10} {snap.snapshot_id}  {detail}"
            )
        return

    if snapshot is None:
        typer.echo("[ERROR] No successful snapshot found.", err=True)
        raise typer.Exit(code=1)

    typer.echo(
        f"Snapshot {snapshot.snapshot_id} | as_of_date={snapshot.as_of_date.isoformat()} | "
        f"provider={snapshot.provider} | generated_at={snapshot.generated_at.isoformat()}"
    )
    for item in snapshot.items:
        conf = f"{item.confidence:.2f}" if item.confidence is not None else "  - "
        typer.echo(f"  {item.rank:>2}. {item.ticker:<12} {item.name:<24} conf={conf}")
        for line in item.rationale:
            typer.echo(f"        - {line}")
        if item.risk_notes:
            typer.echo(f"        risk: {item.risk_notes}")


@app.command("serve-api")
def serve_api(
    host: Optional[str] = typer.Option(None, "--host", help="Bind host (default from config)."),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (default from config)."),
    db_path: Optional[str] = _DB_PATH_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Serve the read-only snapshot API with uvicorn."""
    import uvicorn

    from tootoo.api.app import create_app

    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)

    bind_host = host or config.api.host
    bind_port = port or config.api.port
    typer.echo(f"Serving snapshot API on http://{bind_host}:{bind_port}")
    uvicorn.run(create_app(config), host=bind_host, port=bind_port, log_config=None)

