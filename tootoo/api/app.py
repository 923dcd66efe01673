"""
Read-only HTTP API over the snapshot store.

Routes:
  GET /healthz                          liveness; touches nothing
  GET /snapshots/latest                 newest successful snapshot
  GET /snapshots/{as_of_date}           successful snapshot for a date
  GET /snapshots/{as_of_date}/runs      every attempt for a date, failures included
  GET /items/{as_of_date}/{ticker}      one item of a date's successful snapshot

Status codes: 400 malformed date, 404 nothing stored, 503 database
unavailable (missing file, missing schema, locked past the busy timeout).

Run with ``tootoo serve-api`` or::

    uvicorn --factory tootoo.api.app:create_app
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date
from typing import Generator, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import PlainTextResponse

from tootoo.api.schemas import ItemOut, RunOut, SnapshotOut
from tootoo.config import AppConfig, load_config
from tootoo.db.connection import get_connection
from tootoo.db.repositories.snapshot_repo import SnapshotRepository
from tootoo.utils.time_utils import parse_iso_date

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return parse_iso_date(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid as_of_date '{value}'; expected YYYY-MM-DD.",
        ) from exc


@contextmanager
def _snapshot_repo(request: Request) -> Generator[SnapshotRepository, None, None]:
    config: AppConfig = request.app.state.config
    try:
        with get_connection(
            request.app.state.db_path,
            wal_mode=config.database.wal_mode,
            busy_timeout_ms=config.database.busy_timeout_ms,
            create=False,
        ) as conn:
            yield SnapshotRepository(conn)
    except sqlite3.Error as exc:
        logger.warning("Snapshot store unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Snapshot store unavailable.",
        ) from exc


def create_app(config: Optional[AppConfig] = None, db_path: Optional[str] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Application config. Loaded from ``config/default.toml`` when omitted.
        db_path: Override for ``config.database.db_path``.
    """
    config = config or load_config()
    app = FastAPI(title="tootoo", description="EOD stock recommendation snapshots")
    app.state.config = config
    app.state.db_path = db_path or config.database.db_path

    @app.get("/healthz", response_class=PlainTextResponse)
    def healthz() -> str:
        return "ok"

    @app.get("/snapshots/latest", response_model=SnapshotOut)
    def latest_snapshot(request: Request) -> SnapshotOut:
        with _snapshot_repo(request) as repo:
            snap = repo.get_latest_success()
        if snap is None:
            raise HTTPException(status_code=404, detail="No successful snapshot yet.")
        return SnapshotOut.from_snapshot(snap)

    @app.get("/snapshots/{as_of_date}", response_model=SnapshotOut)
    def snapshot_by_date(as_of_date: str, request: Request) -> SnapshotOut:
        day = _parse_date(as_of_date)
        with _snapshot_repo(request) as repo:
            snap = repo.get_success_by_date(day)
        if snap is None:
            raise HTTPException(
                status_code=404, detail=f"No successful snapshot for {day.isoformat()}."
            )
        return SnapshotOut.from_snapshot(snap)

    @app.get("/snapshots/{as_of_date}/runs", response_model=list[RunOut])
    def snapshot_runs(as_of_date: str, request: Request) -> list[RunOut]:
        day = _parse_date(as_of_date)
        with _snapshot_repo(request) as repo:
            snaps = repo.list_by_date(day)
        return [RunOut.from_snapshot(s) for s in snaps]

    @app.get("/items/{as_of_date}/{ticker}", response_model=ItemOut)
    def item_by_ticker(as_of_date: str, ticker: str, request: Request) -> ItemOut:
        day = _parse_date(as_of_date)
        with _snapshot_repo(request) as repo:
            item = repo.get_item(day, ticker)
        if item is None:
            raise HTTPException(
                status_code=404, detail=f"No item {ticker} for {day.isoformat()}."
            )
        return ItemOut.from_item(item)

    return app
