"""
Repository for ``stock_features_ingest_runs`` — the feature ingestion audit log.

Each ingestion attempt is inserted once with ``status='started'`` and then
updated in place with its outcome. Unlike snapshots this table is an
operational log, not a consumer-facing record, so updates are allowed.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Optional

from tootoo.db.repositories.base import BaseRepository
from tootoo.models.meta import IngestRun
from tootoo.utils.time_utils import from_iso, to_utc_iso

logger = logging.getLogger(__name__)


class IngestRunRepository(BaseRepository):
    """Read/write access to the ``stock_features_ingest_runs`` table."""

    def insert_run(self, run: IngestRun) -> str:
        self.execute(
            """
            INSERT INTO stock_features_ingest_runs (
                id, as_of_date, generated_at, finished_at, provider,
                status, rows_processed, error, raw_response
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                run.run_id,
                run.as_of_date.isoformat(),
                to_utc_iso(run.generated_at),
                to_utc_iso(run.finished_at) if run.finished_at else None,
                run.provider,
                run.status,
                run.rows_processed,
                run.error,
                run.raw_response,
            ),
        )
        return run.run_id

    def update_run(self, run: IngestRun) -> None:
        """Write the final status, row count, error and raw response."""
        self.execute(
            """
            UPDATE stock_features_ingest_runs
            SET status = ?, rows_processed = ?, error = ?, raw_response = ?, finished_at = ?
            WHERE id = ?;
            """,
            (
                run.status,
                run.rows_processed,
                run.error,
                run.raw_response,
                to_utc_iso(run.finished_at) if run.finished_at else None,
                run.run_id,
            ),
        )

    def get_run(self, run_id: str) -> Optional[IngestRun]:
        row = self.fetchone(
            "SELECT * FROM stock_features_ingest_runs WHERE id = ?;", (run_id,)
        )
        return _row_to_run(row) if row else None

    def list_by_date(self, as_of_date: date) -> list[IngestRun]:
        """All ingestion attempts for a date, newest first."""
        rows = self.fetchall(
            """
            SELECT * FROM stock_features_ingest_runs
            WHERE as_of_date = ?
            ORDER BY generated_at DESC;
            """,
            (as_of_date.isoformat(),),
        )
        return [_row_to_run(r) for r in rows]


def _row_to_run(row: sqlite3.Row) -> IngestRun:
    return IngestRun(
        run_id=row["id"],
        as_of_date=date.fromisoformat(row["as_of_date"]),
        provider=row["provider"],
        status=row["status"],
        rows_processed=row["rows_processed"],
        error=row["error"],
        raw_response=row["raw_response"],
        generated_at=from_iso(row["generated_at"]),
        finished_at=from_iso(row["finished_at"]) if row["finished_at"] else None,
    )
