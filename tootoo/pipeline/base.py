"""
Base class for feature ingestion stages.

A stage fills ``stock_features_daily`` for one date. ``run()`` wraps the
stage-specific ``_execute()`` in an ``IngestRun`` audit row:

    insert run (status=started)
      → _execute()                    returns rows written
      → update run (success | error)  re-raises on error

so every attempt, including ones that blow up, shows in
``stock_features_ingest_runs``.

Example::

    class CsvStage(PipelineStage):
        provider_name = "csv"

        def _execute(self, run, as_of_date, **kwargs) -> int:
            ...
            return len(rows)

    CsvStage(config).run(date(2026, 1, 15))
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import date
from uuid import uuid4

from tootoo.config import AppConfig
from tootoo.db.connection import get_connection
from tootoo.db.repositories.ingest_repo import IngestRunRepository
from tootoo.models.meta import IngestRun
from tootoo.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class PipelineStage(ABC):
    """One feature source.

    Args:
        config: Application config.
        db_path: Override for ``config.database.db_path``.
    """

    provider_name: str

    def __init__(self, config: AppConfig, db_path: str | None = None) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path

    def _connect(self):
        return get_connection(
            self.db_path,
            wal_mode=self.config.database.wal_mode,
            busy_timeout_ms=self.config.database.busy_timeout_ms,
        )

    def run(self, as_of_date: date, **kwargs) -> IngestRun:
        """Ingest ``as_of_date`` and return the finished audit record.

        Raises:
            Exception: Whatever ``_execute()`` raised, after the run has
                been stored with ``status="error"``.
        """
        run = IngestRun(
            run_id=str(uuid4()),
            as_of_date=as_of_date,
            provider=self.provider_name,
            generated_at=utcnow(),
        )
        logger.info("Ingest [%s] start as_of_date=%s run_id=%s", self.provider_name, as_of_date, run.run_id)
        self._record(run, first=True)

        try:
            run.rows_processed = self._execute(run=run, as_of_date=as_of_date, **kwargs)
        except Exception as exc:
            run.status = "error"
            run.error = str(exc)
            run.finished_at = utcnow()
            logger.error("Ingest [%s] failed run_id=%s: %s", self.provider_name, run.run_id, exc)
            self._record(run, first=False)
            raise

        run.status = "success"
        run.finished_at = utcnow()
        logger.info(
            "Ingest [%s] done rows=%d run_id=%s", self.provider_name, run.rows_processed, run.run_id
        )
        self._record(run, first=False)
        return run

    @abstractmethod
    def _execute(self, run: IngestRun, as_of_date: date, **kwargs) -> int:
        """Write the date's rows and return how many were written.

        ``run`` may be annotated in place (e.g. ``run.raw_response``).
        """

    def _record(self, run: IngestRun, first: bool) -> None:
        # Audit write failures are logged only.
        try:
            with self._connect() as conn:
                repo = IngestRunRepository(conn)
                if first:
                    repo.insert_run(run)
                else:
                    repo.update_run(run)
        except sqlite3.Error as exc:
            logger.error("Could not store IngestRun run_id=%s: %s", run.run_id, exc)
