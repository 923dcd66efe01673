"""
Forward-only schema migrations.

``apply_schema()`` always creates the current tables. Migrations bring an
older database file up to the same shape, and each one is recorded in
``schema_versions`` so it runs at most once per file.

To add one, write a function that takes the connection and append a
``Migration`` to ``MIGRATIONS``. Migrations run in list order. Snapshot
tables are append-only (triggers reject UPDATE/DELETE), so a migration may
add columns, indexes or tables but must not rewrite stored snapshots.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from typing import NamedTuple

logger = logging.getLogger(__name__)


class Migration(NamedTuple):
    version_id: str
    description: str
    apply: Callable[[sqlite3.Connection], None]


_VERSION_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version_id  TEXT NOT NULL PRIMARY KEY,
    description TEXT,
    applied_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table});")}


# ── Migrations ────────────────────────────────────────────────────────────────

def _baseline(conn: sqlite3.Connection) -> None:
    """Marker for databases created by ``apply_schema()``."""


def _ingest_run_progress(conn: sqlite3.Connection) -> None:
    cols = _columns(conn, "stock_features_ingest_runs")
    if "rows_processed" not in cols:
        conn.execute(
            "ALTER TABLE stock_features_ingest_runs "
            "ADD COLUMN rows_processed INTEGER NOT NULL DEFAULT 0;"
        )
    if "finished_at" not in cols:
        conn.execute("ALTER TABLE stock_features_ingest_runs ADD COLUMN finished_at TEXT;")


MIGRATIONS: list[Migration] = [
    Migration("0001_baseline", "Features, ingest runs, snapshots and items", _baseline),
    Migration(
        "0002_ingest_rows_processed",
        "Track rows_processed and finished_at on feature ingest runs",
        _ingest_run_progress,
    ),
]


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply every migration not yet recorded in ``schema_versions``.

    Each migration and its version row are committed together; a failing
    migration is rolled back and re-raised, leaving earlier ones applied.

    Returns:
        How many migrations ran in this call.
    """
    conn.execute(_VERSION_TABLE_DDL)
    conn.commit()
    done = {row[0] for row in conn.execute("SELECT version_id FROM schema_versions;")}

    ran = 0
    for migration in MIGRATIONS:
        if migration.version_id in done:
            continue
        logger.info("Applying migration %s: %s", migration.version_id, migration.description)
        try:
            migration.apply(conn)
            conn.execute(
                "INSERT INTO schema_versions (version_id, description) VALUES (?, ?);",
                (migration.version_id, migration.description),
            )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            logger.error("Migration %s failed; rolled back.", migration.version_id)
            raise
        ran += 1

    if ran:
        logger.info("Applied %d migration(s).", ran)
    return ran
