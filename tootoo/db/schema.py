"""
Schema of the snapshot store and the feature store it reads.

``apply_schema()`` is idempotent (``IF NOT EXISTS`` everywhere) and runs on
before every CLI command that writes. Tables are created parent-first:
  1. stock_features_daily        (no FKs; written by feature ingestion)
  2. stock_features_ingest_runs  (no FKs; ingestion audit log)
  3. recommendation_snapshots    (no FKs)
  4. recommendation_items        (→ recommendation_snapshots, ON DELETE RESTRICT)

Invariants enforced by the database itself:
  - At most one ``success`` snapshot per ``as_of_date``
    (partial unique index ``uq_snapshots_success_date``).
  - Failed snapshots carry an error; successful ones never do.
  - Items: rank in [1, 20], unique rank and ticker per snapshot,
    confidence in [0, 1], rationale is a JSON array of exactly 3 strings.
  - Snapshots and items are append-only: UPDATE and DELETE are rejected
    by triggers.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_STOCK_FEATURES_DAILY = """
CREATE TABLE IF NOT EXISTS stock_features_daily (
    as_of_date      TEXT    NOT NULL,
    ticker          TEXT    NOT NULL CHECK (length(trim(ticker)) > 0),
    name            TEXT    NOT NULL CHECK (length(trim(name)) > 0),
    trading_value   REAL,
    features        TEXT    NOT NULL DEFAULT '{}' CHECK (json_valid(features)),
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    PRIMARY KEY (as_of_date, ticker)
);

CREATE INDEX IF NOT EXISTS idx_features_date_value
    ON stock_features_daily(as_of_date, trading_value DESC);
"""

_DDL_INGEST_RUNS = """
CREATE TABLE IF NOT EXISTS stock_features_ingest_runs (
    id              TEXT    NOT NULL PRIMARY KEY,
    as_of_date      TEXT    NOT NULL,
    generated_at    TEXT    NOT NULL,
    finished_at     TEXT,
    provider        TEXT    NOT NULL,
    status          TEXT    NOT NULL CHECK (status IN ('started', 'success', 'error')),
    rows_processed  INTEGER NOT NULL DEFAULT 0,
    error           TEXT,
    raw_response    TEXT,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_ingest_runs_date
    ON stock_features_ingest_runs(as_of_date, generated_at DESC);
"""

_DDL_RECOMMENDATION_SNAPSHOTS = """
CREATE TABLE IF NOT EXISTS recommendation_snapshots (
    id              TEXT    NOT NULL PRIMARY KEY,
    as_of_date      TEXT    NOT NULL,
    generated_at    TEXT    NOT NULL,
    provider        TEXT    NOT NULL,
    status          TEXT    NOT NULL CHECK (status IN ('success', 'failed')),
    error           TEXT,
    raw_response    TEXT,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    CHECK (
        (status = 'success' AND error IS NULL)
        OR (status = 'failed' AND error IS NOT NULL)
    )
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_snapshots_success_date
    ON recommendation_snapshots(as_of_date)
    WHERE status = 'success';

CREATE INDEX IF NOT EXISTS idx_snapshots_date_generated
    ON recommendation_snapshots(as_of_date DESC, generated_at DESC);
"""

_DDL_RECOMMENDATION_ITEMS = """
CREATE TABLE IF NOT EXISTS recommendation_items (
    id              TEXT    NOT NULL PRIMARY KEY,
    snapshot_id     TEXT    NOT NULL
                    REFERENCES recommendation_snapshots(id) ON DELETE RESTRICT,
    rank            INTEGER NOT NULL CHECK (rank BETWEEN 1 AND 20),
    ticker          TEXT    NOT NULL CHECK (length(trim(ticker)) > 0),
    name            TEXT    NOT NULL CHECK (length(trim(name)) > 0),
    rationale       TEXT    NOT NULL
                    CHECK (json_valid(rationale) AND json_array_length(rationale) = 3),
    risk_notes      TEXT,
    confidence      REAL    CHECK (confidence IS NULL OR confidence BETWEEN 0.0 AND 1.0),
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE (snapshot_id, rank),
    UNIQUE (snapshot_id, ticker)
);

CREATE INDEX IF NOT EXISTS idx_items_ticker
    ON recommendation_items(ticker);
"""

_ALL_DDL = [
    _DDL_STOCK_FEATURES_DAILY,
    _DDL_INGEST_RUNS,
    _DDL_RECOMMENDATION_SNAPSHOTS,
    _DDL_RECOMMENDATION_ITEMS,
]

# Trigger bodies contain ';', so each entry is executed whole.
_APPEND_ONLY_TABLES = ["recommendation_snapshots", "recommendation_items"]

_ALL_TRIGGERS = [
    f"""
    CREATE TRIGGER IF NOT EXISTS trg_{table}_no_{action.lower()}
    BEFORE {action} ON {table}
    BEGIN
        SELECT RAISE(ABORT, '{table} is append-only');
    END
    """
    for table in _APPEND_ONLY_TABLES
    for action in ("UPDATE", "DELETE")
]

ALL_TABLE_NAMES = [
    "stock_features_daily",
    "stock_features_ingest_runs",
    "recommendation_snapshots",
    "recommendation_items",
]


def _statements(block: str) -> list[str]:
    """Table/index blocks hold several ``;``-terminated statements."""
    return [part.strip() for part in block.split(";") if part.strip()]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Create every table, index and append-only trigger that is missing.

    Re-running against an existing store changes nothing. Triggers are
    executed whole because their bodies contain ``;``.
    """
    for block in _ALL_DDL:
        for statement in _statements(block):
            conn.execute(statement)
    for trigger in _ALL_TRIGGERS:
        conn.execute(trigger)
    conn.commit()
    logger.debug("Schema verified (%d tables).", len(ALL_TABLE_NAMES))


def _object_names(conn: sqlite3.Connection, kind: str) -> list[str]:
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = ? AND name NOT LIKE 'sqlite_%' ORDER BY name;",
        (kind,),
    )
    return [row[0] for row in cursor.fetchall()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    return _object_names(conn, "table")


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Named indexes only; SQLite's automatic PK/UNIQUE indexes are excluded."""
    return _object_names(conn, "index")


def get_existing_triggers(conn: sqlite3.Connection) -> list[str]:
    return _object_names(conn, "trigger")
