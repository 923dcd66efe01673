"""
Opening the snapshot store.

``get_connection()`` is the only way the job, the ingestion stages, the CLI
and the read API talk to SQLite. Every connection it hands out has:

  - ``PRAGMA foreign_keys = ON`` (items must reference a stored snapshot)
  - a busy timeout, so a second EOD process waits for the writer
  - WAL journaling for file databases, so API reads never block a run
  - ``sqlite3.Row`` rows

The transaction is committed when the ``with`` block exits cleanly and
rolled back when it raises.

Usage::

    with get_connection(config.database.db_path) as conn:
        latest = SnapshotRepository(conn).get_latest_success()
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


def _check_path(db_path: str, create: bool) -> None:
    if db_path == MEMORY_DB:
        return
    path = Path(db_path)
    if create:
        path.parent.mkdir(parents=True, exist_ok=True)
    elif not path.is_file():
        raise sqlite3.OperationalError(f"snapshot store not found at {db_path}")


def _configure(conn: sqlite3.Connection, db_path: str, wal_mode: bool, busy_timeout_ms: int) -> None:
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")
    if wal_mode and db_path != MEMORY_DB:
        mode = conn.execute("PRAGMA journal_mode = WAL;").fetchone()[0]
        if mode != "wal":
            logger.warning("Could not enable WAL for %s (journal_mode=%s)", db_path, mode)


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
    create: bool = True,
) -> Generator[sqlite3.Connection, None, None]:
    """Yield a configured connection to the store at ``db_path``.

    Args:
        db_path: Database file, or ``":memory:"``.
        wal_mode: Switch file databases to WAL journaling.
        busy_timeout_ms: How long a statement waits on a locked database.
        create: When ``False`` a missing file is an error instead of being
            created; the read API and ``show-snapshot`` open this way.

    Raises:
        sqlite3.OperationalError: The file is missing (``create=False``),
            cannot be opened, or stays locked past the busy timeout.
    """
    _check_path(db_path, create)
    conn = sqlite3.connect(
        db_path, timeout=busy_timeout_ms / 1000, check_same_thread=False
    )
    try:
        _configure(conn, db_path, wal_mode, busy_timeout_ms)
        yield conn
    except Exception:
        conn.rollback()
        raise
    else:
        conn.commit()
    finally:
        conn.close()
