"""
Shared plumbing for the table repositories.

A repository wraps one caller-owned ``sqlite3.Connection`` (see
``get_connection()``); it never opens, commits or closes it. Each table has
its own subclass that turns rows into Pydantic models, and raw SQL stays
inside those subclasses.

``savepoint()`` is how a repository makes a multi-statement write atomic
without taking over the caller's transaction.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Generator, Iterable, Optional, Union
from uuid import uuid4

logger = logging.getLogger(__name__)

Params = Union[tuple[Any, ...], dict[str, Any]]


class BaseRepository:
    """Base class for repositories bound to one open connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: Params = ()) -> sqlite3.Cursor:
        logger.debug("SQL %s %s", " ".join(sql.split()), params)
        return self.conn.execute(sql, params)

    def executemany(self, sql: str, rows: Iterable[Params]) -> sqlite3.Cursor:
        rows = list(rows)
        logger.debug("SQL x%d %s", len(rows), " ".join(sql.split()))
        return self.conn.executemany(sql, rows)

    def fetchone(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def scalar(self, sql: str, params: Params = ()) -> Any:
        """First column of the first row, or ``None`` when there is no row."""
        row = self.fetchone(sql, params)
        return row[0] if row is not None else None

    @contextmanager
    def savepoint(self) -> Generator[None, None, None]:
        """Make the enclosed writes all-or-nothing.

        A uniquely named ``SAVEPOINT`` nests inside any transaction the
        caller already has open. If the block raises, its writes are rolled
        back and the exception propagates unchanged.
        """
        name = f"sp_{uuid4().hex}"
        self.conn.execute(f"SAVEPOINT {name};")
        try:
            yield
        except BaseException:
            self.conn.execute(f"ROLLBACK TO SAVEPOINT {name};")
            self.conn.execute(f"RELEASE SAVEPOINT {name};")
            raise
        self.conn.execute(f"RELEASE SAVEPOINT {name};")
