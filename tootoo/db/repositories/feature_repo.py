"""
Repository for ``stock_features_daily``.

The table is owned by the ingestion collaborator; the EOD job only reads it.
Two write paths exist:

  - ``upsert_rows()``  — external fetches; a re-fetch overwrites name,
    trading value and features for the same ``(as_of_date, ticker)``.
  - ``insert_missing()`` — stub seeding; existing rows are left untouched.

Features are stored as JSON text with sorted keys so identical inputs
always serialise to identical bytes.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Optional

from tootoo.db.repositories.base import BaseRepository
from tootoo.models.features import FeatureRow

logger = logging.getLogger(__name__)


def _features_json(features: dict[str, float]) -> str:
    return json.dumps(features, sort_keys=True, separators=(",", ":"))


def _row_params(row: FeatureRow) -> tuple:
    return (
        row.as_of_date.isoformat(),
        row.ticker,
        row.name,
        row.trading_value,
        _features_json(row.features),
    )


class FeatureRepository(BaseRepository):
    """Read/write access to the ``stock_features_daily`` table."""

    def count_for_date(self, as_of_date: date) -> int:
        return int(self.scalar(
            "SELECT COUNT(*) FROM stock_features_daily WHERE as_of_date = ?;",
            (as_of_date.isoformat(),),
        ))

    def get_rows_for_date(self, as_of_date: date) -> list[FeatureRow]:
        """All rows for a date, ordered by ticker."""
        rows = self.fetchall(
            """
            SELECT * FROM stock_features_daily
            WHERE as_of_date = ?
            ORDER BY ticker ASC;
            """,
            (as_of_date.isoformat(),),
        )
        return [_row_to_feature(r) for r in rows]

    def get_ranked_rows(
        self,
        as_of_date: date,
        limit: int,
        min_trading_value: Optional[float] = None,
    ) -> list[FeatureRow]:
        """Rows for a date ordered by trading value, largest first.

        Ordering is total: ``trading_value`` DESC with NULLs last, then
        ``ticker`` ASC, so equal inputs always produce the same list.

        Args:
            as_of_date: Feature date.
            limit: Maximum rows to return.
            min_trading_value: When set, rows with a NULL or smaller
                ``trading_value`` are excluded.

        Returns:
            Up to ``limit`` :class:`FeatureRow` objects.
        """
        where = "as_of_date = ?"
        params: list = [as_of_date.isoformat()]
        if min_trading_value is not None:
            where += " AND trading_value IS NOT NULL AND trading_value >= ?"
            params.append(min_trading_value)
        params.append(limit)

        rows = self.fetchall(
            f"""
            SELECT * FROM stock_features_daily
            WHERE {where}
            ORDER BY trading_value IS NULL ASC, trading_value DESC, ticker ASC
            LIMIT ?;
            """,
            tuple(params),
        )
        return [_row_to_feature(r) for r in rows]

    def upsert_rows(self, rows: list[FeatureRow], batch_size: int = 200) -> int:
        """Insert or overwrite rows, ``batch_size`` statements at a time.

        All batches run inside one savepoint: either every row lands or none.

        Returns:
            Number of rows written.
        """
        sql = """
            INSERT INTO stock_features_daily (
                as_of_date, ticker, name, trading_value, features
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (as_of_date, ticker) DO UPDATE SET
                name          = excluded.name,
                trading_value = excluded.trading_value,
                features      = excluded.features;
        """
        with self.savepoint():
            for start in range(0, len(rows), batch_size):
                batch = rows[start:start + batch_size]
                self.executemany(sql, [_row_params(r) for r in batch])
        logger.debug("Upserted %d feature rows", len(rows))
        return len(rows)

    def insert_missing(self, rows: list[FeatureRow]) -> int:
        """Insert rows that do not exist yet; existing rows are kept.

        Returns:
            Number of rows actually inserted.
        """
        before = self.conn.total_changes
        with self.savepoint():
            self.executemany(
                """
                INSERT INTO stock_features_daily (
                    as_of_date, ticker, name, trading_value, features
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (as_of_date, ticker) DO NOTHING;
                """,
                [_row_params(r) for r in rows],
            )
        return self.conn.total_changes - before


def _row_to_feature(row) -> FeatureRow:
    return FeatureRow(
        as_of_date=date.fromisoformat(row["as_of_date"]),
        ticker=row["ticker"],
        name=row["name"],
        trading_value=row["trading_value"],
        features=json.loads(row["features"]),
    )
