"""
Snapshot store: append-only ``recommendation_snapshots`` + ``recommendation_items``.

Write contract:
  ``insert_snapshot(snapshot, items)`` writes the header and all items in a
  single savepoint. Readers never observe a snapshot without its items.
  A second ``success`` for the same ``as_of_date`` trips the partial unique
  index and surfaces as ``DuplicateSuccess`` (benign for callers); every
  other database failure surfaces as ``StoreError``.

Read contract:
  Only ``success`` snapshots are served by ``get_latest_success`` /
  ``get_success_by_date`` / ``get_item``. ``list_by_date`` returns the full
  attempt history, failures included, newest first.

Rows are never updated or deleted (triggers reject both), so every read of
a given snapshot returns identical data.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date
from typing import Optional, Sequence

from tootoo.db.repositories.base import BaseRepository
from tootoo.errors import DuplicateSuccess, StoreError
from tootoo.models.recommendation import (
    RecommendationItem,
    RecommendationSnapshot,
    SnapshotStatus,
)
from tootoo.utils.time_utils import from_iso, to_utc_iso

logger = logging.getLogger(__name__)

_SUCCESS_INDEX_MARKERS = ("recommendation_snapshots.as_of_date", "uq_snapshots_success_date")


class SnapshotRepository(BaseRepository):
    """Read/write access to recommendation snapshots and their items."""

    # ── Writes ────────────────────────────────────────────────────────────────

    def insert_snapshot(
        self,
        snapshot: RecommendationSnapshot,
        items: Sequence[RecommendationItem] = (),
    ) -> str:
        """Persist a snapshot header and its items atomically.

        Args:
            snapshot: Header to write. ``snapshot.items`` is ignored; pass
                the items explicitly.
            items: Ranked items. Must be empty for failed snapshots.

        Returns:
            The stored ``snapshot_id``.

        Raises:
            DuplicateSuccess: A ``success`` snapshot already exists for the date.
            StoreError: Any other persistence failure (nothing is written).
        """
        if snapshot.status == SnapshotStatus.FAILED and items:
            raise StoreError("Failed snapshots must not carry items.")

        try:
            with self.savepoint():
                self.execute(
                    """
                    INSERT INTO recommendation_snapshots (
                        id, as_of_date, generated_at, provider, status, error, raw_response
                    ) VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        snapshot.snapshot_id,
                        snapshot.as_of_date.isoformat(),
                        to_utc_iso(snapshot.generated_at),
                        snapshot.provider,
                        snapshot.status.value,
                        snapshot.error,
                        snapshot.raw_response,
                    ),
                )
                if items:
                    self.executemany(
                        """
                        INSERT INTO recommendation_items (
                            id, snapshot_id, rank, ticker, name,
                            rationale, risk_notes, confidence
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                        """,
                        [
                            (
                                f"{snapshot.snapshot_id}:{item.rank:02d}",
                                snapshot.snapshot_id,
                                item.rank,
                                item.ticker,
                                item.name,
                                json.dumps(list(item.rationale), ensure_ascii=False),
                                item.risk_notes,
                                item.confidence,
                            )
                            for item in sorted(items, key=lambda i: i.rank)
                        ],
                    )
        except sqlite3.IntegrityError as exc:
            message = str(exc)
            if snapshot.status == SnapshotStatus.SUCCESS and any(
                marker in message for marker in _SUCCESS_INDEX_MARKERS
            ):
                logger.info(
                    "Successful snapshot already stored for as_of_date=%s",
                    snapshot.as_of_date,
                )
                raise DuplicateSuccess(snapshot.as_of_date) from exc
            raise StoreError(f"Snapshot insert rejected: {message}") from exc
        except sqlite3.Error as exc:
            raise StoreError(f"Snapshot insert failed: {exc}") from exc

        logger.info(
            "Stored %s snapshot %s for as_of_date=%s (%d items)",
            snapshot.status.value, snapshot.snapshot_id, snapshot.as_of_date, len(items),
        )
        return snapshot.snapshot_id

    # ── Reads ─────────────────────────────────────────────────────────────────

    def success_exists(self, as_of_date: date) -> bool:
        return self.scalar(
            """
            SELECT 1 FROM recommendation_snapshots
            WHERE as_of_date = ? AND status = 'success'
            LIMIT 1;
            """,
            (as_of_date.isoformat(),),
        ) is not None

    def get_latest_success(self) -> Optional[RecommendationSnapshot]:
        """The successful snapshot with the greatest ``as_of_date``, or ``None``."""
        row = self.fetchone(
            """
            SELECT * FROM recommendation_snapshots
            WHERE status = 'success'
            ORDER BY as_of_date DESC, generated_at DESC
            LIMIT 1;
            """
        )
        return self._with_items(row) if row else None

    def get_success_by_date(self, as_of_date: date) -> Optional[RecommendationSnapshot]:
        row = self.fetchone(
            """
            SELECT * FROM recommendation_snapshots
            WHERE as_of_date = ? AND status = 'success'
            LIMIT 1;
            """,
            (as_of_date.isoformat(),),
        )
        return self._with_items(row) if row else None

    def get_item(self, as_of_date: date, ticker: str) -> Optional[RecommendationItem]:
        """One item of the date's successful snapshot, or ``None``."""
        row = self.fetchone(
            """
            SELECT i.* FROM recommendation_items i
            JOIN recommendation_snapshots s ON s.id = i.snapshot_id
            WHERE s.as_of_date = ? AND s.status = 'success' AND i.ticker = ?
            LIMIT 1;
            """,
            (as_of_date.isoformat(), ticker.strip()),
        )
        return _row_to_item(row) if row else None

    def list_by_date(self, as_of_date: date) -> list[RecommendationSnapshot]:
        """Every attempt recorded for a date, newest first, items included."""
        rows = self.fetchall(
            """
            SELECT * FROM recommendation_snapshots
            WHERE as_of_date = ?
            ORDER BY created_at DESC, generated_at DESC;
            """,
            (as_of_date.isoformat(),),
        )
        return [self._with_items(r) for r in rows]

    def get_items(self, snapshot_id: str) -> list[RecommendationItem]:
        rows = self.fetchall(
            """
            SELECT * FROM recommendation_items
            WHERE snapshot_id = ?
            ORDER BY rank ASC;
            """,
            (snapshot_id,),
        )
        return [_row_to_item(r) for r in rows]

    def _with_items(self, row: sqlite3.Row) -> RecommendationSnapshot:
        status = SnapshotStatus(row["status"])
        items = self.get_items(row["id"]) if status == SnapshotStatus.SUCCESS else []
        return RecommendationSnapshot(
            snapshot_id=row["id"],
            as_of_date=date.fromisoformat(row["as_of_date"]),
            generated_at=from_iso(row["generated_at"]),
            provider=row["provider"],
            status=status,
            error=row["error"],
            raw_response=row["raw_response"],
            created_at=from_iso(row["created_at"].replace("Z", "+00:00")),
            items=tuple(items),
        )


def _row_to_item(row: sqlite3.Row) -> RecommendationItem:
    return RecommendationItem(
        rank=row["rank"],
        ticker=row["ticker"],
        name=row["name"],
        rationale=tuple(json.loads(row["rationale"])),
        risk_notes=row["risk_notes"],
        confidence=row["confidence"],
    )
