"""Response models for the read API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel

from tootoo.models.recommendation import RecommendationItem, RecommendationSnapshot


class ItemOut(BaseModel):
    rank: int
    ticker: str
    name: str
    rationale: list[str]
    risk_notes: Optional[str] = None
    confidence: Optional[float] = None

    @classmethod
    def from_item(cls, item: RecommendationItem) -> "ItemOut":
        return cls(
            rank=item.rank,
            ticker=item.ticker,
            name=item.name,
            rationale=list(item.rationale),
            risk_notes=item.risk_notes,
            confidence=item.confidence,
        )


class SnapshotBody(BaseModel):
    as_of_date: date
    generated_at: datetime
    items: list[ItemOut]


class SnapshotOut(BaseModel):
    """``{snapshot_id, provider, snapshot: {as_of_date, generated_at, items}}``."""

    snapshot_id: str
    provider: str
    snapshot: SnapshotBody

    @classmethod
    def from_snapshot(cls, snap: RecommendationSnapshot) -> "SnapshotOut":
        return cls(
            snapshot_id=snap.snapshot_id,
            provider=snap.provider,
            snapshot=SnapshotBody(
                as_of_date=snap.as_of_date,
                generated_at=snap.generated_at,
                items=[ItemOut.from_item(i) for i in snap.items],
            ),
        )


class RunOut(BaseModel):
    """One recorded attempt (success or failed) for a date."""

    snapshot_id: str
    as_of_date: date
    generated_at: datetime
    created_at: Optional[datetime] = None
    provider: str
    status: str
    error: Optional[str] = None
    item_count: int

    @classmethod
    def from_snapshot(cls, snap: RecommendationSnapshot) -> "RunOut":
        return cls(
            snapshot_id=snap.snapshot_id,
            as_of_date=snap.as_of_date,
            generated_at=snap.generated_at,
            created_at=snap.created_at,
            provider=snap.provider,
            status=snap.status.value,
            error=snap.error,
            item_count=len(snap.items),
        )
