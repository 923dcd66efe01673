"""
Recommendation snapshot models.

``RecommendationItem`` and ``RecommendationPayload`` are the validated form
of an LLM response: ranks unique in [1, 20], tickers unique, exactly three
rationale lines, confidence in [0, 1]. They are what the snapshot store
accepts and what the read API serves.

``RecommendationSnapshot`` is a stored row of ``recommendation_snapshots``
(success or failed) with its items attached. All models are frozen;
snapshots are append-only and never mutated after they are written.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

MAX_RANK = 20
RATIONALE_LINES = 3


class SnapshotStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class RecommendationItem(BaseModel):
    """One ranked pick inside a snapshot.

    Attributes:
        rank: 1 (best) to 20.
        ticker: Instrument ticker, unique within the snapshot.
        name: Instrument display name.
        rationale: Exactly three short lines explaining the pick.
        risk_notes: Optional free-text risk commentary.
        confidence: Optional model confidence in [0, 1].
    """

    model_config = ConfigDict(frozen=True)

    rank: int
    ticker: str
    name: str
    rationale: tuple[str, str, str]
    risk_notes: Optional[str] = None
    confidence: Optional[float] = None

    @field_validator("rank")
    @classmethod
    def validate_rank(cls, v: int) -> int:
        if not 1 <= v <= MAX_RANK:
            raise ValueError(f"rank must be in [1, {MAX_RANK}], got {v}.")
        return v

    @field_validator("ticker", "name")
    @classmethod
    def validate_non_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must be non-empty.")
        return v

    @field_validator("rationale")
    @classmethod
    def validate_rationale(cls, v: tuple[str, str, str]) -> tuple[str, str, str]:
        lines = tuple(line.strip() for line in v)
        if any(not line for line in lines):
            raise ValueError("rationale lines must be non-empty.")
        return lines  # type: ignore[return-value]

    @field_validator("risk_notes")
    @classmethod
    def normalize_risk_notes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not 0.0 <= v <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {v}.")
        return v


class RecommendationPayload(BaseModel):
    """A validated set of picks for one as-of date."""

    model_config = ConfigDict(frozen=True)

    as_of_date: date
    generated_at: datetime
    items: tuple[RecommendationItem, ...]

    @model_validator(mode="after")
    def validate_items(self) -> "RecommendationPayload":
        if not self.items:
            raise ValueError("payload must contain at least one item.")
        if len(self.items) > MAX_RANK:
            raise ValueError(f"payload may contain at most {MAX_RANK} items.")
        ranks = [item.rank for item in self.items]
        if sorted(ranks) != list(range(1, len(ranks) + 1)):
            raise ValueError(
                f"ranks must be exactly 1..{len(ranks)}, got {sorted(ranks)}."
            )
        tickers = [item.ticker for item in self.items]
        if len(set(tickers)) != len(tickers):
            dupes = sorted({t for t in tickers if tickers.count(t) > 1})
            raise ValueError(f"duplicate tickers: {dupes}.")
        return self


class RecommendationSnapshot(BaseModel):
    """A persisted row of ``recommendation_snapshots`` plus its items.

    Attributes:
        snapshot_id: UUID4 string primary key.
        as_of_date: Trading date the snapshot is for.
        generated_at: When the payload was generated (UTC).
        provider: Backend tag, e.g. ``"openai"``.
        status: ``success`` or ``failed``.
        error: Diagnostic text; set only on failed snapshots.
        raw_response: Verbatim provider payload for forensic replay.
        created_at: When the row was written (UTC).
        items: Items ordered by rank; always empty for failed snapshots.
    """

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    as_of_date: date
    generated_at: datetime
    provider: str
    status: SnapshotStatus
    error: Optional[str] = None
    raw_response: Optional[str] = None
    created_at: Optional[datetime] = None
    items: tuple[RecommendationItem, ...] = ()

    @model_validator(mode="after")
    def validate_status_consistency(self) -> "RecommendationSnapshot":
        if self.status == SnapshotStatus.SUCCESS and self.error is not None:
            raise ValueError("successful snapshots must not carry an error.")
        if self.status == SnapshotStatus.FAILED and self.items:
            raise ValueError("failed snapshots must not carry items.")
        return self
