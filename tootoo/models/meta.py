"""
Ingestion run audit record.

Every feature ingestion attempt (stub seeding or external fetch) writes one
``IngestRun`` row to ``stock_features_ingest_runs``, successful or not, so a
missing feature date can be traced back to the fetch that failed.

``IngestRun`` is the only mutable model in the system: ``status``,
``rows_processed``, ``error`` and ``raw_response`` are filled in as the
stage executes.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_INGEST_STATUSES = frozenset({"started", "success", "error"})


class IngestRun(BaseModel):
    """Feature ingestion audit record.

    Attributes:
        run_id: UUID4 string primary key.
        as_of_date: Feature date being ingested.
        provider: Source tag (``"stub"``, ``"external_http_json"``).
        status: ``started`` → ``success`` | ``error``.
        rows_processed: Rows upserted into ``stock_features_daily``.
        error: Error description when ``status == "error"``.
        raw_response: Provider body (JSON text) for successful fetches.
        generated_at: UTC datetime the run started.
        finished_at: UTC datetime the run ended.
    """

    model_config = ConfigDict(frozen=False)

    run_id: str
    as_of_date: date
    provider: str
    status: str = "started"
    rows_processed: int = 0
    error: Optional[str] = None
    raw_response: Optional[str] = None
    generated_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_INGEST_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_INGEST_STATUSES)}."
            )
        return v
