"""
Feature ingestion stages.

``StubFeatureIngestStage``  — seeds deterministic synthetic rows
                              (insert-or-ignore; re-seeding is a no-op).
``HttpFeatureIngestStage``  — fetches from the external provider and
                              upserts atomically in batches.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from tootoo.config import AppConfig
from tootoo.db.repositories.feature_repo import FeatureRepository
from tootoo.ingestion.http_provider import HttpJsonFeatureProvider
from tootoo.ingestion.stub import stub_feature_rows
from tootoo.models.meta import IngestRun
from tootoo.pipeline.base import PipelineStage

logger = logging.getLogger(__name__)


class StubFeatureIngestStage(PipelineStage):
    """Seeds ``stock_features_daily`` with synthetic rows."""

    provider_name = "stub"

    def _execute(self, run: IngestRun, as_of_date: date, size: Optional[int] = None, **kwargs) -> int:
        rows = stub_feature_rows(as_of_date, size if size is not None else self.config.ingest.stub_size)
        with self._connect() as conn:
            inserted = FeatureRepository(conn).insert_missing(rows)
        logger.info(
            "Seeded %d new stub rows for as_of_date=%s (%d generated)",
            inserted, as_of_date, len(rows),
        )
        return inserted


class HttpFeatureIngestStage(PipelineStage):
    """Fetches a day of features from the external provider and upserts them."""

    provider_name = HttpJsonFeatureProvider.provider_name

    def __init__(
        self,
        config: AppConfig,
        db_path: str | None = None,
        provider: Optional[HttpJsonFeatureProvider] = None,
    ) -> None:
        super().__init__(config, db_path)
        self._owns_provider = provider is None
        self.provider = provider or HttpJsonFeatureProvider.from_config(config.ingest)

    def close(self) -> None:
        if self._owns_provider:
            self.provider.close()

    def _execute(self, run: IngestRun, as_of_date: date, **kwargs) -> int:
        rows, raw = self.provider.fetch_daily_features(as_of_date)
        run.raw_response = raw
        with self._connect() as conn:
            return FeatureRepository(conn).upsert_rows(
                rows, batch_size=self.config.ingest.upsert_batch_size
            )
