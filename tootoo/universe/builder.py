"""
Candidate universe builder.

Turns the day's feature rows into the bounded, deterministic candidate list
the LLM is allowed to choose from.

DB mode:
  1. No rows for the date → ``NoFeatureData``.
  2. Optional ``min_trading_value`` filter (NULL trading value is excluded
     when the filter is set).
  3. Order by ``trading_value`` DESC (NULLs last), ties by ``ticker`` ASC.
  4. Truncate to ``max_candidates``.

Stub mode:
  Synthetic ``KRX:000001 .. KRX:{n:06}`` candidates with a single
  date-derived feature. No DB access; used for dry runs and offline demos.

The builder never decides whether a universe is large enough to use; the
run coordinator compares ``len(candidate_set)`` to ``min_candidates``.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date
from typing import Optional

from tootoo.config import UNIVERSE_SIZE_MAX, UNIVERSE_SIZE_MIN, UniverseConfig
from tootoo.db.repositories.feature_repo import FeatureRepository
from tootoo.errors import NoFeatureData
from tootoo.models.features import Candidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateSet:
    """Ordered candidates for one as-of date.

    Attributes:
        as_of_date: Date the features belong to.
        candidates: Candidates in trading-value order.
        source: ``"db"`` or ``"stub"``.
        rows_available: Feature rows present for the date before filtering.
    """

    as_of_date: date
    candidates: tuple[Candidate, ...]
    source: str
    rows_available: int

    def __len__(self) -> int:
        return len(self.candidates)


def _check_size(max_candidates: int) -> None:
    if not UNIVERSE_SIZE_MIN <= max_candidates <= UNIVERSE_SIZE_MAX:
        raise ValueError(
            f"max_candidates must be in [{UNIVERSE_SIZE_MIN}, {UNIVERSE_SIZE_MAX}], "
            f"got {max_candidates}."
        )


def stub_candidates(as_of_date: date, size: int) -> tuple[Candidate, ...]:
    """Deterministic synthetic candidates for ``as_of_date``."""
    base = as_of_date.toordinal()
    return tuple(
        Candidate(
            ticker=f"KRX:{i:06d}",
            name=f"Stub {i:06d}",
            features={"stub_feature": float(base + i)},
        )
        for i in range(1, size + 1)
    )


class CandidateUniverseBuilder:
    """Builds a :class:`CandidateSet` from the feature store or the stub.

    Args:
        config: Universe settings (size, filter, stub mode).
    """

    def __init__(self, config: UniverseConfig) -> None:
        self.config = config

    def build(
        self,
        as_of_date: date,
        conn: Optional[sqlite3.Connection] = None,
        max_candidates: Optional[int] = None,
        min_trading_value: Optional[float] = None,
    ) -> CandidateSet:
        """Build the candidate universe for ``as_of_date``.

        Args:
            as_of_date: Resolved as-of date.
            conn: Open connection (required unless in stub mode).
            max_candidates: Override for ``config.max_candidates``.
            min_trading_value: Override for ``config.min_trading_value``.

        Returns:
            The ordered :class:`CandidateSet`.

        Raises:
            ValueError: ``max_candidates`` outside [200, 500], or no
                connection in DB mode.
            NoFeatureData: No feature rows exist for the date.
        """
        size = max_candidates if max_candidates is not None else self.config.max_candidates
        _check_size(size)

        if self.config.use_stub:
            candidates = stub_candidates(as_of_date, size)
            logger.info(
                "Built stub universe for as_of_date=%s (%d candidates)",
                as_of_date, len(candidates),
            )
            return CandidateSet(as_of_date, candidates, "stub", len(candidates))

        if conn is None:
            raise ValueError("A database connection is required outside stub mode.")

        threshold = (
            min_trading_value if min_trading_value is not None
            else self.config.min_trading_value
        )
        repo = FeatureRepository(conn)
        available = repo.count_for_date(as_of_date)
        if available == 0:
            raise NoFeatureData(as_of_date)

        rows = repo.get_ranked_rows(as_of_date, limit=size, min_trading_value=threshold)
        candidates = tuple(Candidate.from_row(r) for r in rows)
        logger.info(
            "Built universe for as_of_date=%s: %d of %d rows (max=%d, min_trading_value=%s)",
            as_of_date, len(candidates), available, size, threshold,
        )
        return CandidateSet(as_of_date, candidates, "db", available)
