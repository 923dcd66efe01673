"""
Recommendation client: prompt → backend → validate → (one repair) → payload.

Failure semantics:
  - Backend transport failures (timeout, non-2xx, unreadable envelope)
    propagate as ``ProviderError(stage="transport")`` straight away.
    The client never retries a transport failure.
  - A contract violation on the first answer triggers exactly one repair
    request carrying the problems and the rejected output.
  - A contract violation on the repaired answer raises
    ``ProviderError(stage="repair")`` with the repaired raw response.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Sequence

from tootoo.errors import ProviderError
from tootoo.llm.base import CompletionBackend, Generation
from tootoo.llm.contract import ContractViolation, parse_payload
from tootoo.llm.prompts import SYSTEM_PROMPT, render_repair, render_request
from tootoo.models.features import Candidate
from tootoo.models.recommendation import MAX_RANK

logger = logging.getLogger(__name__)


class RecommendationClient:
    """``LlmProvider`` implementation on top of a ``CompletionBackend``.

    Args:
        backend: Vendor endpoint used for both requests.
        item_count: Exact number of items required (``None`` = 1..20, and
            20 are requested).
        require_candidate_tickers: Reject tickers outside the candidate list.
    """

    def __init__(
        self,
        backend: CompletionBackend,
        item_count: Optional[int] = MAX_RANK,
        require_candidate_tickers: bool = True,
    ) -> None:
        self.backend = backend
        self.item_count = item_count
        self.require_candidate_tickers = require_candidate_tickers

    @property
    def name(self) -> str:
        return self.backend.name

    def close(self) -> None:
        self.backend.close()

    def generate(self, candidates: Sequence[Candidate], as_of_date: date) -> Generation:
        """Ask the backend for picks and return a contract-valid payload.

        Args:
            candidates: Ordered candidate universe.
            as_of_date: Date the picks are for.

        Returns:
            :class:`Generation` with the payload and the raw response body.

        Raises:
            ProviderError: Transport failure, or invalid output after repair.
        """
        requested = self.item_count or MAX_RANK
        tickers = (
            frozenset(c.ticker for c in candidates)
            if self.require_candidate_tickers else None
        )

        first = self.backend.complete(
            SYSTEM_PROMPT, render_request(candidates, as_of_date, requested)
        )
        try:
            payload = parse_payload(first.text, as_of_date, self.item_count, tickers)
            return Generation(payload=payload, raw_response=first.raw)
        except ContractViolation as exc:
            problems = exc.problems
            logger.warning(
                "LLM output invalid for as_of_date=%s (provider=%s); sending repair request: %s",
                as_of_date, self.name, exc,
            )

        second = self.backend.complete(
            SYSTEM_PROMPT,
            render_repair(candidates, as_of_date, requested, problems, first.text),
        )
        try:
            payload = parse_payload(second.text, as_of_date, self.item_count, tickers)
        except ContractViolation as exc:
            raise ProviderError(
                self.name, "repair", f"output invalid after repair: {exc}",
                raw_response=second.raw,
            ) from exc

        logger.info("Repair request produced a valid payload for as_of_date=%s", as_of_date)
        return Generation(payload=payload, raw_response=second.raw, repaired=True)
