"""
Response contract for LLM recommendation output.

Expected JSON (after optional Markdown fences)::

    {
      "as_of_date": "2026-01-15",
      "generated_at": "2026-01-15T07:05:00Z",
      "items": [
        {"rank": 1, "ticker": "KRX:005930", "name": "...",
         "rationale": ["...", "...", "..."],
         "risk_notes": null, "confidence": 0.72},
        ...
      ]
    }

``parse_payload`` performs structural validation with pydantic and then the
semantic checks no schema can express (date match, exact item count,
contiguous ranks, no duplicate tickers, tickers drawn from the candidates).
All problems are collected into one ``ContractViolation`` so a single
repair request can address every one of them.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import AbstractSet, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from tootoo.models.recommendation import (
    MAX_RANK,
    RATIONALE_LINES,
    RecommendationItem,
    RecommendationPayload,
)


class ContractViolation(ValueError):
    """LLM output did not satisfy the recommendation contract.

    Attributes:
        problems: Individual human-readable violations.
    """

    def __init__(self, problems: list[str]) -> None:
        self.problems = problems
        super().__init__("; ".join(problems))


class _RawItem(BaseModel):
    # No coercion: "2", true or "0.5" are type errors, not ranks or scores.
    model_config = ConfigDict(strict=True)

    rank: int
    ticker: str
    name: str
    rationale: list[str]
    risk_notes: Optional[str] = None
    confidence: Optional[float] = None


class _RawPayload(BaseModel):
    as_of_date: date
    generated_at: datetime
    items: list[_RawItem]


def extract_json(text: str) -> Optional[str]:
    """Pull a JSON object out of model output.

    Fenced blocks (```json ... ```) are unwrapped; otherwise the span from
    the first ``{`` to the last ``}`` is returned.

    Returns:
        The JSON candidate string, or ``None`` if no object is present.
    """
    trimmed = text.strip()
    if trimmed.startswith("```"):
        inner = trimmed.split("\n", 1)[1] if "\n" in trimmed else ""
        end = inner.rfind("```")
        if end != -1:
            inner = inner[:end]
        return inner.strip()

    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start == -1 or end <= start:
        return None
    return trimmed[start:end + 1].strip()


def _format_validation_error(exc: ValidationError) -> list[str]:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "<root>"
        problems.append(f"{loc}: {err['msg']}")
    return problems


def parse_payload(
    text: str,
    expected_as_of_date: date,
    item_count: Optional[int] = MAX_RANK,
    candidate_tickers: Optional[AbstractSet[str]] = None,
) -> RecommendationPayload:
    """Parse and validate model output into a :class:`RecommendationPayload`.

    Args:
        text: Raw completion text.
        expected_as_of_date: The date the request was for.
        item_count: Exact number of items required (``None`` = any 1..20).
        candidate_tickers: When given, every ticker must be a member.

    Returns:
        The validated payload, items sorted by rank.

    Raises:
        ContractViolation: Listing every problem found.
    """
    json_str = extract_json(text)
    if json_str is None:
        json_str = text.strip()
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as exc:
        raise ContractViolation([f"output is not valid JSON: {exc}"]) from exc

    try:
        raw = _RawPayload.model_validate(data)
    except ValidationError as exc:
        raise ContractViolation(_format_validation_error(exc)) from exc

    problems: list[str] = []

    if raw.as_of_date != expected_as_of_date:
        problems.append(
            f"as_of_date mismatch: expected {expected_as_of_date.isoformat()}, "
            f"got {raw.as_of_date.isoformat()}"
        )

    n = len(raw.items)
    if item_count is not None and n != item_count:
        problems.append(f"expected exactly {item_count} items, got {n}")
    elif not 1 <= n <= MAX_RANK:
        problems.append(f"expected 1..{MAX_RANK} items, got {n}")

    ranks = sorted(item.rank for item in raw.items)
    if ranks != list(range(1, n + 1)):
        problems.append(f"ranks must be exactly 1..{n} with no gaps or duplicates, got {ranks}")

    seen: set[str] = set()
    items: list[RecommendationItem] = []
    for item in raw.items:
        ticker = item.ticker.strip()
        label = f"item rank={item.rank}"
        if not ticker:
            problems.append(f"{label}: ticker is empty")
        elif ticker in seen:
            problems.append(f"{label}: duplicate ticker {ticker}")
        seen.add(ticker)
        if candidate_tickers is not None and ticker and ticker not in candidate_tickers:
            problems.append(f"{label}: ticker {ticker} is not in the candidate universe")
        if not item.name.strip():
            problems.append(f"{label}: name is empty")
        if len(item.rationale) != RATIONALE_LINES or any(not r.strip() for r in item.rationale):
            problems.append(
                f"{label}: rationale must be exactly {RATIONALE_LINES} non-empty lines"
            )
        if item.confidence is not None and not 0.0 <= item.confidence <= 1.0:
            problems.append(f"{label}: confidence {item.confidence} outside [0, 1]")
        if problems:
            continue
        items.append(
            RecommendationItem(
                rank=item.rank,
                ticker=ticker,
                name=item.name,
                rationale=tuple(item.rationale),
                risk_notes=item.risk_notes,
                confidence=item.confidence,
            )
        )

    if problems:
        raise ContractViolation(problems)

    try:
        return RecommendationPayload(
            as_of_date=raw.as_of_date,
            generated_at=raw.generated_at,
            items=tuple(sorted(items, key=lambda i: i.rank)),
        )
    except ValidationError as exc:
        raise ContractViolation(_format_validation_error(exc)) from exc
