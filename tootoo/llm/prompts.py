"""
Prompt rendering for the recommendation request and the single repair request.

The structured input is always the last block of the user message, after an
``INPUT:`` line, as one JSON document::

    {"as_of_date": "2026-01-15", "item_count": 20, "candidates": [...]}

Only the as-of date and ``{ticker, name, features}`` per candidate are sent.
Trading value, configuration and credentials never appear in a prompt.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Sequence

from tootoo.models.features import Candidate

INPUT_MARKER = "INPUT:"

SYSTEM_PROMPT = """\
You are an equity research assistant for the Korean stock market.
You receive end-of-day features for a fixed list of candidate stocks and
select the most promising ones for the next trading session.
Respond with a single JSON object and nothing else. No Markdown, no prose."""

_OUTPUT_CONTRACT = """\
Return JSON with exactly these keys:
  "as_of_date": the as_of_date from the input (YYYY-MM-DD),
  "generated_at": current UTC timestamp (RFC 3339),
  "items": a list of exactly {item_count} objects, each with
    "rank": integer, 1 is best; ranks are 1..{item_count} with no gaps or repeats,
    "ticker": a ticker copied exactly from the candidates,
    "name": the candidate's name,
    "rationale": a list of exactly 3 short, non-empty sentences,
    "risk_notes": a short string or null,
    "confidence": a number between 0 and 1 or null.
Each ticker may appear at most once. Choose only from the candidates."""


def render_input(candidates: Sequence[Candidate], as_of_date: date, item_count: int) -> str:
    """Byte-stable JSON input document."""
    return json.dumps(
        {
            "as_of_date": as_of_date.isoformat(),
            "item_count": item_count,
            "candidates": [c.model_dump() for c in candidates],
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def render_request(candidates: Sequence[Candidate], as_of_date: date, item_count: int) -> str:
    """User message for the initial recommendation request."""
    return (
        f"Select the top {item_count} stocks for as_of_date {as_of_date.isoformat()}.\n\n"
        f"{_OUTPUT_CONTRACT.format(item_count=item_count)}\n\n"
        f"{INPUT_MARKER}\n{render_input(candidates, as_of_date, item_count)}"
    )


def render_repair(
    candidates: Sequence[Candidate],
    as_of_date: date,
    item_count: int,
    problems: Sequence[str],
    rejected_output: str,
) -> str:
    """User message for the one repair request after a contract violation."""
    problem_lines = "\n".join(f"- {p}" for p in problems)
    return (
        "Your previous answer violated the output contract:\n"
        f"{problem_lines}\n\n"
        "Previous answer:\n"
        f"{rejected_output.strip()}\n\n"
        "Return only the corrected JSON.\n\n"
        f"{_OUTPUT_CONTRACT.format(item_count=item_count)}\n\n"
        f"{INPUT_MARKER}\n{render_input(candidates, as_of_date, item_count)}"
    )


def parse_input(user_message: str) -> dict:
    """Recover the JSON input document from a rendered user message."""
    _, _, tail = user_message.rpartition(f"{INPUT_MARKER}\n")
    return json.loads(tail)
