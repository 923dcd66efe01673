"""
Deterministic offline backend.

Reads the JSON input block back out of the user message and ranks the first
``item_count`` candidates in the order given (i.e. by trading value). Used
with the stub universe, for dry demos, and in tests. Never touches the network.
"""

from __future__ import annotations

import json

from tootoo.llm.base import Completion
from tootoo.llm.prompts import parse_input
from tootoo.utils.time_utils import to_utc_iso, utcnow


class StubBackend:
    """Completion backend that answers from the prompt input alone."""

    name = "stub"

    def close(self) -> None:
        pass

    def complete(self, system: str, user: str) -> Completion:
        request = parse_input(user)
        candidates = request["candidates"][: request["item_count"]]
        items = [
            {
                "rank": rank,
                "ticker": c["ticker"],
                "name": c["name"],
                "rationale": [
                    f"{c['ticker']} ranks #{rank} by trading value in the candidate set.",
                    f"Features considered: {', '.join(sorted(c['features'])) or 'none'}.",
                    "Generated offline by the stub backend.",
                ],
                "risk_notes": None,
                "confidence": round(1.0 - (rank - 1) / 40, 4),
            }
            for rank, c in enumerate(candidates, start=1)
        ]
        text = json.dumps(
            {
                "as_of_date": request["as_of_date"],
                "generated_at": to_utc_iso(utcnow()),
                "items": items,
            },
            ensure_ascii=False,
        )
        return Completion(text=text, raw=text)
