"""
LLM capability interfaces.

Two seams, both structural (``typing.Protocol``):

  ``LlmProvider``       — what the run coordinator depends on: turn a
                          candidate list into a validated payload.
  ``CompletionBackend`` — one vendor's text-completion endpoint. Adding a
                          vendor means adding a backend; the prompt, the
                          validation and the repair pass are shared by
                          ``RecommendationClient``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol, Sequence

from tootoo.models.features import Candidate
from tootoo.models.recommendation import RecommendationPayload


@dataclass(frozen=True)
class Completion:
    """Text returned by a backend plus the verbatim response body."""

    text: str
    raw: str


@dataclass(frozen=True)
class Generation:
    """A validated payload plus the raw provider response it came from.

    Attributes:
        payload: Contract-valid recommendation payload.
        raw_response: Verbatim response body of the accepted completion.
        repaired: ``True`` if the payload came from the repair request.
    """

    payload: RecommendationPayload
    raw_response: Optional[str] = None
    repaired: bool = False


class CompletionBackend(Protocol):
    """A chat/completion endpoint of one vendor."""

    name: str

    def complete(self, system: str, user: str) -> Completion:
        """Send one request; raise ``ProviderError(stage="transport")`` on failure."""
        ...

    def close(self) -> None:
        """Release network resources the backend created."""
        ...


class LlmProvider(Protocol):
    """The recommendation capability the run coordinator calls."""

    @property
    def name(self) -> str:
        ...

    def generate(self, candidates: Sequence[Candidate], as_of_date: date) -> Generation:
        """Return a validated payload or raise ``ProviderError``."""
        ...

    def close(self) -> None:
        ...
