"""
Exception taxonomy for the EOD recommendation job.

How each error is treated by the run coordinator:

  InvalidDate         fatal, raised before any DB write
  NoFeatureData       recorded as a ``failed`` snapshot
  UndersizedUniverse  recorded as a ``failed`` snapshot
  ProviderError       recorded as a ``failed`` snapshot (with raw response)
  DuplicateSuccess    benign no-op; another run already succeeded
  LockNotAcquired     benign no-op; another run holds the date
  StoreError          fatal; the run never claims success
"""

from __future__ import annotations

from datetime import date
from typing import Optional


class TootooError(Exception):
    """Base class for all application errors."""


class InvalidDate(TootooError):
    """A requested as-of date could not be parsed."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid as-of date {value!r}; expected YYYY-MM-DD.")
        self.value = value


class UniverseError(TootooError):
    """The candidate universe cannot be handed to the LLM."""


class NoFeatureData(UniverseError):
    """No feature rows exist for the as-of date."""

    def __init__(self, as_of_date: date) -> None:
        super().__init__(f"No feature data for as_of_date={as_of_date.isoformat()}.")
        self.as_of_date = as_of_date


class UndersizedUniverse(UniverseError):
    """Fewer candidates than the configured minimum survived filtering."""

    def __init__(self, as_of_date: date, size: int, minimum: int) -> None:
        super().__init__(
            f"Candidate universe for as_of_date={as_of_date.isoformat()} has "
            f"{size} rows (minimum {minimum})."
        )
        self.as_of_date = as_of_date
        self.size = size
        self.minimum = minimum


class ProviderError(TootooError):
    """The LLM call failed in transport or produced no valid payload.

    Attributes:
        provider: Backend name (``"openai"``, ``"anthropic"``, ``"stub"``).
        stage: ``"transport"``, ``"validation"`` or ``"repair"``.
        detail: Human-readable failure description.
        raw_response: Verbatim provider body, when one was received.
    """

    def __init__(
        self,
        provider: str,
        stage: str,
        detail: str,
        raw_response: Optional[str] = None,
    ) -> None:
        super().__init__(f"LLM error (provider={provider}, stage={stage}): {detail}")
        self.provider = provider
        self.stage = stage
        self.detail = detail
        self.raw_response = raw_response


class DuplicateSuccess(TootooError):
    """A successful snapshot already exists for the as-of date."""

    def __init__(self, as_of_date: date) -> None:
        super().__init__(
            f"A successful snapshot already exists for as_of_date={as_of_date.isoformat()}."
        )
        self.as_of_date = as_of_date


class StoreError(TootooError):
    """Unexpected persistence failure."""


class LockNotAcquired(TootooError):
    """Another process holds the EOD lock for the as-of date."""

    def __init__(self, as_of_date: date, lock_path: str) -> None:
        super().__init__(
            f"EOD lock for as_of_date={as_of_date.isoformat()} is held by another "
            f"process ({lock_path})."
        )
        self.as_of_date = as_of_date
        self.lock_path = lock_path
