"""
Feature-store models.

``FeatureRow`` is one instrument's data for one trading date, owned by the
ingestion collaborator and read-only to the EOD job. ``features`` holds a
small, conventionally-versioned set of numeric values (``ret_1d``,
``mom_5d``, ``vol_20d``, ...).

``Candidate`` is the compact view of a ``FeatureRow`` that is sent to the
LLM: ticker, name and numeric features only. ``trading_value`` is used for
ordering and never leaves the process.
"""

from __future__ import annotations

import math
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, field_validator


def _check_features(v: dict[str, float]) -> dict[str, float]:
    for key, val in v.items():
        if not key.strip():
            raise ValueError("feature keys must be non-empty.")
        if isinstance(val, bool) or not math.isfinite(float(val)):
            raise ValueError(f"feature '{key}' must be a finite number, got {val!r}.")
    # Sorted keys keep serialisation byte-stable.
    return {k: float(v[k]) for k in sorted(v)}


class FeatureRow(BaseModel):
    """One row of ``stock_features_daily``.

    Attributes:
        as_of_date: Trading date the row is valid for.
        ticker: Exchange-qualified ticker, e.g. ``"KRX:005930"``.
        name: Display name of the instrument.
        trading_value: Traded value for the day (ordering key), if known.
        features: Numeric feature map.
    """

    model_config = ConfigDict(frozen=True)

    as_of_date: date
    ticker: str
    name: str
    trading_value: Optional[float] = None
    features: dict[str, float] = {}

    @field_validator("ticker", "name")
    @classmethod
    def validate_non_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must be non-empty.")
        return v

    @field_validator("features")
    @classmethod
    def validate_features(cls, v: dict[str, float]) -> dict[str, float]:
        return _check_features(v)


class Candidate(BaseModel):
    """An instrument in the candidate universe, as shown to the LLM."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    name: str
    features: dict[str, float] = {}

    @classmethod
    def from_row(cls, row: FeatureRow) -> "Candidate":
        return cls(ticker=row.ticker, name=row.name, features=dict(row.features))


class DailyFeatureItem(BaseModel):
    """One instrument in an external feature provider response.

    Feature values are strict numbers: ``"0.01"`` is rejected rather than
    coerced, so a provider that changes its types fails loudly.
    """

    model_config = ConfigDict(frozen=True)

    ticker: str
    name: str
    trading_value: Optional[float] = None
    features: dict[str, StrictFloat | StrictInt]

    @field_validator("ticker", "name")
    @classmethod
    def validate_non_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must be non-empty.")
        return v

    @field_validator("features")
    @classmethod
    def validate_features(cls, v: dict[str, float]) -> dict[str, float]:
        if not v:
            raise ValueError("features must be non-empty.")
        return _check_features(v)


class DailyFeaturesResponse(BaseModel):
    """Envelope returned by the external feature provider."""

    model_config = ConfigDict(frozen=True)

    as_of_date: date
    items: list[DailyFeatureItem]
