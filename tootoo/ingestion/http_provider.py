"""
HTTP JSON client for the external daily feature provider.

Endpoint::

    GET {base_url}/v1/stock_features_daily?as_of_date=YYYY-MM-DD
    x-api-key: $DATA_PROVIDER_API_KEY        (optional)

Response::

    {"as_of_date": "2026-01-15",
     "items": [{"ticker": "KRX:005930", "name": "...", "trading_value": 1.2e12,
                "features": {"ret_1d": 0.01, "mom_5d": -0.02}}]}

Transport and decode failures are retried up to ``retries`` attempts with
exponential backoff (1s, 2s, 4s, ...). Contract failures (wrong date,
blank ticker/name, empty or non-numeric features) are not retried.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import date
from typing import Callable, Optional

import httpx
from pydantic import ValidationError

from tootoo.config import IngestConfig
from tootoo.models.features import DailyFeaturesResponse, FeatureRow

logger = logging.getLogger(__name__)


class FeatureProviderError(RuntimeError):
    """The feature provider could not deliver a valid response."""


class HttpJsonFeatureProvider:
    """Fetches one day of features from the external provider.

    Args:
        base_url: Provider root URL, e.g. ``"https://data.example.com"``.
        api_key: Sent as ``x-api-key`` when non-empty.
        features_path: Path of the daily features endpoint.
        timeout_seconds: Per-request timeout.
        retries: Total attempts for transport/decode failures.
        http_client: Injected ``httpx.Client`` (tests use ``MockTransport``).
        sleep: Backoff sleeper, injectable for tests.
    """

    provider_name = "external_http_json"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        features_path: str = "/v1/stock_features_daily",
        timeout_seconds: float = 30.0,
        retries: int = 3,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not base_url:
            raise ValueError("DATA_PROVIDER_BASE_URL (ingest.base_url) must be set.")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.features_path = features_path
        self.timeout = httpx.Timeout(timeout_seconds)
        self.retries = max(1, retries)
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.Client()
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_client:
            self.http_client.close()

    def __enter__(self) -> "HttpJsonFeatureProvider":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @classmethod
    def from_config(
        cls, config: IngestConfig, http_client: Optional[httpx.Client] = None
    ) -> "HttpJsonFeatureProvider":
        return cls(
            base_url=config.base_url,
            api_key=os.environ.get("DATA_PROVIDER_API_KEY", ""),
            features_path=config.features_path,
            timeout_seconds=config.timeout_seconds,
            retries=config.retries,
            http_client=http_client,
        )

    def fetch_daily_features(self, as_of_date: date) -> tuple[list[FeatureRow], str]:
        """Fetch and validate the features for ``as_of_date``.

        Returns:
            ``(rows, raw_body)``.

        Raises:
            FeatureProviderError: All attempts failed, or the response
                violates the contract.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                data, raw = self._fetch_once(as_of_date)
                break
            except (httpx.HTTPError, ValueError) as exc:
                if attempt >= self.retries:
                    raise FeatureProviderError(
                        f"Feature fetch for {as_of_date} failed after {attempt} attempt(s): {exc}"
                    ) from exc
                backoff = float(1 << (attempt - 1))
                logger.warning(
                    "Feature fetch attempt %d failed (%s); retrying in %.0fs", attempt, exc, backoff
                )
                self._sleep(backoff)

        try:
            parsed = DailyFeaturesResponse.model_validate(data)
        except ValidationError as exc:
            raise FeatureProviderError(
                f"Feature response for {as_of_date} violates the contract: {exc}"
            ) from exc

        if parsed.as_of_date != as_of_date:
            raise FeatureProviderError(
                f"as_of_date mismatch: requested {as_of_date}, got {parsed.as_of_date}"
            )

        rows = [
            FeatureRow(
                as_of_date=as_of_date,
                ticker=item.ticker,
                name=item.name,
                trading_value=item.trading_value,
                features={k: float(v) for k, v in item.features.items()},
            )
            for item in parsed.items
        ]
        return rows, raw

    def _fetch_once(self, as_of_date: date) -> tuple[object, str]:
        headers = {"x-api-key": self.api_key} if self.api_key else {}
        resp = self.http_client.get(
            f"{self.base_url}{self.features_path}",
            params={"as_of_date": as_of_date.isoformat()},
            headers=headers,
            timeout=self.timeout,
        )
        resp.raise_for_status()
        raw = resp.text
        return resp.json(), raw
