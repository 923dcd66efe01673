"""
Shared HTTP plumbing for vendor backends.

Every transport-level failure is normalised to ``ProviderError(stage="transport")``
so the recommendation client treats all vendors alike.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from tootoo.errors import ProviderError

logger = logging.getLogger(__name__)


def make_timeout(timeout_seconds: float) -> httpx.Timeout:
    """Overall timeout with a short connect budget."""
    return httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds))


def post_json(
    client: httpx.Client,
    provider: str,
    url: str,
    headers: dict[str, str],
    body: dict[str, Any],
    timeout: Optional[httpx.Timeout] = None,
) -> tuple[dict[str, Any], str]:
    """POST ``body`` and return ``(decoded_json, raw_text)``.

    Raises:
        ProviderError: Timeout, connection error, non-2xx status or a body
            that is not a JSON object. ``raw_response`` holds the body when
            one was received.
    """
    try:
        resp = client.post(url, headers=headers, json=body, timeout=timeout)
    except httpx.TimeoutException as exc:
        raise ProviderError(provider, "transport", f"request timed out: {exc}") from exc
    except httpx.HTTPError as exc:
        raise ProviderError(provider, "transport", f"request failed: {exc}") from exc

    raw = resp.text
    if resp.is_error:
        logger.warning("LLM backend %s returned HTTP %d", provider, resp.status_code)
        raise ProviderError(
            provider, "transport", f"HTTP {resp.status_code}: {raw[:500]}", raw_response=raw
        )

    try:
        data = resp.json()
    except ValueError as exc:
        raise ProviderError(
            provider, "transport", "response body is not JSON", raw_response=raw
        ) from exc
    if not isinstance(data, dict):
        raise ProviderError(
            provider, "transport", "response body is not a JSON object", raw_response=raw
        )
    return data, raw
