"""
Anthropic Messages backend.

    POST {base_url}/v1/messages
    x-api-key: $ANTHROPIC_API_KEY
    anthropic-version: 2023-06-01
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from tootoo.errors import ProviderError
from tootoo.llm.backends.http import make_timeout, post_json
from tootoo.llm.base import Completion

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com"


class AnthropicMessagesBackend:
    """Completion backend for the Anthropic Messages API."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "",
        timeout_seconds: float = 120.0,
        max_tokens: int = 8192,
        temperature: float = 0.0,
        anthropic_version: str = "2023-06-01",
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY must be set to use the anthropic provider.")
        self.api_key = api_key
        self.model = model
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = make_timeout(timeout_seconds)
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.anthropic_version = anthropic_version
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.Client()

    def close(self) -> None:
        """Close the HTTP client if this backend created it."""
        if self._owns_client:
            self.http_client.close()

    def complete(self, system: str, user: str) -> Completion:
        body = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }
        data, raw = post_json(
            self.http_client,
            self.name,
            f"{self.base_url}/v1/messages",
            {"x-api-key": self.api_key, "anthropic-version": self.anthropic_version},
            body,
            timeout=self.timeout,
        )
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise ProviderError(self.name, "transport", "response has no content blocks", raw_response=raw)

        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )
        if not text.strip():
            raise ProviderError(self.name, "transport", "empty completion", raw_response=raw)

        if data.get("stop_reason") == "max_tokens":
            logger.warning("Anthropic completion hit max_tokens=%d; output may be truncated", self.max_tokens)
        return Completion(text=text, raw=raw)
