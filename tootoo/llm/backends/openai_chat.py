"""
OpenAI Chat Completions backend.

    POST {base_url}/v1/chat/completions
    Authorization: Bearer $OPENAI_API_KEY

JSON mode (``response_format: {"type": "json_object"}``) is requested so the
model answers with a bare object; the contract parser still tolerates fences.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from tootoo.errors import ProviderError
from tootoo.llm.backends.http import make_timeout, post_json
from tootoo.llm.base import Completion

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com"


class OpenAIChatBackend:
    """Completion backend for OpenAI-compatible chat endpoints."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "",
        timeout_seconds: float = 120.0,
        max_tokens: int = 8192,
        temperature: float = 0.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        if not api_key:
            raise ValueError("OPENAI_API_KEY must be set to use the openai provider.")
        self.api_key = api_key
        self.model = model
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = make_timeout(timeout_seconds)
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.Client()

    def close(self) -> None:
        """Close the HTTP client if this backend created it."""
        if self._owns_client:
            self.http_client.close()

    def complete(self, system: str, user: str) -> Completion:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }
        data, raw = post_json(
            self.http_client,
            self.name,
            f"{self.base_url}/v1/chat/completions",
            {"Authorization": f"Bearer {self.api_key}"},
            body,
            timeout=self.timeout,
        )
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(
                self.name, "transport", "response has no choices[0].message.content",
                raw_response=raw,
            ) from exc
        if not isinstance(text, str) or not text.strip():
            raise ProviderError(self.name, "transport", "empty completion", raw_response=raw)

        usage = data.get("usage") or {}
        logger.debug(
            "OpenAI completion: model=%s prompt_tokens=%s completion_tokens=%s",
            self.model, usage.get("prompt_tokens"), usage.get("completion_tokens"),
        )
        return Completion(text=text, raw=raw)
