"""
Provider factory: ``LlmConfig`` → ``LlmProvider``.

Credentials come from the environment, never from config files.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import httpx

from tootoo.config import LlmConfig
from tootoo.llm.backends.anthropic import AnthropicMessagesBackend
from tootoo.llm.backends.openai_chat import OpenAIChatBackend
from tootoo.llm.backends.stub import StubBackend
from tootoo.llm.base import CompletionBackend
from tootoo.llm.client import RecommendationClient

logger = logging.getLogger(__name__)


def build_backend(config: LlmConfig, http_client: Optional[httpx.Client] = None) -> CompletionBackend:
    """Instantiate the configured backend.

    Raises:
        ValueError: The provider's API key is missing from the environment.
    """
    if config.provider == "stub":
        return StubBackend()
    if config.provider == "anthropic":
        return AnthropicMessagesBackend(
            api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            model=config.model,
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            anthropic_version=config.anthropic_version,
            http_client=http_client,
        )
    return OpenAIChatBackend(
        api_key=os.environ.get("OPENAI_API_KEY", ""),
        model=config.model,
        base_url=config.base_url,
        timeout_seconds=config.timeout_seconds,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        http_client=http_client,
    )


def build_provider(config: LlmConfig, http_client: Optional[httpx.Client] = None) -> RecommendationClient:
    """Build the recommendation client for the configured provider."""
    backend = build_backend(config, http_client=http_client)
    logger.info("LLM provider: %s (model=%s)", backend.name, config.model)
    return RecommendationClient(
        backend,
        item_count=config.item_count,
        require_candidate_tickers=config.require_candidate_tickers,
    )
