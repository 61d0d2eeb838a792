"""Provider adapters, selected by provider kind."""

from __future__ import annotations

import httpx

from llm_relay.config import ProviderSpec
from llm_relay.errors import UnknownProviderError
from llm_relay.providers.anthropic import AnthropicAdapter
from llm_relay.providers.base import ProviderAdapter
from llm_relay.providers.cohere import CohereAdapter
from llm_relay.providers.google import GoogleAdapter
from llm_relay.providers.openai import OpenAIAdapter
from llm_relay.providers.openai_compatible import (
    LLMStatsAdapter,
    OpenAICompatibleAdapter,
    OpenRouterAdapter,
)
from llm_relay.providers.poe import PoeAdapter

ADAPTERS: dict[str, type[ProviderAdapter]] = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "google": GoogleAdapter,
    "poe": PoeAdapter,
    "cohere": CohereAdapter,
    "openrouter": OpenRouterAdapter,
    "llmstats": LLMStatsAdapter,
    "openai_compatible": OpenAICompatibleAdapter,
}


def create_adapter(spec: ProviderSpec, client: httpx.AsyncClient) -> ProviderAdapter:
    """Build the adapter for ``spec.kind``.

    Raises :class:`UnknownProviderError` for kinds without an adapter and
    :class:`MissingApiKeyError` when no API key can be resolved.
    """
    try:
        adapter_cls = ADAPTERS[spec.kind]
    except KeyError:
        raise UnknownProviderError(spec.kind) from None
    return adapter_cls(spec, client)


__all__ = ["ADAPTERS", "ProviderAdapter", "create_adapter"]
