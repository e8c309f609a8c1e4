"""Select and construct the adapter for a provider configuration."""

from __future__ import annotations

import logging

import httpx

from ...config import TransportSettings
from ...io.schema import ProviderConfigSnapshot, ProviderType
from .anthropic import AnthropicAdapter
from .base import ProviderAdapter
from .custom import CustomAdapter
from .ollama import OllamaAdapter
from .openai import OpenAIAdapter
from .openrouter import OpenRouterAdapter
from .zhipu import ZhipuAdapter


LOGGER = logging.getLogger(__name__)

_DEDICATED: dict[ProviderType, type[ProviderAdapter]] = {
    ProviderType.ANTHROPIC: AnthropicAdapter,
    ProviderType.OPENAI: OpenAIAdapter,
    ProviderType.OLLAMA: OllamaAdapter,
    ProviderType.CUSTOM: CustomAdapter,
    ProviderType.OPENROUTER: OpenRouterAdapter,
    ProviderType.ZHIPU: ZhipuAdapter,
}


def adapter_class_for(provider_type: ProviderType) -> type[ProviderAdapter]:
    adapter_cls = _DEDICATED.get(provider_type)
    if adapter_cls is not None:
        return adapter_cls
    if provider_type.is_openai_compatible:
        return OpenAIAdapter
    msg = f"no adapter available for provider type {provider_type.value!r}"
    raise ValueError(msg)


def create_adapter(
    config: ProviderConfigSnapshot,
    credential: str | None = None,
    *,
    settings: TransportSettings | None = None,
    client: httpx.AsyncClient | None = None,
) -> ProviderAdapter:
    """Build a fresh adapter for ``config``.

    The credential is stripped of surrounding whitespace; an empty value is
    treated as absent. Nothing is cached between calls.
    """

    cleaned = credential.strip() if credential else ""
    if credential and len(cleaned) != len(credential):
        LOGGER.debug("trimmed credential whitespace original=%s trimmed=%s", len(credential), len(cleaned))
    adapter_cls = adapter_class_for(config.provider_type)
    LOGGER.debug("creating %s for provider=%s", adapter_cls.__name__, config.provider_type.value)
    return adapter_cls(config, cleaned or None, settings=settings, client=client)


__all__ = ["adapter_class_for", "create_adapter"]
