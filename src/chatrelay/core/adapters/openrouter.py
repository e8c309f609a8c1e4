"""OpenRouter adapter: Chat Completions plus OpenRouter's richer model listing."""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from ...io.schema import ModelInfo
from .openai import OpenAIAdapter, describe_model
from .utils import as_count, as_mapping

APP_REFERER = "https://pypi.org/project/chatrelay/"
APP_TITLE = "chatrelay"
FREE_ROUTER_ID = "openrouter/free"

_TOKENS_PER_PRICE_UNIT = 1_000_000


def per_million(value: Any) -> float | None:
    """Convert OpenRouter's per-token price string into USD per million tokens.

    Negative prices mark variable-cost routers and are treated as unknown.
    """

    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    try:
        price = float(value)
    except (ValueError, OverflowError):
        return None
    price *= _TOKENS_PER_PRICE_UNIT
    if not math.isfinite(price) or price < 0:
        return None
    return price


def openrouter_display_name(model_id: str) -> str:
    """``meta-llama/llama-3.1-8b`` -> ``Llama 3.1 8b``."""

    _, sep, name = model_id.partition("/")
    if not sep:
        return model_id
    return " ".join(word[:1].upper() + word[1:] for word in name.replace("-", " ").split())


def describe_openrouter_model(entry: Mapping[str, Any]) -> ModelInfo | None:
    model_id = entry.get("id")
    if not isinstance(model_id, str) or not model_id:
        return None

    fallback = describe_model(model_id)
    name = entry.get("name")
    context_window = as_count(entry.get("context_length")) or fallback.context_window
    modalities = as_mapping(entry.get("architecture")).get("input_modalities")
    if isinstance(modalities, list):
        supports_vision = "image" in modalities
    else:
        supports_vision = fallback.supports_vision
    pricing = as_mapping(entry.get("pricing"))

    return ModelInfo(
        id=model_id,
        display_name=name if isinstance(name, str) and name else openrouter_display_name(model_id),
        context_window=context_window,
        supports_vision=supports_vision,
        input_token_cost=per_million(pricing.get("prompt")),
        output_token_cost=per_million(pricing.get("completion")),
    )


class OpenRouterAdapter(OpenAIAdapter):
    """OpenRouter lists every routed model, so nothing is filtered out."""

    def _describe_entry(self, entry: Mapping[str, Any]) -> ModelInfo | None:
        return describe_openrouter_model(entry)

    def _sort_key(self, model: ModelInfo) -> Any:
        return (model.id != FREE_ROUTER_ID, model.display_name)

    def _default_headers(self) -> dict[str, str]:
        return {"HTTP-Referer": APP_REFERER, "X-Title": APP_TITLE}


__all__ = [
    "OpenRouterAdapter",
    "describe_openrouter_model",
    "openrouter_display_name",
    "per_million",
]
