"""Per-million-token pricing reference and cost estimation helpers."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

TOKENS_PER_UNIT = 1_000_000


@dataclass(frozen=True, slots=True)
class ModelPricing:
    """USD prices per million input and output tokens."""

    input_cost_per_million: float
    output_cost_per_million: float
    currency: str = "USD"

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            self.input_cost_per_million * input_tokens
            + self.output_cost_per_million * output_tokens
        ) / TOKENS_PER_UNIT


FREE = ModelPricing(0.0, 0.0)


def _table() -> Mapping[str, ModelPricing]:
    opus = ModelPricing(15.0, 75.0)
    sonnet = ModelPricing(3.0, 15.0)
    haiku_35 = ModelPricing(0.80, 4.0)
    haiku_3 = ModelPricing(0.25, 1.25)
    gpt_4o = ModelPricing(2.50, 10.0)
    gpt_4o_mini = ModelPricing(0.15, 0.60)
    gpt_4_turbo = ModelPricing(10.0, 30.0)
    gpt_4 = ModelPricing(30.0, 60.0)
    o1 = ModelPricing(15.0, 60.0)

    entries = {
        "claude-opus-4": opus,
        "claude-opus-4-20250514": opus,
        "claude-sonnet-4": sonnet,
        "claude-sonnet-4-20250514": sonnet,
        "claude-sonnet-4-5": sonnet,
        "claude-3-5-sonnet": sonnet,
        "claude-3.5-sonnet": sonnet,
        "claude-3-5-haiku": haiku_35,
        "claude-3.5-haiku": haiku_35,
        "claude-3-opus": opus,
        "claude-3-haiku": haiku_3,
        "gpt-4o": gpt_4o,
        "gpt-4o-2024-05-13": ModelPricing(5.0, 15.0),
        "gpt-4o-mini": gpt_4o_mini,
        "gpt-4-turbo": gpt_4_turbo,
        "gpt-4-0125-preview": gpt_4_turbo,
        "gpt-4-1106-preview": gpt_4_turbo,
        "gpt-4": gpt_4,
        "gpt-4-32k": ModelPricing(60.0, 120.0),
        "o1": o1,
        "o1-preview": o1,
        "o1-mini": ModelPricing(1.50, 6.0),
        "gpt-3.5-turbo": ModelPricing(0.50, 1.50),
        "gpt-3.5-turbo-1106": ModelPricing(1.0, 2.0),
        "gpt-3.5-turbo-16k": ModelPricing(3.0, 4.0),
    }
    for local in ("llama3.2", "llama3.1", "llama3", "llama2", "mistral", "codellama", "phi3", "gemma2", "llava"):
        entries[local] = FREE
    return MappingProxyType(entries)


DEFAULT_PRICING: Mapping[str, ModelPricing] = _table()

# Checked in order when no table key prefixes the model id.
_FAMILY_FALLBACKS: tuple[tuple[str, ModelPricing], ...] = (
    ("opus", ModelPricing(15.0, 75.0)),
    ("sonnet", ModelPricing(3.0, 15.0)),
    ("haiku", ModelPricing(0.80, 4.0)),
    ("gpt-4o", ModelPricing(2.50, 10.0)),
    ("gpt-4", ModelPricing(10.0, 30.0)),
    ("o1", ModelPricing(15.0, 60.0)),
)

# Subscription-billed vendors report tokens but no per-token cost.
_SUBSCRIPTION_PREFIXES = ("glm",)


def pricing_for(model_id: str, table: Mapping[str, ModelPricing] | None = None) -> ModelPricing:
    """Resolve pricing by exact id, then longest matching prefix, then model family.

    Unknown models are priced as free rather than guessed.
    """

    table = DEFAULT_PRICING if table is None else table
    normalized = model_id.strip().lower()
    if not normalized:
        return FREE

    exact = table.get(normalized)
    if exact is not None:
        return exact

    prefixes = [key for key in table if normalized.startswith(key)]
    if prefixes:
        return table[max(prefixes, key=len)]

    for needle, pricing in _FAMILY_FALLBACKS:
        if needle in normalized:
            return pricing
    return FREE


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    model_id: str | None = None,
    *,
    pricing: ModelPricing | None = None,
) -> float:
    """Estimate the USD cost of a call from explicit pricing or the model id."""

    if pricing is None:
        if model_id is None:
            msg = "either model_id or pricing must be provided"
            raise ValueError(msg)
        if is_subscription_model(model_id):
            return 0.0
        pricing = pricing_for(model_id)
    return pricing.cost(max(input_tokens, 0), max(output_tokens, 0))


def is_subscription_model(model_id: str) -> bool:
    normalized = model_id.strip().lower()
    return normalized.startswith(_SUBSCRIPTION_PREFIXES) or "glm-" in normalized


def format_cost(cost: float) -> str:
    if cost < 0.01:
        return f"${cost:.6f}"
    if cost < 1.0:
        return f"${cost:.4f}"
    return f"${cost:.2f}"


def format_token_count(tokens: int) -> str:
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.1f}M"
    if tokens >= 1000:
        return f"{tokens / 1000:.1f}K"
    return str(tokens)


__all__ = [
    "DEFAULT_PRICING",
    "FREE",
    "ModelPricing",
    "calculate_cost",
    "format_cost",
    "format_token_count",
    "is_subscription_model",
    "pricing_for",
]
