"""Configuration snapshots and model catalog entries handed to adapters."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..pricing import ModelPricing, calculate_cost


class APIFormat(str, Enum):
    """Wire family of a request body and its streamed payloads."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"

    @property
    def default_path(self) -> str:
        if self is APIFormat.ANTHROPIC:
            return "/v1/messages"
        return "/v1/chat/completions"

    @property
    def default_key_header(self) -> str:
        if self is APIFormat.ANTHROPIC:
            return "x-api-key"
        return "Authorization"

    @property
    def default_key_prefix(self) -> str:
        if self is APIFormat.ANTHROPIC:
            return ""
        return "Bearer "


class StreamingFormat(str, Enum):
    """Framing of a streamed response body."""

    SSE = "sse"
    NDJSON = "ndjson"
    NONE = "none"

    @property
    def supports_streaming(self) -> bool:
        return self is not StreamingFormat.NONE


class AuthMethod(str, Enum):
    API_KEY = "api_key"
    OAUTH = "oauth"
    BEARER = "bearer"
    NONE = "none"

    @property
    def requires_credential(self) -> bool:
        return self is not AuthMethod.NONE


class ProviderType(str, Enum):
    """Known vendors; every non-dedicated type speaks the OpenAI wire format."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OLLAMA = "ollama"
    ZHIPU = "zhipu"
    GROQ = "groq"
    CEREBRAS = "cerebras"
    MISTRAL = "mistral"
    DEEPSEEK = "deepseek"
    TOGETHER = "together"
    FIREWORKS = "fireworks"
    OPENROUTER = "openrouter"
    SILICONFLOW = "siliconflow"
    XAI = "xai"
    PERPLEXITY = "perplexity"
    GOOGLE = "google"
    CUSTOM = "custom"

    @property
    def default_base_url(self) -> str | None:
        return _PROVIDER_DEFAULTS[self][0]

    @property
    def default_api_path(self) -> str | None:
        return _PROVIDER_DEFAULTS[self][1]

    @property
    def display_name(self) -> str:
        return _PROVIDER_DEFAULTS[self][2]

    @property
    def is_openai_compatible(self) -> bool:
        return self not in (ProviderType.ANTHROPIC, ProviderType.OLLAMA, ProviderType.CUSTOM)


_CHAT = "/chat/completions"
_PROVIDER_DEFAULTS: Dict[ProviderType, tuple[Optional[str], Optional[str], str]] = {
    ProviderType.ANTHROPIC: ("https://api.anthropic.com", "/v1/messages", "Anthropic Claude"),
    ProviderType.OPENAI: ("https://api.openai.com", "/v1/chat/completions", "OpenAI"),
    ProviderType.OLLAMA: ("http://localhost:11434", "/api/chat", "Ollama"),
    ProviderType.ZHIPU: ("https://api.z.ai/api/paas/v4", _CHAT, "Z.AI"),
    ProviderType.GROQ: ("https://api.groq.com/openai", "/v1/chat/completions", "Groq"),
    ProviderType.CEREBRAS: ("https://api.cerebras.ai/v1", _CHAT, "Cerebras"),
    ProviderType.MISTRAL: ("https://api.mistral.ai/v1", _CHAT, "Mistral AI"),
    ProviderType.DEEPSEEK: ("https://api.deepseek.com", _CHAT, "DeepSeek"),
    ProviderType.TOGETHER: ("https://api.together.xyz/v1", _CHAT, "Together AI"),
    ProviderType.FIREWORKS: ("https://api.fireworks.ai/inference/v1", _CHAT, "Fireworks AI"),
    ProviderType.OPENROUTER: ("https://openrouter.ai/api/v1", _CHAT, "OpenRouter"),
    ProviderType.SILICONFLOW: ("https://api.siliconflow.cn/v1", _CHAT, "SiliconFlow"),
    ProviderType.XAI: ("https://api.x.ai/v1", _CHAT, "xAI (Grok)"),
    ProviderType.PERPLEXITY: ("https://api.perplexity.ai", _CHAT, "Perplexity"),
    ProviderType.GOOGLE: ("https://generativelanguage.googleapis.com/v1beta/openai", _CHAT, "Google AI"),
    ProviderType.CUSTOM: (None, None, "Custom"),
}


class ModelInfo(BaseModel):
    """Catalog entry describing one model offered by a provider."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(..., min_length=1, description="Identifier sent on the wire.")
    display_name: str = Field(..., description="Human friendly model name.")
    context_window: Optional[int] = Field(None, gt=0, description="Maximum context length in tokens.")
    supports_vision: bool = Field(False, description="Whether image attachments are accepted.")
    supports_streaming: bool = Field(True, description="Whether incremental responses are available.")
    input_token_cost: Optional[float] = Field(None, ge=0, description="USD per million input tokens.")
    output_token_cost: Optional[float] = Field(None, ge=0, description="USD per million output tokens.")

    @property
    def context_window_description(self) -> str | None:
        window = self.context_window
        if window is None:
            return None
        if window >= 1_000_000:
            return f"{window // 1_000_000}M tokens"
        if window >= 1000:
            return f"{window // 1000}K tokens"
        return f"{window} tokens"

    @property
    def pricing(self) -> ModelPricing | None:
        if self.input_token_cost is None or self.output_token_cost is None:
            return None
        return ModelPricing(self.input_token_cost, self.output_token_cost)

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Cost from this entry's pricing, falling back to the reference table."""

        return calculate_cost(input_tokens, output_tokens, self.id, pricing=self.pricing)


class ProviderConfigSnapshot(BaseModel):
    """Immutable view of a provider configuration owned by an external store."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field("", description="User-facing label for the configuration.")
    provider_type: ProviderType = Field(..., description="Vendor selecting the adapter.")
    base_url: Optional[str] = Field(None, description="Override for the vendor's default base URL.")
    api_path: Optional[str] = Field(None, description="Override for the request path.")
    api_format: APIFormat = Field(APIFormat.OPENAI, description="Wire family used by custom endpoints.")
    streaming_format: StreamingFormat = Field(StreamingFormat.SSE, description="Response framing used by custom endpoints.")
    auth_method: AuthMethod = Field(AuthMethod.API_KEY, description="How the credential is presented.")
    api_key_header: Optional[str] = Field(None, description="Header carrying the credential.")
    api_key_prefix: Optional[str] = Field(None, description="Prefix placed before the credential value.")
    custom_headers: Dict[str, str] = Field(default_factory=dict, description="Extra headers sent with every request.")
    available_models: List[ModelInfo] = Field(default_factory=list, description="Known models for this configuration.")
    default_model_id: Optional[str] = Field(None, description="Model used when the caller does not pick one.")

    @property
    def effective_base_url(self) -> str | None:
        base = (self.base_url or "").strip() or self.provider_type.default_base_url
        if not base:
            return None
        return base.rstrip("/")

    @property
    def effective_api_path(self) -> str:
        path = (self.api_path or "").strip()
        if not path:
            path = self.provider_type.default_api_path or self.api_format.default_path
        if not path.startswith("/"):
            path = "/" + path
        return path

    @property
    def endpoint_url(self) -> str | None:
        base = self.effective_base_url
        if base is None:
            return None
        return base + self.effective_api_path

    @property
    def effective_key_header(self) -> str:
        return (self.api_key_header or "").strip() or self.api_format.default_key_header

    @property
    def effective_key_prefix(self) -> str:
        if self.api_key_prefix is not None:
            return self.api_key_prefix
        return self.api_format.default_key_prefix

    @property
    def default_model(self) -> ModelInfo | None:
        if self.default_model_id:
            for model in self.available_models:
                if model.id == self.default_model_id:
                    return model
        if self.available_models:
            return self.available_models[0]
        return None

    def find_model(self, model_id: str) -> ModelInfo | None:
        for model in self.available_models:
            if model.id == model_id:
                return model
        return None

    def calculate_cost(self, input_tokens: int, output_tokens: int, model_id: str) -> float:
        """Cost using this configuration's catalog pricing when it has any."""

        model = self.find_model(model_id)
        if model is not None:
            return model.calculate_cost(input_tokens, output_tokens)
        if self.provider_type is ProviderType.OLLAMA or self.provider_type is ProviderType.ZHIPU:
            return 0.0
        return calculate_cost(input_tokens, output_tokens, model_id)


__all__ = [
    "APIFormat",
    "AuthMethod",
    "ModelInfo",
    "ProviderConfigSnapshot",
    "ProviderType",
    "StreamingFormat",
]
