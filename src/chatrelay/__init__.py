"""Uniform streaming access to chat-completion vendors.

The package exposes one adapter interface over the Anthropic Messages API,
OpenAI-compatible Chat Completions endpoints, Ollama, and user-configured
endpoints speaking either wire format. Every adapter returns the same
canonical event stream, terminated by exactly one ``Done`` or ``ErrorEvent``.
"""

from __future__ import annotations

from .config import TransportSettings
from .core import AttachmentPayload, ChatMessage, MessageRole, ProviderError, RequestOptions
from .core.adapters import (
    AnthropicAdapter,
    CustomAdapter,
    Done,
    ErrorEvent,
    InputTokenCount,
    ModelUsed,
    OllamaAdapter,
    OpenAIAdapter,
    OpenRouterAdapter,
    OutputTokenCount,
    ProviderAdapter,
    ProviderStream,
    StreamEvent,
    TextDelta,
    ZhipuAdapter,
    create_adapter,
)
from .io import APIFormat, AuthMethod, ModelInfo, ProviderConfigSnapshot, ProviderType, StreamingFormat

__all__ = [
    "APIFormat",
    "AnthropicAdapter",
    "AttachmentPayload",
    "AuthMethod",
    "ChatMessage",
    "CustomAdapter",
    "Done",
    "ErrorEvent",
    "InputTokenCount",
    "MessageRole",
    "ModelInfo",
    "ModelUsed",
    "OllamaAdapter",
    "OpenAIAdapter",
    "OpenRouterAdapter",
    "OutputTokenCount",
    "ProviderAdapter",
    "ProviderConfigSnapshot",
    "ProviderError",
    "ProviderStream",
    "ProviderType",
    "RequestOptions",
    "StreamEvent",
    "StreamingFormat",
    "TextDelta",
    "TransportSettings",
    "ZhipuAdapter",
    "create_adapter",
]

__version__ = "0.1.0"
