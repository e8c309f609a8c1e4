"""Adapter interfaces and provider implementations."""

from __future__ import annotations

from .anthropic import AnthropicAdapter
from .base import InFlightSlot, ProviderAdapter
from .custom import CustomAdapter
from .factory import adapter_class_for, create_adapter
from .ollama import OllamaAdapter
from .openai import OpenAIAdapter
from .openrouter import OpenRouterAdapter
from .stream import (
    BaseStreamIterator,
    Done,
    ErrorEvent,
    InputTokenCount,
    ModelUsed,
    OutputTokenCount,
    ProviderStream,
    StreamEvent,
    StreamHandle,
    TextDelta,
)
from .zhipu import ZhipuAdapter

__all__ = [
    "AnthropicAdapter",
    "BaseStreamIterator",
    "CustomAdapter",
    "Done",
    "ErrorEvent",
    "InFlightSlot",
    "InputTokenCount",
    "ModelUsed",
    "OllamaAdapter",
    "OpenAIAdapter",
    "OpenRouterAdapter",
    "OutputTokenCount",
    "ProviderAdapter",
    "ProviderStream",
    "StreamEvent",
    "StreamHandle",
    "TextDelta",
    "ZhipuAdapter",
    "adapter_class_for",
    "create_adapter",
]
