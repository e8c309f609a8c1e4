"""Configuration schemas exchanged with the surrounding application."""

from .schema import (
    APIFormat,
    AuthMethod,
    ModelInfo,
    ProviderConfigSnapshot,
    ProviderType,
    StreamingFormat,
)

__all__ = [
    "APIFormat",
    "AuthMethod",
    "ModelInfo",
    "ProviderConfigSnapshot",
    "ProviderType",
    "StreamingFormat",
]
