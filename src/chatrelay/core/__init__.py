"""Canonical data model and error taxonomy shared by every adapter."""

from __future__ import annotations

from .errors import (
    InvalidAPIKeyError,
    InvalidResponseError,
    ModelNotFoundError,
    NetworkError,
    NotSupportedError,
    ProviderError,
    ProviderErrorKind,
    ProviderTimeoutError,
    RateLimitedError,
    RequestCancelledError,
    ServerError,
    TokenExpiredError,
    UnauthorizedError,
    VendorError,
)
from .message import AttachmentPayload, ChatMessage, MessageRole, RequestOptions
from .redaction import redact

__all__ = [
    "AttachmentPayload",
    "ChatMessage",
    "InvalidAPIKeyError",
    "InvalidResponseError",
    "MessageRole",
    "ModelNotFoundError",
    "NetworkError",
    "NotSupportedError",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderTimeoutError",
    "RateLimitedError",
    "RequestCancelledError",
    "RequestOptions",
    "ServerError",
    "TokenExpiredError",
    "UnauthorizedError",
    "VendorError",
    "redact",
]
