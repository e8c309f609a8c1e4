"""Closed error taxonomy shared by every provider adapter.

Each failure mode is a :class:`ProviderError` subclass carrying its own
payload. Descriptions are passed through :func:`redact` on construction so
the text is safe to log or display even when it echoes vendor output.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import Any, ClassVar

from .redaction import redact


class ProviderErrorKind(str, Enum):
    """Discriminator for :class:`ProviderError` subclasses."""

    INVALID_API_KEY = "invalid_api_key"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network_error"
    TIMEOUT = "timeout"
    MODEL_NOT_FOUND = "model_not_found"
    INVALID_RESPONSE = "invalid_response"
    VENDOR = "provider_error"
    SERVER = "server_error"
    CANCELLED = "cancelled"
    TOKEN_EXPIRED = "token_expired"
    NOT_SUPPORTED = "not_supported"


class ProviderError(RuntimeError):
    """Base class for failures raised or reported by provider adapters."""

    kind: ClassVar[ProviderErrorKind]

    def __init__(self, description: str, *, secrets: Sequence[str | None] = ()) -> None:
        self.description = redact(description, secrets)
        super().__init__(self.description)

    @property
    def retryable(self) -> bool:
        """Whether repeating the same request could plausibly succeed."""

        return False

    def _fields(self) -> tuple[Any, ...]:
        return ()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProviderError):
            return NotImplemented
        return type(self) is type(other) and self._fields() == other._fields()

    def __hash__(self) -> int:
        return hash((self.kind, self._fields()))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description!r})"


class InvalidAPIKeyError(ProviderError):
    kind = ProviderErrorKind.INVALID_API_KEY

    def __init__(self) -> None:
        super().__init__("The API key is invalid or missing.")


class UnauthorizedError(ProviderError):
    kind = ProviderErrorKind.UNAUTHORIZED

    def __init__(self) -> None:
        super().__init__("Authentication failed. Please check your credentials.")


class RateLimitedError(ProviderError):
    kind = ProviderErrorKind.RATE_LIMITED

    def __init__(self, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        if retry_after is not None:
            description = f"Rate limited. Please retry after {int(retry_after)} seconds."
        else:
            description = "Rate limited. Please wait and try again."
        super().__init__(description)

    @property
    def retryable(self) -> bool:
        return True

    def _fields(self) -> tuple[Any, ...]:
        return (self.retry_after,)


class NetworkError(ProviderError):
    """Transport-level failure; all instances compare equal."""

    kind = ProviderErrorKind.NETWORK

    def __init__(
        self,
        underlying: BaseException | None = None,
        *,
        secrets: Sequence[str | None] = (),
    ) -> None:
        self.underlying = underlying
        if underlying is not None and str(underlying):
            description = f"Network error: {underlying}"
        else:
            description = "A network error occurred."
        super().__init__(description, secrets=secrets)

    @property
    def retryable(self) -> bool:
        return True


class ProviderTimeoutError(ProviderError):
    kind = ProviderErrorKind.TIMEOUT

    def __init__(self) -> None:
        super().__init__("The request timed out.")

    @property
    def retryable(self) -> bool:
        return True


class ModelNotFoundError(ProviderError):
    kind = ProviderErrorKind.MODEL_NOT_FOUND

    def __init__(self, model: str) -> None:
        self.model = model
        super().__init__(f"Model '{model}' not found or not available.")

    def _fields(self) -> tuple[Any, ...]:
        return (self.model,)


class InvalidResponseError(ProviderError):
    kind = ProviderErrorKind.INVALID_RESPONSE

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail
        if detail:
            description = f"Invalid response from provider: {detail}"
        else:
            description = "Invalid response from provider."
        super().__init__(description)

    def _fields(self) -> tuple[Any, ...]:
        return (self.detail,)


class VendorError(ProviderError):
    """Error message reported by the vendor inside an otherwise valid response."""

    kind = ProviderErrorKind.VENDOR

    def __init__(
        self,
        message: str,
        code: int | None = None,
        *,
        secrets: Sequence[str | None] = (),
    ) -> None:
        self.message = redact(message, secrets)
        self.code = code
        if code is not None:
            description = f"Provider error ({code}): {self.message}"
        else:
            description = f"Provider error: {self.message}"
        super().__init__(description, secrets=secrets)

    def _fields(self) -> tuple[Any, ...]:
        return (self.message, self.code)


class ServerError(ProviderError):
    kind = ProviderErrorKind.SERVER

    def __init__(
        self,
        status_code: int,
        message: str | None = None,
        *,
        secrets: Sequence[str | None] = (),
    ) -> None:
        self.status_code = status_code
        self.message = redact(message, secrets) if message else None
        if self.message:
            description = f"Server error ({status_code}): {self.message}"
        else:
            description = f"Server error ({status_code})"
        super().__init__(description, secrets=secrets)

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500

    def _fields(self) -> tuple[Any, ...]:
        return (self.status_code, self.message)


class RequestCancelledError(ProviderError):
    kind = ProviderErrorKind.CANCELLED

    def __init__(self) -> None:
        super().__init__("The request was cancelled.")


class TokenExpiredError(ProviderError):
    kind = ProviderErrorKind.TOKEN_EXPIRED

    def __init__(self) -> None:
        super().__init__("OAuth token has expired. Please re-authenticate.")


class NotSupportedError(ProviderError):
    kind = ProviderErrorKind.NOT_SUPPORTED

    def __init__(self, feature: str) -> None:
        self.feature = feature
        super().__init__(f"{feature} is not supported by this provider.")

    def _fields(self) -> tuple[Any, ...]:
        return (self.feature,)


AUTHORIZATION_FAILURES: tuple[type[ProviderError], ...] = (
    InvalidAPIKeyError,
    UnauthorizedError,
    TokenExpiredError,
)


def is_authorization_failure(error: BaseException) -> bool:
    """Return ``True`` when ``error`` means the credential was rejected."""

    return isinstance(error, AUTHORIZATION_FAILURES)


__all__ = [
    "AUTHORIZATION_FAILURES",
    "InvalidAPIKeyError",
    "InvalidResponseError",
    "ModelNotFoundError",
    "NetworkError",
    "NotSupportedError",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderTimeoutError",
    "RateLimitedError",
    "RequestCancelledError",
    "ServerError",
    "TokenExpiredError",
    "UnauthorizedError",
    "VendorError",
    "is_authorization_failure",
]
