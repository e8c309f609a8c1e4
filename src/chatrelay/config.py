"""Transport settings shared by adapters and the command line interface."""

from __future__ import annotations

from dataclasses import dataclass

from .transport.sse import DEFAULT_MAX_LINE_BYTES


@dataclass(frozen=True, slots=True)
class TransportSettings:
    """Tunables for the HTTP transport underneath every adapter.

    Attributes
    ----------
    timeout:
        Seconds allowed for connecting and for each read of a chat request.
        Streaming responses may run longer overall as long as bytes keep
        arriving.
    validation_timeout:
        Seconds allowed for the credential check, which should fail fast.
    max_line_bytes:
        Upper bound on a single buffered SSE or NDJSON line.
    user_agent:
        Optional ``User-Agent`` header value sent with every request.
    """

    timeout: float = 60.0
    validation_timeout: float = 10.0
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES
    user_agent: str | None = None

    def __post_init__(self) -> None:
        if self.timeout <= 0 or self.validation_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if self.max_line_bytes <= 0:
            raise ValueError("max_line_bytes must be positive")


DEFAULT_SETTINGS = TransportSettings()

__all__ = ["DEFAULT_SETTINGS", "TransportSettings"]
