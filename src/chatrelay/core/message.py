"""Canonical request values shared across adapters."""

from __future__ import annotations

import base64
import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum


class MessageRole(str, Enum):
    """Conversation roles understood by every vendor family."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class AttachmentPayload:
    """Binary attachment with its declared MIME type.

    Only ``image/*`` payloads are forwarded to vendors. Everything else is
    dropped while building a request.
    """

    data: bytes
    mime_type: str

    def __post_init__(self) -> None:
        if not isinstance(self.data, (bytes, bytearray)):
            msg = "attachment data must be bytes"
            raise TypeError(msg)
        if not isinstance(self.mime_type, str) or not self.mime_type:
            msg = "attachment mime_type must be a non-empty string"
            raise ValueError(msg)
        object.__setattr__(self, "data", bytes(self.data))
        object.__setattr__(self, "mime_type", self.mime_type.strip().lower())

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64()}"


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """A single conversation turn sent to a provider."""

    role: MessageRole
    content: str
    attachments: tuple[AttachmentPayload, ...] = ()

    def __post_init__(self) -> None:
        try:
            role = MessageRole(self.role)
        except ValueError as exc:
            msg = f"unsupported message role: {self.role!r}"
            raise ValueError(msg) from exc
        object.__setattr__(self, "role", role)

        if not isinstance(self.content, str):  # pragma: no cover - defensive
            msg = "message content must be a string"
            raise TypeError(msg)

        if isinstance(self.attachments, (str, bytes, bytearray)) or not isinstance(
            self.attachments, Sequence
        ):
            msg = "attachments must be a sequence of AttachmentPayload instances"
            raise TypeError(msg)
        attachments = tuple(self.attachments)
        for attachment in attachments:
            if not isinstance(attachment, AttachmentPayload):
                msg = "attachments must contain AttachmentPayload instances"
                raise TypeError(msg)
        object.__setattr__(self, "attachments", attachments)

    @property
    def images(self) -> tuple[AttachmentPayload, ...]:
        """Attachments that survive the image-only forwarding policy."""

        return tuple(attachment for attachment in self.attachments if attachment.is_image)

    def with_attachments(self, extra: Sequence[AttachmentPayload]) -> ChatMessage:
        if not extra:
            return self
        return ChatMessage(self.role, self.content, (*self.attachments, *extra))


@dataclass(frozen=True, slots=True)
class RequestOptions:
    """Optional sampling parameters; ``None`` fields are omitted on the wire."""

    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    stream: bool = True

    def __post_init__(self) -> None:
        for name in ("temperature", "top_p"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                msg = f"{name} must be a number"
                raise TypeError(msg)
            if not math.isfinite(value) or value < 0:
                msg = f"{name} must be a finite, non-negative number"
                raise ValueError(msg)
            object.__setattr__(self, name, float(value))

        if self.max_tokens is not None:
            if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int):
                msg = "max_tokens must be an integer"
                raise TypeError(msg)
            if self.max_tokens <= 0:
                msg = "max_tokens must be positive"
                raise ValueError(msg)


__all__ = ["AttachmentPayload", "ChatMessage", "MessageRole", "RequestOptions"]
