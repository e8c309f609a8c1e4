"""Anthropic Messages API adapter (phase-based SSE)."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from ...io.schema import ModelInfo, StreamingFormat
from ...transport.http import PreparedRequest
from ..errors import InvalidAPIKeyError, InvalidResponseError, ModelNotFoundError, VendorError
from ..message import AttachmentPayload, ChatMessage, RequestOptions
from .base import ProviderAdapter, resolve_messages
from .stream import (
    BaseStreamIterator,
    Done,
    ErrorEvent,
    InputTokenCount,
    ModelUsed,
    OutputTokenCount,
    RawChunk,
    StreamEvent,
    StreamNormalizer,
    TextDelta,
)
from .utils import as_count, as_mapping, build_headers, parse_json_object, split_system


LOGGER = logging.getLogger(__name__)

API_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096
VALIDATION_MODEL = "claude-3-haiku-20240307"


class _Wire(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class AnthropicImageSource(_Wire):
    type: Literal["base64"] = "base64"
    media_type: str
    data: str


class AnthropicTextBlock(_Wire):
    type: Literal["text"] = "text"
    text: str


class AnthropicImageBlock(_Wire):
    type: Literal["image"] = "image"
    source: AnthropicImageSource


AnthropicContentBlock = Union[AnthropicTextBlock, AnthropicImageBlock]


class AnthropicMessage(_Wire):
    role: Literal["user", "assistant"]
    content: List[AnthropicContentBlock]


class AnthropicRequest(_Wire):
    model: str
    max_tokens: int
    messages: List[AnthropicMessage]
    system: Optional[str] = None
    stream: bool = True
    temperature: Optional[float] = None
    top_p: Optional[float] = None

    def to_bytes(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode("utf-8")


def build_anthropic_request(
    messages: Sequence[ChatMessage],
    model: str,
    *,
    system_prompt: str | None = None,
    options: RequestOptions | None = None,
    stream: bool = True,
) -> AnthropicRequest:
    """Translate canonical messages into a Messages API body.

    Image attachments become base64 blocks after the text block; anything
    that is not an image is dropped.
    """

    options = options or RequestOptions()
    system, turns = split_system(messages, system_prompt)
    wire_messages: list[AnthropicMessage] = []
    for message in turns:
        blocks: list[AnthropicContentBlock] = []
        images = message.images
        if message.content or not images:
            blocks.append(AnthropicTextBlock(text=message.content))
        for image in images:
            blocks.append(
                AnthropicImageBlock(
                    source=AnthropicImageSource(media_type=image.mime_type, data=image.base64())
                )
            )
        dropped = len(message.attachments) - len(images)
        if dropped:
            LOGGER.debug("dropping %s non-image attachment(s)", dropped)
        wire_messages.append(AnthropicMessage(role=message.role.value, content=blocks))

    return AnthropicRequest(
        model=model,
        max_tokens=options.max_tokens or DEFAULT_MAX_TOKENS,
        messages=wire_messages,
        system=system,
        stream=stream,
        temperature=options.temperature,
        top_p=options.top_p,
    )


class AnthropicStreamNormalizer(StreamNormalizer):
    """Drive the Messages API phase machine over decoded payloads.

    The phase comes from the payload ``type`` and falls back to the SSE
    ``event:`` name, so the same normalizer reads SSE frames and NDJSON lines.
    """

    def __init__(self, *, secrets: Sequence[str | None] = ()) -> None:
        self._secrets = tuple(secrets)
        self._model_reported = False

    async def normalize_chunk(self, chunk: RawChunk) -> List[StreamEvent]:
        payload = parse_json_object(chunk.data, source="anthropic")
        if payload is None:
            return []

        phase = payload.get("type") or chunk.event
        if phase == "message_start":
            return self._message_start(as_mapping(payload.get("message")))
        if phase == "content_block_delta":
            delta = as_mapping(payload.get("delta"))
            text = delta.get("text")
            if delta.get("type") == "text_delta" and isinstance(text, str) and text:
                return [TextDelta(text)]
            return []
        if phase == "message_delta":
            count = as_count(as_mapping(payload.get("usage")).get("output_tokens"))
            return [OutputTokenCount(count)] if count is not None else []
        if phase == "message_stop":
            return [Done()]
        if phase == "error":
            error = as_mapping(payload.get("error"))
            message = error.get("message")
            if not isinstance(message, str) or not message:
                message = "Unknown error"
            return [ErrorEvent(VendorError(message, secrets=self._secrets))]
        return []

    async def finish(self) -> List[StreamEvent]:
        return []

    def _message_start(self, message: Mapping[str, Any]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        model = message.get("model")
        if isinstance(model, str) and model and not self._model_reported:
            self._model_reported = True
            events.append(ModelUsed(model))
        count = as_count(as_mapping(message.get("usage")).get("input_tokens"))
        if count is not None:
            events.append(InputTokenCount(count))
        return events


class AnthropicCompletionNormalizer(StreamNormalizer):
    """Synthesize canonical events from a single non-streaming response body."""

    def __init__(self, *, secrets: Sequence[str | None] = ()) -> None:
        self._secrets = tuple(secrets)

    async def normalize_chunk(self, chunk: RawChunk) -> List[StreamEvent]:
        payload = parse_json_object(chunk.data, source="anthropic")
        if payload is None:
            return [ErrorEvent(InvalidResponseError("response body is not a JSON object"))]

        if payload.get("type") == "error":
            error = as_mapping(payload.get("error"))
            message = error.get("message")
            if not isinstance(message, str) or not message:
                message = "Unknown error"
            return [ErrorEvent(VendorError(message, secrets=self._secrets))]

        events: List[StreamEvent] = []
        model = payload.get("model")
        if isinstance(model, str) and model:
            events.append(ModelUsed(model))
        text = "".join(
            block.get("text", "")
            for block in payload.get("content") or ()
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
        )
        if text:
            events.append(TextDelta(text))
        usage = as_mapping(payload.get("usage"))
        input_tokens = as_count(usage.get("input_tokens"))
        if input_tokens is not None:
            events.append(InputTokenCount(input_tokens))
        output_tokens = as_count(usage.get("output_tokens"))
        if output_tokens is not None:
            events.append(OutputTokenCount(output_tokens))
        events.append(Done())
        return events

    async def finish(self) -> List[StreamEvent]:
        return []


def _claude(model_id: str, name: str, input_cost: float, output_cost: float) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        display_name=name,
        context_window=200_000,
        supports_vision=True,
        supports_streaming=True,
        input_token_cost=input_cost,
        output_token_cost=output_cost,
    )


KNOWN_MODELS: tuple[ModelInfo, ...] = (
    _claude("claude-opus-4-20250514", "Claude Opus 4", 15.0, 75.0),
    _claude("claude-sonnet-4-20250514", "Claude Sonnet 4", 3.0, 15.0),
    _claude("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", 3.0, 15.0),
    _claude("claude-3-5-haiku-20241022", "Claude 3.5 Haiku", 0.80, 4.0),
    _claude("claude-3-opus-20240229", "Claude 3 Opus", 15.0, 75.0),
    _claude("claude-3-haiku-20240307", "Claude 3 Haiku", 0.25, 1.25),
)


class AnthropicAdapter(ProviderAdapter):
    """Talk to the Anthropic Messages API."""

    async def fetch_models(self) -> list[ModelInfo]:
        return list(KNOWN_MODELS)

    def send_message(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        *,
        system_prompt: str | None = None,
        attachments: Sequence[AttachmentPayload] = (),
        options: RequestOptions | None = None,
    ) -> BaseStreamIterator:
        if not self._credential:
            return self._failed(InvalidAPIKeyError())
        resolved_model = self._resolve_model(model)
        if resolved_model is None:
            return self._failed(ModelNotFoundError(model or ""))

        options = options or RequestOptions()
        try:
            body = build_anthropic_request(
                resolve_messages(messages, attachments),
                resolved_model,
                system_prompt=system_prompt,
                options=options,
                stream=options.stream,
            ).to_bytes()
        except ValidationError as exc:
            LOGGER.debug("request encoding failed: %s", exc.error_count())
            return self._failed(InvalidResponseError("request could not be encoded"))

        request = PreparedRequest(
            "POST",
            self._endpoint(),
            headers=self._headers(),
            body=body,
            model=resolved_model,
        )
        secrets = self._http.secrets
        if options.stream:
            return self._stream(request, AnthropicStreamNormalizer(secrets=secrets), StreamingFormat.SSE)
        return self._stream(request, AnthropicCompletionNormalizer(secrets=secrets), StreamingFormat.NONE)

    async def validate_credentials(self) -> bool:
        if not self._credential:
            return False
        payload = build_anthropic_request(
            [ChatMessage("user", "Hi")],
            VALIDATION_MODEL,
            options=RequestOptions(max_tokens=1, stream=False),
            stream=False,
        )
        request = PreparedRequest("POST", self._endpoint(), headers=self._headers(), body=payload.to_bytes())
        return await self._check_credential(request)

    def _endpoint(self) -> str:
        return self.config.endpoint_url or "https://api.anthropic.com/v1/messages"

    def _headers(self) -> dict[str, str]:
        return build_headers(
            self.config.custom_headers,
            {
                "x-api-key": self._credential or "",
                "anthropic-version": API_VERSION,
                "content-type": "application/json",
            },
        )


__all__ = [
    "API_VERSION",
    "AnthropicAdapter",
    "AnthropicCompletionNormalizer",
    "AnthropicRequest",
    "AnthropicStreamNormalizer",
    "KNOWN_MODELS",
    "build_anthropic_request",
]
