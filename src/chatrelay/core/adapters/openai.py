"""OpenAI Chat Completions adapter (sentinel-terminated SSE).

The same adapter serves every OpenAI-compatible vendor; only the base URL,
request path and credential differ.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from ...io.schema import ModelInfo, ProviderType, StreamingFormat
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
from .utils import as_count, as_mapping, build_headers, humanize_model_id, parse_json_object


LOGGER = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
CHAT_SUFFIX = "/chat/completions"


class _Wire(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class OpenAITextPart(_Wire):
    type: Literal["text"] = "text"
    text: str


class OpenAIImageURL(_Wire):
    url: str


class OpenAIImagePart(_Wire):
    type: Literal["image_url"] = "image_url"
    image_url: OpenAIImageURL


class OpenAIMessage(_Wire):
    role: Literal["system", "user", "assistant"]
    content: Union[str, List[Union[OpenAITextPart, OpenAIImagePart]]]


class OpenAIStreamOptions(_Wire):
    include_usage: bool = True


class OpenAIRequest(_Wire):
    model: str
    messages: List[OpenAIMessage]
    stream: bool = True
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    stream_options: Optional[OpenAIStreamOptions] = None

    def to_bytes(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode("utf-8")


def build_openai_request(
    messages: Sequence[ChatMessage],
    model: str,
    *,
    system_prompt: str | None = None,
    options: RequestOptions | None = None,
    stream: bool = True,
    include_usage: bool = False,
) -> OpenAIRequest:
    """Translate canonical messages into a Chat Completions body.

    Content is a plain string unless the message carries attachments, in which
    case it becomes a text part followed by data-URL parts for the images.
    Other attachment types are not forwarded.
    """

    options = options or RequestOptions()
    wire_messages: list[OpenAIMessage] = []
    if system_prompt:
        wire_messages.append(OpenAIMessage(role="system", content=system_prompt))
    for message in messages:
        if not message.attachments:
            wire_messages.append(OpenAIMessage(role=message.role.value, content=message.content))
            continue
        parts: list[Union[OpenAITextPart, OpenAIImagePart]] = [OpenAITextPart(text=message.content)]
        parts.extend(OpenAIImagePart(image_url=OpenAIImageURL(url=image.data_url())) for image in message.images)
        wire_messages.append(OpenAIMessage(role=message.role.value, content=parts))

    return OpenAIRequest(
        model=model,
        messages=wire_messages,
        stream=stream,
        max_tokens=options.max_tokens,
        temperature=options.temperature,
        top_p=options.top_p,
        stream_options=OpenAIStreamOptions() if stream and include_usage else None,
    )


def _vendor_error(error: Any, secrets: Sequence[str | None]) -> VendorError:
    if isinstance(error, Mapping):
        message = error.get("message")
        code = error.get("code")
    else:
        message, code = error, None
    if not isinstance(message, str) or not message:
        message = "Unknown error"
    if isinstance(code, bool) or not isinstance(code, int):
        code = None
    return VendorError(message, code, secrets=secrets)


def _usage_events(usage: Mapping[str, Any]) -> List[StreamEvent]:
    events: List[StreamEvent] = []
    prompt_tokens = as_count(usage.get("prompt_tokens"))
    if prompt_tokens is not None:
        events.append(InputTokenCount(prompt_tokens))
    completion_tokens = as_count(usage.get("completion_tokens"))
    if completion_tokens is not None:
        events.append(OutputTokenCount(completion_tokens))
    return events


class OpenAIStreamNormalizer(StreamNormalizer):
    """Normalize Chat Completions chunks; ``[DONE]`` ends the stream."""

    def __init__(self, *, secrets: Sequence[str | None] = ()) -> None:
        self._secrets = tuple(secrets)
        self._model: str | None = None

    async def normalize_chunk(self, chunk: RawChunk) -> List[StreamEvent]:
        data = chunk.data.strip()
        if data == DONE_SENTINEL:
            return [Done()]

        payload = parse_json_object(data, source="openai")
        if payload is None:
            return []

        error = payload.get("error")
        if error:
            return [ErrorEvent(_vendor_error(error, self._secrets))]

        events: List[StreamEvent] = []
        model = payload.get("model")
        if isinstance(model, str) and model and model != self._model:
            self._model = model
            events.append(ModelUsed(model))

        choices = payload.get("choices")
        if isinstance(choices, list) and choices:
            delta = as_mapping(as_mapping(choices[0]).get("delta"))
            content = delta.get("content")
            if isinstance(content, str) and content:
                events.append(TextDelta(content))

        events.extend(_usage_events(as_mapping(payload.get("usage"))))
        return events

    async def finish(self) -> List[StreamEvent]:
        LOGGER.warning("stream closed without %s; treating as complete", DONE_SENTINEL)
        return [Done()]


class OpenAICompletionNormalizer(StreamNormalizer):
    """Synthesize canonical events from a non-streaming completion body."""

    def __init__(self, *, secrets: Sequence[str | None] = ()) -> None:
        self._secrets = tuple(secrets)

    async def normalize_chunk(self, chunk: RawChunk) -> List[StreamEvent]:
        payload = parse_json_object(chunk.data, source="openai")
        if payload is None:
            return [ErrorEvent(InvalidResponseError("response body is not a JSON object"))]

        error = payload.get("error")
        if error:
            return [ErrorEvent(_vendor_error(error, self._secrets))]

        events: List[StreamEvent] = []
        model = payload.get("model")
        if isinstance(model, str) and model:
            events.append(ModelUsed(model))
        choices = payload.get("choices")
        if isinstance(choices, list) and choices:
            message = as_mapping(as_mapping(choices[0]).get("message"))
            content = message.get("content")
            if isinstance(content, str) and content:
                events.append(TextDelta(content))
        events.extend(_usage_events(as_mapping(payload.get("usage"))))
        events.append(Done())
        return events

    async def finish(self) -> List[StreamEvent]:
        return []


@dataclass(frozen=True, slots=True)
class _ModelTraits:
    display_name: str
    context_window: int | None
    supports_vision: bool
    input_cost: float | None
    output_cost: float | None


# Keys are matched as substrings of the model id; the longest match wins.
MODEL_TRAITS: Mapping[str, _ModelTraits] = {
    "gpt-4o-mini": _ModelTraits("GPT-4o Mini", 128_000, True, 0.15, 0.60),
    "gpt-4o": _ModelTraits("GPT-4o", 128_000, True, 2.50, 10.0),
    "gpt-4-turbo": _ModelTraits("GPT-4 Turbo", 128_000, True, 10.0, 30.0),
    "gpt-4-vision": _ModelTraits("GPT-4 Vision", 128_000, True, 10.0, 30.0),
    "gpt-4-32k": _ModelTraits("GPT-4 32K", 32_768, False, 60.0, 120.0),
    "gpt-4": _ModelTraits("GPT-4", 8_192, False, 30.0, 60.0),
    "gpt-3.5-turbo-16k": _ModelTraits("GPT-3.5 Turbo 16K", 16_384, False, 3.0, 4.0),
    "gpt-3.5-turbo": _ModelTraits("GPT-3.5 Turbo", 4_096, False, 0.50, 1.50),
    "o1-preview": _ModelTraits("o1 Preview", 128_000, False, 15.0, 60.0),
    "o1-mini": _ModelTraits("o1 Mini", 128_000, False, 3.0, 12.0),
    "o1": _ModelTraits("o1", 128_000, False, 15.0, 60.0),
}

_CHAT_FAMILIES = ("gpt", "chat")
_REASONING_PREFIXES = ("o1", "o3", "o4")


def is_chat_model(model_id: str) -> bool:
    lowered = model_id.lower()
    return any(family in lowered for family in _CHAT_FAMILIES) or lowered.startswith(_REASONING_PREFIXES)


def describe_model(model_id: str) -> ModelInfo:
    """Build catalog metadata for ``model_id`` from the traits table."""

    lowered = model_id.lower()
    matches = [key for key in MODEL_TRAITS if key in lowered]
    if not matches:
        return ModelInfo(id=model_id, display_name=humanize_model_id(model_id))

    traits = MODEL_TRAITS[max(matches, key=len)]
    exact = MODEL_TRAITS.get(lowered)
    return ModelInfo(
        id=model_id,
        display_name=exact.display_name if exact is not None else humanize_model_id(model_id),
        context_window=traits.context_window,
        supports_vision=traits.supports_vision,
        input_token_cost=traits.input_cost,
        output_token_cost=traits.output_cost,
    )


class OpenAIAdapter(ProviderAdapter):
    """Talk to OpenAI or any vendor exposing the Chat Completions API.

    Vendors with their own catalog or header conventions subclass this and
    override the ``_describe_entry``/``_default_headers`` hooks.
    """

    async def fetch_models(self) -> list[ModelInfo]:
        if not self._credential:
            raise InvalidAPIKeyError()

        body = await self._http.fetch(PreparedRequest("GET", self._models_url(), headers=self._headers()))
        try:
            payload = json.loads(body)
        except (ValueError, RecursionError) as exc:
            msg = "model list is not valid JSON"
            raise InvalidResponseError(msg) from exc

        entries = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            msg = "model list is missing 'data'"
            raise InvalidResponseError(msg)

        models = [
            model
            for model in (self._describe_entry(entry) for entry in entries if isinstance(entry, dict))
            if model is not None
        ]
        models.sort(key=self._sort_key)
        LOGGER.debug("fetched %s chat model(s)", len(models))
        return models

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
            body = build_openai_request(
                resolve_messages(messages, attachments),
                resolved_model,
                system_prompt=system_prompt,
                options=options,
                stream=options.stream,
                include_usage=self.config.provider_type is ProviderType.OPENAI,
            ).to_bytes()
        except ValidationError as exc:
            LOGGER.debug("request encoding failed: %s", exc.error_count())
            return self._failed(InvalidResponseError("request could not be encoded"))

        request = PreparedRequest(
            "POST",
            self._chat_url(),
            headers=self._headers(),
            body=body,
            model=resolved_model,
        )
        secrets = self._http.secrets
        if options.stream:
            return self._stream(request, OpenAIStreamNormalizer(secrets=secrets), StreamingFormat.SSE)
        return self._stream(request, OpenAICompletionNormalizer(secrets=secrets), StreamingFormat.NONE)

    async def validate_credentials(self) -> bool:
        if not self._credential:
            return False
        return await self._check_credential(PreparedRequest("GET", self._models_url(), headers=self._headers()))

    def _chat_url(self) -> str:
        return self.config.endpoint_url or "https://api.openai.com/v1/chat/completions"

    def _models_url(self) -> str:
        chat_url = self._chat_url()
        if chat_url.endswith(CHAT_SUFFIX):
            return chat_url[: -len(CHAT_SUFFIX)] + "/models"
        base = self.config.effective_base_url or "https://api.openai.com"
        return base + "/v1/models"

    def _headers(self) -> dict[str, str]:
        return build_headers(
            build_headers(self._default_headers(), self.config.custom_headers),
            {
                "Authorization": f"Bearer {self._credential or ''}",
                "content-type": "application/json",
            },
        )

    def _default_headers(self) -> dict[str, str]:
        """Vendor headers that configured ``custom_headers`` may override."""

        return {}

    def _describe_entry(self, entry: Mapping[str, Any]) -> ModelInfo | None:
        """Map one ``/models`` entry to catalog metadata; ``None`` drops it."""

        model_id = entry.get("id")
        if not isinstance(model_id, str) or not is_chat_model(model_id):
            return None
        return describe_model(model_id)

    def _sort_key(self, model: ModelInfo) -> Any:
        return model.display_name


__all__ = [
    "DONE_SENTINEL",
    "MODEL_TRAITS",
    "OpenAIAdapter",
    "OpenAICompletionNormalizer",
    "OpenAIRequest",
    "OpenAIStreamNormalizer",
    "build_openai_request",
    "describe_model",
    "is_chat_model",
]
