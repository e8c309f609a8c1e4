"""Ollama chat adapter (newline-delimited JSON streaming)."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from ...io.schema import ModelInfo, StreamingFormat
from ...transport.http import PreparedRequest
from ..errors import InvalidResponseError, ModelNotFoundError, ProviderError, VendorError
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

DEFAULT_BASE_URL = "http://localhost:11434"
TAGS_PATH = "/api/tags"


class _Wire(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class OllamaMessage(_Wire):
    role: Literal["system", "user", "assistant"]
    content: str
    images: Optional[List[str]] = None


class OllamaOptions(_Wire):
    num_predict: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None


class OllamaRequest(_Wire):
    model: str
    messages: List[OllamaMessage]
    stream: bool = True
    options: Optional[OllamaOptions] = None

    def to_bytes(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode("utf-8")


def build_ollama_request(
    messages: Sequence[ChatMessage],
    model: str,
    *,
    system_prompt: str | None = None,
    options: RequestOptions | None = None,
    stream: bool = True,
) -> OllamaRequest:
    options = options or RequestOptions()
    wire_messages: list[OllamaMessage] = []
    if system_prompt:
        wire_messages.append(OllamaMessage(role="system", content=system_prompt))
    for message in messages:
        images = [image.base64() for image in message.images]
        wire_messages.append(
            OllamaMessage(role=message.role.value, content=message.content, images=images or None)
        )

    sampling = None
    if options.max_tokens is not None or options.temperature is not None or options.top_p is not None:
        sampling = OllamaOptions(
            num_predict=options.max_tokens,
            temperature=options.temperature,
            top_p=options.top_p,
        )
    return OllamaRequest(model=model, messages=wire_messages, stream=stream, options=sampling)


class OllamaStreamNormalizer(StreamNormalizer):
    """Normalize ``/api/chat`` lines; a line with ``done: true`` ends the stream."""

    def __init__(self, *, secrets: Sequence[str | None] = ()) -> None:
        self._secrets = tuple(secrets)
        self._model_reported = False

    async def normalize_chunk(self, chunk: RawChunk) -> List[StreamEvent]:
        payload = parse_json_object(chunk.data, source="ndjson")
        if payload is None:
            return []

        error = payload.get("error")
        if isinstance(error, str) and error:
            return [ErrorEvent(VendorError(error, secrets=self._secrets))]

        events: List[StreamEvent] = []
        model = payload.get("model")
        if isinstance(model, str) and model and not self._model_reported:
            self._model_reported = True
            events.append(ModelUsed(model))

        content = as_mapping(payload.get("message")).get("content")
        if isinstance(content, str) and content:
            events.append(TextDelta(content))

        if payload.get("done") is True:
            output_tokens = as_count(payload.get("eval_count"))
            if output_tokens is not None:
                events.append(OutputTokenCount(output_tokens))
            input_tokens = as_count(payload.get("prompt_eval_count"))
            if input_tokens is not None:
                events.append(InputTokenCount(input_tokens))
            events.append(Done())
        return events

    async def finish(self) -> List[StreamEvent]:
        LOGGER.warning("ollama stream closed without a done line; treating as complete")
        return [Done()]


_DISPLAY_NAMES = {
    "llama3.2": "Llama 3.2",
    "llama3.1": "Llama 3.1",
    "llama3": "Llama 3",
    "llama2": "Llama 2",
    "mistral": "Mistral",
    "codellama": "Code Llama",
    "phi3": "Phi-3",
    "gemma2": "Gemma 2",
    "gemma": "Gemma",
    "llava": "LLaVA",
    "mixtral": "Mixtral",
    "qwen2": "Qwen 2",
    "deepseek-coder": "DeepSeek Coder",
}
_VISION_FAMILIES = ("llava", "bakllava", "moondream", "llama3.2-vision", "minicpm-v")
_SIZE_PATTERN = re.compile(r"\d+(?:\.\d+)?b\b", re.IGNORECASE)


def display_name_for(name: str) -> str:
    """``llama3.1:70b`` -> ``Llama 3.1 70B``; unknown names are title-cased."""

    base = name[: -len(":latest")] if name.endswith(":latest") else name
    lowered = base.lower()
    known = _DISPLAY_NAMES.get(lowered)
    if known is not None:
        return known

    prefixes = [key for key in _DISPLAY_NAMES if lowered.startswith(key)]
    if prefixes:
        key = max(prefixes, key=len)
        size = _SIZE_PATTERN.search(lowered[len(key):])
        if size is not None:
            return f"{_DISPLAY_NAMES[key]} {size.group(0).upper()}"
        return _DISPLAY_NAMES[key]
    return humanize_model_id(base)


def supports_vision(name: str) -> bool:
    lowered = name.lower()
    return any(family in lowered for family in _VISION_FAMILIES)


def _local(model_id: str, name: str) -> ModelInfo:
    return ModelInfo(id=model_id, display_name=name, supports_vision=supports_vision(model_id))


DEFAULT_MODELS: tuple[ModelInfo, ...] = (
    _local("llama3.2:latest", "Llama 3.2"),
    _local("llama3.1:latest", "Llama 3.1"),
    _local("mistral:latest", "Mistral"),
    _local("codellama:latest", "Code Llama"),
    _local("phi3:latest", "Phi-3"),
    _local("gemma2:latest", "Gemma 2"),
    _local("llava:latest", "LLaVA"),
    _local("llama3.2-vision:latest", "Llama 3.2 Vision"),
)


class OllamaAdapter(ProviderAdapter):
    """Talk to a local or remote Ollama server. No authentication is sent."""

    async def fetch_models(self) -> list[ModelInfo]:
        try:
            body = await self._http.fetch(PreparedRequest("GET", self._tags_url(), headers=self._headers()))
        except ProviderError as exc:
            LOGGER.warning("model listing failed (%s); using default catalog", exc.kind.value)
            return list(DEFAULT_MODELS)

        try:
            payload = json.loads(body)
        except (ValueError, RecursionError):
            LOGGER.warning("model listing was not JSON; using default catalog")
            return list(DEFAULT_MODELS)

        entries = payload.get("models") if isinstance(payload, dict) else None
        models = [
            ModelInfo(
                id=entry["name"],
                display_name=display_name_for(entry["name"]),
                supports_vision=supports_vision(entry["name"]),
            )
            for entry in entries or ()
            if isinstance(entry, dict) and isinstance(entry.get("name"), str) and entry["name"]
        ]
        if not models:
            LOGGER.info("server reported no models; using default catalog")
            return list(DEFAULT_MODELS)
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
        resolved_model = self._resolve_model(model)
        if resolved_model is None:
            return self._failed(ModelNotFoundError(model or ""))

        options = options or RequestOptions()
        try:
            body = build_ollama_request(
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
            self._chat_url(),
            headers=self._headers(),
            body=body,
            model=resolved_model,
        )
        framing = StreamingFormat.NDJSON if options.stream else StreamingFormat.NONE
        return self._stream(request, OllamaStreamNormalizer(secrets=self._http.secrets), framing)

    async def validate_credentials(self) -> bool:
        """Ollama has no credentials; report whether the server answers."""

        try:
            await self._http.fetch(
                PreparedRequest("GET", self._tags_url(), headers=self._headers()),
                timeout=self._http.settings.validation_timeout,
            )
        except ProviderError as exc:
            LOGGER.warning("ollama server unreachable (%s)", exc.kind.value)
            return False
        return True

    def _base_url(self) -> str:
        return self.config.effective_base_url or DEFAULT_BASE_URL

    def _chat_url(self) -> str:
        return self._base_url() + self.config.effective_api_path

    def _tags_url(self) -> str:
        return self._base_url() + TAGS_PATH

    def _headers(self) -> dict[str, str]:
        return build_headers(self.config.custom_headers, {"content-type": "application/json"})


__all__ = [
    "DEFAULT_MODELS",
    "OllamaAdapter",
    "OllamaRequest",
    "OllamaStreamNormalizer",
    "build_ollama_request",
    "display_name_for",
    "supports_vision",
]
