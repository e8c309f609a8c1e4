"""Configurable adapter for arbitrary Anthropic- or OpenAI-compatible endpoints."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import List

from pydantic import ValidationError

from ...io.schema import APIFormat, AuthMethod, ModelInfo, StreamingFormat
from ...transport.http import PreparedRequest
from ..errors import InvalidAPIKeyError, InvalidResponseError, ModelNotFoundError
from ..message import AttachmentPayload, ChatMessage, RequestOptions
from .anthropic import (
    API_VERSION,
    VALIDATION_MODEL as ANTHROPIC_VALIDATION_MODEL,
    AnthropicCompletionNormalizer,
    AnthropicStreamNormalizer,
    build_anthropic_request,
)
from .base import ProviderAdapter, resolve_messages
from .openai import OpenAICompletionNormalizer, OpenAIStreamNormalizer, build_openai_request
from .stream import BaseStreamIterator, Done, RawChunk, StreamEvent, StreamNormalizer, is_terminal
from .utils import build_headers


LOGGER = logging.getLogger(__name__)

OPENAI_VALIDATION_MODEL = "gpt-3.5-turbo"


class _TruncationTolerantNormalizer(StreamNormalizer):
    """Treat a stream that simply stops as complete."""

    def __init__(self, inner: StreamNormalizer) -> None:
        self._inner = inner

    async def normalize_chunk(self, chunk: RawChunk) -> List[StreamEvent]:
        return await self._inner.normalize_chunk(chunk)

    async def finish(self) -> List[StreamEvent]:
        events = list(await self._inner.finish())
        if not any(is_terminal(event) for event in events):
            LOGGER.warning("custom stream closed without a terminal unit; treating as complete")
            events.append(Done())
        return events


class CustomAdapter(ProviderAdapter):
    """Drive a user-configured endpoint using one of the known wire families.

    The body shape and payload decoding follow ``config.api_format``; the
    response framing follows ``config.streaming_format``. ``none`` framing, or
    ``RequestOptions(stream=False)``, issues one request and synthesizes the
    events from the complete body.
    """

    async def fetch_models(self) -> list[ModelInfo]:
        if self.config.available_models:
            return list(self.config.available_models)
        return [
            ModelInfo(
                id="default",
                display_name="Default Model",
                supports_streaming=self.config.streaming_format.supports_streaming,
            )
        ]

    def send_message(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        *,
        system_prompt: str | None = None,
        attachments: Sequence[AttachmentPayload] = (),
        options: RequestOptions | None = None,
    ) -> BaseStreamIterator:
        url = self.config.endpoint_url
        if url is None:
            return self._failed(InvalidResponseError("Invalid URL"))
        if self.config.auth_method.requires_credential and not self._credential:
            return self._failed(InvalidAPIKeyError())
        resolved_model = self._resolve_model(model)
        if resolved_model is None:
            return self._failed(ModelNotFoundError(model or ""))

        options = options or RequestOptions()
        streaming = options.stream and self.config.streaming_format.supports_streaming
        try:
            body = self._build_body(
                resolve_messages(messages, attachments),
                resolved_model,
                system_prompt=system_prompt,
                options=options,
                stream=streaming,
            )
        except ValidationError as exc:
            LOGGER.debug("request encoding failed: %s", exc.error_count())
            return self._failed(InvalidResponseError("request could not be encoded"))

        request = PreparedRequest("POST", url, headers=self._headers(), body=body, model=resolved_model)
        if not streaming:
            return self._stream(request, self._completion_normalizer(), StreamingFormat.NONE)
        normalizer = _TruncationTolerantNormalizer(self._stream_normalizer())
        return self._stream(request, normalizer, self.config.streaming_format)

    async def validate_credentials(self) -> bool:
        if not self.config.auth_method.requires_credential:
            return True
        if not self._credential:
            return False
        url = self.config.endpoint_url
        if url is None:
            raise InvalidResponseError("Invalid URL")

        default_model = self.config.default_model
        if default_model is not None:
            model = default_model.id
        elif self.config.api_format is APIFormat.ANTHROPIC:
            model = ANTHROPIC_VALIDATION_MODEL
        else:
            model = OPENAI_VALIDATION_MODEL
        body = self._build_body(
            [ChatMessage("user", "Hi")],
            model,
            options=RequestOptions(max_tokens=1, stream=False),
            stream=False,
        )
        return await self._check_credential(PreparedRequest("POST", url, headers=self._headers(), body=body))

    def _build_body(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        *,
        system_prompt: str | None = None,
        options: RequestOptions,
        stream: bool,
    ) -> bytes:
        if self.config.api_format is APIFormat.ANTHROPIC:
            return build_anthropic_request(
                messages, model, system_prompt=system_prompt, options=options, stream=stream
            ).to_bytes()
        return build_openai_request(
            messages, model, system_prompt=system_prompt, options=options, stream=stream
        ).to_bytes()

    def _stream_normalizer(self) -> StreamNormalizer:
        secrets = self._http.secrets
        if self.config.api_format is APIFormat.ANTHROPIC:
            return AnthropicStreamNormalizer(secrets=secrets)
        return OpenAIStreamNormalizer(secrets=secrets)

    def _completion_normalizer(self) -> StreamNormalizer:
        secrets = self._http.secrets
        if self.config.api_format is APIFormat.ANTHROPIC:
            return AnthropicCompletionNormalizer(secrets=secrets)
        return OpenAICompletionNormalizer(secrets=secrets)

    def _headers(self) -> dict[str, str]:
        required = {"content-type": "application/json"}
        if self.config.auth_method is not AuthMethod.NONE and self._credential:
            required[self.config.effective_key_header] = self.config.effective_key_prefix + self._credential
        if self.config.api_format is APIFormat.ANTHROPIC:
            required["anthropic-version"] = API_VERSION
        return build_headers(self.config.custom_headers, required)


__all__ = ["CustomAdapter"]
