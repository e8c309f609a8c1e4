"""Adapter interface shared by provider implementations."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Sequence

import httpx

from ...config import TransportSettings
from ...io.schema import AuthMethod, ModelInfo, ProviderConfigSnapshot, StreamingFormat
from ...transport.http import HTTPClient, OpenResponse, PreparedRequest, map_transport_error
from ...transport.ndjson import iter_ndjson_lines
from ...transport.sse import iter_sse_frames
from ..errors import ProviderError, is_authorization_failure
from ..message import AttachmentPayload, ChatMessage, MessageRole, RequestOptions
from .stream import BaseStreamIterator, FailedStreamIterator, RawChunk, StreamHandle, StreamNormalizer


LOGGER = logging.getLogger(__name__)


class InFlightSlot:
    """Lock-guarded holder for the handle of the adapter's in-flight stream."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handle: StreamHandle | None = None

    def replace(self, handle: StreamHandle) -> StreamHandle | None:
        """Track ``handle``, returning whatever it displaced."""

        with self._lock:
            previous, self._handle = self._handle, handle
        return previous

    def take(self) -> StreamHandle | None:
        with self._lock:
            handle, self._handle = self._handle, None
        return handle

    def release(self, handle: StreamHandle) -> None:
        """Clear the slot only if it still tracks ``handle``."""

        with self._lock:
            if self._handle is handle:
                self._handle = None

    @property
    def current(self) -> StreamHandle | None:
        with self._lock:
            return self._handle


class ProviderAdapter(ABC):
    """Uniform capability interface over one vendor's wire protocol.

    ``send_message`` never raises: every failure, including a missing
    credential or an unreachable host, is delivered as the terminal
    :class:`~chatrelay.core.adapters.stream.ErrorEvent` of the returned
    stream. The HTTP request is opened lazily on first iteration.
    """

    def __init__(
        self,
        config: ProviderConfigSnapshot,
        credential: str | None = None,
        *,
        settings: TransportSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._credential = (credential or "").strip() or None
        self._http = HTTPClient(
            client,
            settings=settings,
            secrets=(self._credential,),
            oauth=config.auth_method is AuthMethod.OAUTH,
        )
        self._slot = InFlightSlot()

    @property
    def in_flight(self) -> StreamHandle | None:
        return self._slot.current

    @abstractmethod
    async def fetch_models(self) -> list[ModelInfo]:
        """Return the models this provider offers."""

    @abstractmethod
    def send_message(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        *,
        system_prompt: str | None = None,
        attachments: Sequence[AttachmentPayload] = (),
        options: RequestOptions | None = None,
    ) -> BaseStreamIterator:
        """Return a lazy stream of canonical events for one request."""

    @abstractmethod
    async def validate_credentials(self) -> bool:
        """Check the credential against the vendor; ``False`` only when the credential is rejected."""

    def cancel(self) -> None:
        """Cancel the in-flight stream, if any. Safe to call repeatedly."""

        handle = self._slot.take()
        if handle is not None:
            LOGGER.debug("cancelling in-flight stream adapter=%s", type(self).__name__)
            handle.cancel()

    def _resolve_model(self, model: str | None) -> str | None:
        resolved = (model or "").strip() or (self.config.default_model_id or "").strip()
        return resolved or None

    def _begin(self) -> StreamHandle:
        handle = StreamHandle()
        previous = self._slot.replace(handle)
        if previous is not None:
            LOGGER.debug("new request supersedes in-flight stream")
            previous.cancel()
        return handle

    def _failed(self, error: ProviderError) -> BaseStreamIterator:
        LOGGER.error("request rejected before sending kind=%s", error.kind.value)
        return FailedStreamIterator(error, handle=self._begin(), on_release=self._slot.release)

    def _stream(
        self,
        request: PreparedRequest,
        normalizer: StreamNormalizer,
        framing: StreamingFormat,
    ) -> BaseStreamIterator:
        return HTTPEventStream(
            self._http,
            request,
            normalizer,
            framing=framing,
            handle=self._begin(),
            on_release=self._slot.release,
        )

    async def _check_credential(self, request: PreparedRequest) -> bool:
        """Send a validation request and fold authorization failures into ``False``."""

        try:
            await self._http.fetch(request, timeout=self._http.settings.validation_timeout)
        except ProviderError as exc:
            if is_authorization_failure(exc):
                LOGGER.info("credential rejected adapter=%s", type(self).__name__)
                return False
            raise
        return True


class HTTPEventStream(BaseStreamIterator):
    """Stream iterator sourcing decoded units from a lazily opened HTTP response."""

    def __init__(
        self,
        http: HTTPClient,
        request: PreparedRequest,
        normalizer: StreamNormalizer,
        *,
        framing: StreamingFormat,
        handle: StreamHandle | None = None,
        on_release: Callable[[StreamHandle], None] | None = None,
    ) -> None:
        super().__init__(normalizer, handle=handle, on_release=on_release)
        self._http = http
        self._request = request
        self._framing = framing
        self._response: OpenResponse | None = None
        self._units: AsyncIterator[RawChunk] | None = None

    async def _get_next_chunk(self) -> RawChunk:
        if self._units is None:
            self._response = await self._http.open(self._request)
            self._units = self._iter_units(self._response)
        try:
            return await self._units.__anext__()
        except httpx.HTTPError as exc:
            raise map_transport_error(exc, secrets=self._http.secrets) from exc

    async def _iter_units(self, response: OpenResponse) -> AsyncIterator[RawChunk]:
        max_line_bytes = self._http.settings.max_line_bytes
        if self._framing is StreamingFormat.SSE:
            async for frame in iter_sse_frames(response.aiter_bytes(), max_line_bytes=max_line_bytes):
                yield RawChunk(data=frame.data, event=frame.event)
        elif self._framing is StreamingFormat.NDJSON:
            async for line in iter_ndjson_lines(response.aiter_bytes(), max_line_bytes=max_line_bytes):
                yield RawChunk(data=line)
        else:
            body = await response.aread()
            yield RawChunk(data=body.decode("utf-8", errors="replace"))

    async def _on_close(self) -> None:
        units, self._units = self._units, None
        response, self._response = self._response, None
        try:
            if units is not None:
                closer = getattr(units, "aclose", None)
                if closer is not None:
                    await closer()
        finally:
            if response is not None:
                await response.aclose()


def resolve_messages(
    messages: Sequence[ChatMessage],
    attachments: Sequence[AttachmentPayload],
) -> list[ChatMessage]:
    """Attach loose ``attachments`` to the last user message.

    Callers may pass images alongside the conversation rather than on a
    message; they belong to the turn being sent.
    """

    resolved = list(messages)
    if not attachments:
        return resolved
    for index in range(len(resolved) - 1, -1, -1):
        if resolved[index].role is MessageRole.USER:
            resolved[index] = resolved[index].with_attachments(attachments)
            return resolved
    LOGGER.warning("dropping %s attachment(s): no user message to carry them", len(attachments))
    return resolved


__all__ = [
    "HTTPEventStream",
    "InFlightSlot",
    "ProviderAdapter",
    "resolve_messages",
]
