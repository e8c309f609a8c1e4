"""Canonical streaming event schema and base iterator primitives."""

from __future__ import annotations

import abc
import asyncio
import inspect
import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import AsyncIterator, Deque, List, Optional, Protocol, Union

from ..errors import InvalidResponseError, ProviderError, RequestCancelledError


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TextDelta:
    """Incremental assistant text."""

    text: str


@dataclass(frozen=True, slots=True)
class ModelUsed:
    """Model identifier reported by the vendor for this response."""

    model: str


@dataclass(frozen=True, slots=True)
class InputTokenCount:
    count: int


@dataclass(frozen=True, slots=True)
class OutputTokenCount:
    count: int


@dataclass(frozen=True, slots=True)
class Done:
    """Successful terminal event."""


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """Failed terminal event carrying the provider error."""

    error: ProviderError


StreamEvent = Union[TextDelta, ModelUsed, InputTokenCount, OutputTokenCount, Done, ErrorEvent]

TERMINAL_EVENTS = (Done, ErrorEvent)


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


@dataclass(frozen=True, slots=True)
class RawChunk:
    """One decoded unit of a vendor response: an SSE frame, NDJSON line, or whole body."""

    data: str
    event: str | None = None


class StreamNormalizer(Protocol):
    async def normalize_chunk(self, chunk: RawChunk) -> List[StreamEvent]:
        """Map a decoded vendor unit into canonical stream events."""

    async def finish(self) -> List[StreamEvent]:
        """Return events owed once the vendor stream ends without a terminal unit."""


class StreamHandle:
    """Cancellation flag shared between a stream and its adapter.

    ``cancel`` may be called from any thread. Besides setting the flag it wakes
    every stream currently waiting on a read, on that stream's own event loop.
    """

    __slots__ = ("_cancelled", "_lock", "_waiters")

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]] = []

    def cancel(self) -> None:
        with self._lock:
            self._cancelled.set()
            waiters, self._waiters = self._waiters, []
        for loop, waiter in waiters:
            try:
                loop.call_soon_threadsafe(_wake, waiter)
            except RuntimeError:
                LOGGER.debug("event loop closed before cancellation was delivered")

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def waiter(self, loop: asyncio.AbstractEventLoop) -> asyncio.Future[None]:
        """Return a future on ``loop`` that resolves once the handle is cancelled."""

        future: asyncio.Future[None] = loop.create_future()
        with self._lock:
            if self._cancelled.is_set():
                future.set_result(None)
            else:
                self._waiters.append((loop, future))
        return future

    def discard(self, waiter: asyncio.Future[None]) -> None:
        with self._lock:
            self._waiters = [entry for entry in self._waiters if entry[1] is not waiter]


def _wake(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


async def _settle(task: asyncio.Future[RawChunk]) -> None:
    task.cancel()
    await asyncio.wait((task,))
    if not task.cancelled():
        task.exception()


class BaseStreamIterator(AsyncIterator[StreamEvent], metaclass=abc.ABCMeta):
    """Shared async iterator driving provider-specific streaming adapters.

    Subclasses source raw units by implementing :meth:`_get_next_chunk`. Each
    unit is normalized into zero or more :class:`StreamEvent` instances via a
    :class:`StreamNormalizer`. The iterator guarantees the consumer sees
    exactly one terminal event (:class:`Done` or :class:`ErrorEvent`) and
    nothing after it:

    * a :class:`ProviderError` raised while sourcing a unit becomes the
      terminal :class:`ErrorEvent`;
    * a cancelled :class:`StreamHandle` is observed before each unit and ends
      the stream with :class:`RequestCancelledError`;
    * exhausting the source without a terminal asks the normalizer to
      :meth:`~StreamNormalizer.finish`; if it still owes nothing terminal the
      stream ends with :class:`InvalidResponseError`.

    Closing the iterator before its terminal event cancels the handle. The
    ``on_release`` callback runs exactly once when the iterator closes.
    """

    def __init__(
        self,
        normalizer: StreamNormalizer,
        *,
        handle: StreamHandle | None = None,
        on_release: Callable[[StreamHandle], None] | None = None,
    ) -> None:
        self._normalizer = normalizer
        self._buffer: Deque[StreamEvent] = deque()
        self._closed = False
        self._finalized = False
        self._close_lock = asyncio.Lock()
        self._on_release = on_release
        self.handle = handle or StreamHandle()

    def __aiter__(self) -> BaseStreamIterator:
        return self

    async def __anext__(self) -> StreamEvent:
        while True:
            buffered = self._pop_buffered_event()
            if buffered is not None:
                return await self._finalize_if_needed(buffered)

            if self._closed:
                raise StopAsyncIteration

            if self._finalized:
                await self.close()
                raise StopAsyncIteration

            try:
                await self._advance()
            except asyncio.CancelledError:
                await self.close()
                raise

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Release provider resources and prevent additional iteration."""

        async with self._close_lock:
            if self._closed:
                return

            self._closed = True
            if not self._finalized:
                self.handle.cancel()
            self._buffer.clear()
            try:
                await self._on_close()
            finally:
                if self._on_release is not None:
                    self._on_release(self.handle)

    async def aclose(self) -> None:
        await self.close()

    async def _advance(self) -> None:
        if self.handle.cancelled:
            self._emit([ErrorEvent(RequestCancelledError())])
            return

        try:
            chunk = await self._read_chunk()
            if chunk is None or self.handle.cancelled:
                events: List[StreamEvent] = [ErrorEvent(RequestCancelledError())]
            else:
                events = await self._normalizer.normalize_chunk(chunk)
        except StopAsyncIteration:
            events = await self._finish()
        except ProviderError as exc:
            LOGGER.debug("stream failed kind=%s", exc.kind.value)
            events = [ErrorEvent(exc)]
        except Exception as exc:
            LOGGER.error("stream failed unexpectedly error=%s", type(exc).__name__)
            events = [ErrorEvent(InvalidResponseError(f"unexpected {type(exc).__name__} while streaming"))]
        self._emit(events)

    async def _read_chunk(self) -> RawChunk | None:
        """Source the next unit, or return ``None`` when the handle is cancelled first.

        The read runs as its own task so a cancellation from any thread
        interrupts a read that is waiting on the vendor.
        """

        read = asyncio.ensure_future(self._get_next_chunk())
        woken = self.handle.waiter(asyncio.get_running_loop())
        try:
            await asyncio.wait((read, woken), return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await _settle(read)
            raise
        finally:
            self.handle.discard(woken)

        if read.done():
            return read.result()
        await _settle(read)
        return None

    async def _finish(self) -> List[StreamEvent]:
        events = list(await self._normalizer.finish())
        if not any(is_terminal(event) for event in events):
            LOGGER.warning("stream ended without a terminal event")
            events.append(
                ErrorEvent(InvalidResponseError("stream ended without a terminal event"))
            )
        return events

    def _emit(self, events: List[StreamEvent]) -> None:
        for index, event in enumerate(events):
            self._buffer.append(event)
            if is_terminal(event):
                self._finalized = True
                dropped = len(events) - index - 1
                if dropped:
                    LOGGER.debug("dropping %s event(s) after terminal", dropped)
                return

    async def _finalize_if_needed(self, event: StreamEvent) -> StreamEvent:
        if is_terminal(event) and not self._buffer:
            await self.close()
        return event

    def _pop_buffered_event(self) -> StreamEvent | None:
        if not self._buffer:
            return None
        return self._buffer.popleft()

    @abc.abstractmethod
    async def _get_next_chunk(self) -> RawChunk:
        """Retrieve the next decoded unit, raising ``StopAsyncIteration`` at the end."""

    async def _on_close(self) -> None:
        """Allow subclasses to dispose provider resources when closing."""


# Public name for the stream returned by ``ProviderAdapter.send_message``.
ProviderStream = BaseStreamIterator


class ReplayStreamIterator(BaseStreamIterator):
    """Deterministic in-memory stream replaying pre-decoded units."""

    def __init__(
        self,
        chunks: List[RawChunk],
        normalizer: StreamNormalizer,
        *,
        handle: StreamHandle | None = None,
        on_release: Callable[[StreamHandle], None] | None = None,
    ) -> None:
        self._chunks: Deque[RawChunk] = deque(chunks)
        super().__init__(normalizer, handle=handle, on_release=on_release)

    async def _get_next_chunk(self) -> RawChunk:
        await asyncio.sleep(0)
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.popleft()


class FailedStreamIterator(BaseStreamIterator):
    """Stream that immediately terminates with a pre-computed error."""

    def __init__(
        self,
        error: ProviderError,
        *,
        handle: StreamHandle | None = None,
        on_release: Callable[[StreamHandle], None] | None = None,
    ) -> None:
        super().__init__(_NullNormalizer(), handle=handle, on_release=on_release)
        self._error = error

    async def _get_next_chunk(self) -> RawChunk:
        raise self._error


class _NullNormalizer:
    async def normalize_chunk(self, chunk: RawChunk) -> List[StreamEvent]:
        return []

    async def finish(self) -> List[StreamEvent]:
        return []


async def replay_stream(iterator: AsyncIterator[StreamEvent]) -> List[StreamEvent]:
    """Collect all events emitted by a stream iterator."""

    events: List[StreamEvent] = []
    try:
        async for event in iterator:
            events.append(event)
    finally:
        closer = getattr(iterator, "aclose", None) or getattr(iterator, "close", None)
        if closer is not None:
            result = closer()
            if inspect.isawaitable(result):
                await result
    return events


async def collect_text(events: AsyncIterator[StreamEvent]) -> str:
    """Concatenate TextDelta fragments, raising the terminal error if any."""

    fragments: List[str] = []
    failure: Optional[ProviderError] = None
    for event in await replay_stream(events):
        if isinstance(event, TextDelta):
            fragments.append(event.text)
        elif isinstance(event, ErrorEvent):
            failure = event.error
    if failure is not None:
        raise failure
    return "".join(fragments)


__all__ = [
    "BaseStreamIterator",
    "Done",
    "ErrorEvent",
    "FailedStreamIterator",
    "InputTokenCount",
    "ModelUsed",
    "OutputTokenCount",
    "ProviderStream",
    "RawChunk",
    "ReplayStreamIterator",
    "StreamEvent",
    "StreamHandle",
    "StreamNormalizer",
    "TERMINAL_EVENTS",
    "TextDelta",
    "collect_text",
    "is_terminal",
    "replay_stream",
]
