"""Incremental Server-Sent Events decoder.

The decoder is fed arbitrary byte fragments and yields complete frames. The
output is independent of where fragment boundaries fall, including inside a
multi-byte UTF-8 sequence or between ``\\r`` and ``\\n``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from dataclasses import dataclass, field

from ..core.errors import InvalidResponseError

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_LINE_BYTES = 1024 * 1024


@dataclass(frozen=True, slots=True)
class SSEFrame:
    """A dispatched SSE event."""

    data: str
    event: str | None = None
    id: str | None = None
    retry: int | None = None


@dataclass(slots=True)
class _PendingFrame:
    data: list[str] = field(default_factory=list)
    event: str | None = None
    id: str | None = None
    retry: int | None = None

    @property
    def has_data(self) -> bool:
        return bool(self.data)

    def build(self) -> SSEFrame:
        return SSEFrame(data="\n".join(self.data), event=self.event, id=self.id, retry=self.retry)


class SSEDecoder:
    """Line-oriented SSE parser that buffers partial lines between feeds."""

    def __init__(self, *, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
        if max_line_bytes <= 0:
            msg = "max_line_bytes must be positive"
            raise ValueError(msg)
        self._max_line_bytes = max_line_bytes
        self._buffer = bytearray()
        self._pending = _PendingFrame()
        self._last_event_id: str | None = None

    @property
    def last_event_id(self) -> str | None:
        return self._last_event_id

    def feed(self, chunk: bytes) -> list[SSEFrame]:
        """Consume ``chunk`` and return every frame it completes."""

        self._buffer.extend(chunk)
        frames: list[SSEFrame] = []
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw_line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            frame = self._process_line(raw_line)
            if frame is not None:
                frames.append(frame)

        if len(self._buffer) > self._max_line_bytes:
            size = len(self._buffer)
            self._buffer.clear()
            msg = f"SSE line exceeds {self._max_line_bytes} bytes ({size} buffered)"
            raise InvalidResponseError(msg)
        return frames

    def flush(self) -> list[SSEFrame]:
        """Process any unterminated line and dispatch a pending frame."""

        frames: list[SSEFrame] = []
        if self._buffer:
            raw_line = bytes(self._buffer)
            self._buffer.clear()
            frame = self._process_line(raw_line)
            if frame is not None:
                frames.append(frame)

        if self._pending.has_data:
            frames.append(self._pending.build())
        self._pending = _PendingFrame()
        return frames

    def _process_line(self, raw_line: bytes) -> SSEFrame | None:
        if len(raw_line) > self._max_line_bytes:
            msg = f"SSE line exceeds {self._max_line_bytes} bytes"
            raise InvalidResponseError(msg)

        if raw_line.endswith(b"\r"):
            raw_line = raw_line[:-1]

        try:
            line = raw_line.decode("utf-8")
        except UnicodeDecodeError:
            LOGGER.warning("skipping SSE line with invalid UTF-8 (%s bytes)", len(raw_line))
            return None

        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        name, separator, value = line.partition(":")
        if separator and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._pending.data.append(value)
        elif name == "event":
            self._pending.event = value or None
        elif name == "id":
            if "\0" not in value:
                self._pending.id = value
                self._last_event_id = value
        elif name == "retry":
            if value.isdigit():
                self._pending.retry = int(value)
        return None

    def _dispatch(self) -> SSEFrame | None:
        pending = self._pending
        self._pending = _PendingFrame()
        if not pending.has_data:
            return None
        return pending.build()


async def iter_sse_frames(
    chunks: AsyncIterable[bytes],
    *,
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
) -> AsyncIterator[SSEFrame]:
    """Lazily decode SSE frames from an async byte stream."""

    decoder = SSEDecoder(max_line_bytes=max_line_bytes)
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            yield frame
    for frame in decoder.flush():
        yield frame


def decode_sse(
    chunks: bytes | Iterable[bytes],
    *,
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
) -> list[SSEFrame]:
    """Decode a complete SSE payload supplied whole or as fragments."""

    if isinstance(chunks, (bytes, bytearray)):
        chunks = [bytes(chunks)]
    decoder = SSEDecoder(max_line_bytes=max_line_bytes)
    frames: list[SSEFrame] = []
    for chunk in chunks:
        frames.extend(decoder.feed(chunk))
    frames.extend(decoder.flush())
    return frames


__all__ = ["DEFAULT_MAX_LINE_BYTES", "SSEDecoder", "SSEFrame", "decode_sse", "iter_sse_frames"]
