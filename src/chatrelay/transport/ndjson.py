"""Incremental newline-delimited JSON line splitter."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable

from ..core.errors import InvalidResponseError
from .sse import DEFAULT_MAX_LINE_BYTES

LOGGER = logging.getLogger(__name__)


class NDJSONDecoder:
    """Yield complete, non-blank lines from arbitrarily fragmented bytes.

    Lines are returned undecoded as JSON; parsing is left to the adapter so a
    malformed line can be skipped without ending the stream.
    """

    def __init__(self, *, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
        self._max_line_bytes = max_line_bytes
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer.extend(chunk)
        lines: list[str] = []
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw_line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            line = self._decode(raw_line)
            if line is not None:
                lines.append(line)

        if len(self._buffer) > self._max_line_bytes:
            self._buffer.clear()
            msg = f"NDJSON line exceeds {self._max_line_bytes} bytes"
            raise InvalidResponseError(msg)
        return lines

    def flush(self) -> list[str]:
        if not self._buffer:
            return []
        raw_line = bytes(self._buffer)
        self._buffer.clear()
        line = self._decode(raw_line)
        return [line] if line is not None else []

    def _decode(self, raw_line: bytes) -> str | None:
        try:
            line = raw_line.decode("utf-8").strip()
        except UnicodeDecodeError:
            LOGGER.warning("skipping NDJSON line with invalid UTF-8 (%s bytes)", len(raw_line))
            return None
        return line or None


async def iter_ndjson_lines(
    chunks: AsyncIterable[bytes],
    *,
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
) -> AsyncIterator[str]:
    decoder = NDJSONDecoder(max_line_bytes=max_line_bytes)
    async for chunk in chunks:
        for line in decoder.feed(chunk):
            yield line
    for line in decoder.flush():
        yield line


def decode_ndjson(
    chunks: bytes | Iterable[bytes],
    *,
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
) -> list[str]:
    if isinstance(chunks, (bytes, bytearray)):
        chunks = [bytes(chunks)]
    decoder = NDJSONDecoder(max_line_bytes=max_line_bytes)
    lines: list[str] = []
    for chunk in chunks:
        lines.extend(decoder.feed(chunk))
    lines.extend(decoder.flush())
    return lines


__all__ = ["NDJSONDecoder", "decode_ndjson", "iter_ndjson_lines"]
