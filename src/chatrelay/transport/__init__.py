"""Byte-level transports: HTTP access and chunked-text decoders."""

from __future__ import annotations

from .ndjson import NDJSONDecoder, decode_ndjson, iter_ndjson_lines
from .sse import SSEDecoder, SSEFrame, decode_sse, iter_sse_frames

__all__ = [
    "NDJSONDecoder",
    "SSEDecoder",
    "SSEFrame",
    "decode_ndjson",
    "decode_sse",
    "iter_ndjson_lines",
    "iter_sse_frames",
]
