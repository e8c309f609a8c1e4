"""Helpers shared by the vendor adapters."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ..message import ChatMessage, MessageRole

LOGGER = logging.getLogger(__name__)


def parse_json_object(data: str | bytes, *, source: str) -> dict[str, Any] | None:
    """Decode one JSON object, logging and returning ``None`` when malformed."""

    try:
        payload = json.loads(data)
    except (ValueError, RecursionError):
        LOGGER.warning("skipping malformed %s unit (%s chars)", source, len(data))
        return None
    if not isinstance(payload, dict):
        LOGGER.warning("skipping non-object %s unit", source)
        return None
    return payload


def as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def as_count(value: Any) -> int | None:
    """Return ``value`` when it is a usable token count."""

    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def split_system(
    messages: Sequence[ChatMessage],
    system_prompt: str | None,
) -> tuple[str | None, list[ChatMessage]]:
    """Separate system text from the conversation turns.

    The explicit ``system_prompt`` comes first, followed by the content of any
    system-role messages in order.
    """

    parts: list[str] = []
    if system_prompt:
        parts.append(system_prompt)
    turns: list[ChatMessage] = []
    for message in messages:
        if message.role is MessageRole.SYSTEM:
            if message.content:
                parts.append(message.content)
        else:
            turns.append(message)
    return ("\n\n".join(parts) or None), turns


def build_headers(
    custom: Mapping[str, str],
    required: Mapping[str, str],
) -> dict[str, str]:
    """Merge configured headers with adapter-required ones, which win on conflict."""

    headers = {key: value for key, value in custom.items() if key and value is not None}
    lowered = {key.lower(): key for key in headers}
    for key, value in required.items():
        existing = lowered.get(key.lower())
        if existing is not None:
            del headers[existing]
        headers[key] = value
    return headers


def humanize_model_id(model_id: str) -> str:
    """``gpt-4-0613`` -> ``Gpt 4 0613``."""

    words = model_id.replace("-", " ").replace("_", " ").split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


__all__ = [
    "as_count",
    "as_mapping",
    "build_headers",
    "humanize_model_id",
    "parse_json_object",
    "split_system",
]
