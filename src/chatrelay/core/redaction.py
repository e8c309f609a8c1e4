"""Scrub credential material from text before it is surfaced to callers."""

from __future__ import annotations

import re
from collections.abc import Iterable

REDACTED = "[REDACTED]"

_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)\b(bearer)\s+[A-Za-z0-9._~+/=-]+"), r"\1 " + REDACTED),
    (
        re.compile(r"(?i)\b(x-api-key|api[_-]?key|authorization)(\s*[:=]\s*)\"?[^\s\",;&]+"),
        r"\1\2" + REDACTED,
    ),
    (re.compile(r"(?i)([?&](?:key|api_key|token|access_token)=)[^&\s]+"), r"\1" + REDACTED),
    (re.compile(r"\bsk-[A-Za-z0-9_-]{8,}"), REDACTED),
)


def redact(text: str, secrets: Iterable[str | None] = ()) -> str:
    """Return ``text`` with explicit ``secrets`` and common key shapes masked."""

    if not text:
        return text

    scrubbed = text
    for secret in sorted({s for s in secrets if s}, key=len, reverse=True):
        scrubbed = scrubbed.replace(secret, REDACTED)

    for pattern, replacement in _PATTERNS:
        scrubbed = pattern.sub(replacement, scrubbed)
    return scrubbed


__all__ = ["REDACTED", "redact"]
