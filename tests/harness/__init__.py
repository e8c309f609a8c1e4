"""Test harness utilities for adapter validation."""

from .adapter_harness import BaseEvent, collect, collect_async, terminal_of, text_of

__all__ = ["BaseEvent", "collect", "collect_async", "terminal_of", "text_of"]
