"""Turn-level helpers that consume adapter streams."""

from .loop import ChatTurn, TranscriptEntry, TurnTranscript
from .state import TurnState

__all__ = [
    "ChatTurn",
    "TranscriptEntry",
    "TurnState",
    "TurnTranscript",
]
