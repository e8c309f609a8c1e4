"""Drive one adapter stream while recording events and aggregate usage."""

from __future__ import annotations

import logging
from asyncio import CancelledError
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass

from chatrelay.core.adapters.base import ProviderAdapter
from chatrelay.core.adapters.stream import (
    BaseStreamIterator,
    Done,
    ErrorEvent,
    InputTokenCount,
    ModelUsed,
    OutputTokenCount,
    StreamEvent,
    TextDelta,
    is_terminal,
)
from chatrelay.core.message import AttachmentPayload, ChatMessage, RequestOptions

from .state import TurnState


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    """One streamed event and the turn state right after it was applied."""

    event: StreamEvent
    state: TurnState


class TurnTranscript:
    """Ordered record of a turn, kept for inspection and replay."""

    def __init__(self) -> None:
        self.entries: list[TranscriptEntry] = []

    def record(self, event: StreamEvent, state: TurnState) -> None:
        self.entries.append(TranscriptEntry(event, state.snapshot()))

    @property
    def events(self) -> tuple[StreamEvent, ...]:
        return tuple(entry.event for entry in self.entries)

    @property
    def states(self) -> tuple[TurnState, ...]:
        return tuple(entry.state for entry in self.entries)

    @property
    def terminal(self) -> StreamEvent | None:
        """The ``Done`` or ``ErrorEvent`` that ended the turn, once recorded."""

        if self.entries and is_terminal(self.entries[-1].event):
            return self.entries[-1].event
        return None

    def __len__(self) -> int:
        return len(self.entries)

    async def replay(self) -> AsyncIterator[StreamEvent]:
        for entry in self.entries:
            yield entry.event


class ChatTurn(AsyncIterator[StreamEvent]):
    """Send one request through an adapter and fold its events into :class:`TurnState`."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        messages: Sequence[ChatMessage],
        model: str,
        /,
        *,
        system_prompt: str | None = None,
        attachments: Sequence[AttachmentPayload] = (),
        options: RequestOptions | None = None,
        transcript: TurnTranscript | None = None,
    ) -> None:
        self._adapter = adapter
        self._messages = tuple(messages)
        self._model = model
        self._system_prompt = system_prompt
        self._attachments = tuple(attachments)
        self._options = options
        self._stream: BaseStreamIterator | None = None
        self._closed = False

        self.state = TurnState()
        self.transcript = transcript if transcript is not None else TurnTranscript()

    def __aiter__(self) -> ChatTurn:
        return self

    async def __anext__(self) -> StreamEvent:
        if self._closed:
            raise StopAsyncIteration

        iterator = self._ensure_stream()
        try:
            event = await iterator.__anext__()
        except (StopAsyncIteration, CancelledError):
            await self.aclose()
            raise
        except Exception:
            await self.aclose()
            raise

        self._handle_event(event)
        if is_terminal(event):
            await self.aclose()
        return event

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self) -> TurnState:
        """Consume the whole stream and return the final state."""

        try:
            async for _ in self:
                pass
        finally:
            await self.aclose()
        return self.state

    async def aclose(self) -> None:
        """Close the underlying stream and mark the turn closed."""

        if self._closed:
            return
        self._closed = True
        iterator, self._stream = self._stream, None
        if iterator is not None:
            await iterator.aclose()

    def cost(self) -> float | None:
        """Estimated USD cost once both token counts are known."""

        state = self.state
        if state.input_tokens is None or state.output_tokens is None:
            return None
        model_id = state.model or self._model
        return self._adapter.config.calculate_cost(state.input_tokens, state.output_tokens, model_id)

    def _ensure_stream(self) -> BaseStreamIterator:
        if self._stream is None:
            self._stream = self._adapter.send_message(
                self._messages,
                self._model,
                system_prompt=self._system_prompt,
                attachments=self._attachments,
                options=self._options,
            )
        return self._stream

    def _handle_event(self, event: StreamEvent) -> None:
        state = self.state
        if isinstance(event, TextDelta):
            state.fragments.append(event.text)
        elif isinstance(event, ModelUsed):
            state.model = event.model
        elif isinstance(event, InputTokenCount):
            state.input_tokens = event.count
        elif isinstance(event, OutputTokenCount):
            state.output_tokens = event.count
        elif isinstance(event, Done):
            state.completed = True
            LOGGER.info(
                "turn complete model=%s chars=%s input_tokens=%s output_tokens=%s",
                state.model,
                len(state.text),
                state.input_tokens,
                state.output_tokens,
            )
        elif isinstance(event, ErrorEvent):
            state.error = event.error
            LOGGER.error("turn failed kind=%s: %s", event.error.kind.value, event.error.description)
        else:  # pragma: no cover - defensive branch for future event types
            LOGGER.debug("Unhandled event type: %s", type(event).__name__)

        self.transcript.record(event, state)
