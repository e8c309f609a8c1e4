from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import pytest

from chatrelay.core.adapters.base import ProviderAdapter
from chatrelay.core.adapters.openai import OpenAIAdapter
from chatrelay.core.adapters.stream import (
    BaseStreamIterator,
    Done,
    ErrorEvent,
    InputTokenCount,
    ModelUsed,
    OutputTokenCount,
    RawChunk,
    ReplayStreamIterator,
    StreamEvent,
    TextDelta,
)
from chatrelay.core.errors import RateLimitedError
from chatrelay.core.message import AttachmentPayload, ChatMessage, MessageRole, RequestOptions
from chatrelay.io.schema import ModelInfo, ProviderConfigSnapshot, ProviderType
from chatrelay.runtime import ChatTurn, TurnTranscript

from tests.fixtures.http_fake import make_client, openai_stream_frames, sse_body, streaming_response


class _ScriptedNormalizer:
    def __init__(self, events: Sequence[StreamEvent]) -> None:
        self._events = list(events)

    async def normalize_chunk(self, chunk: RawChunk) -> list[StreamEvent]:
        return [self._events[int(chunk.data)]]

    async def finish(self) -> list[StreamEvent]:
        return []


class _ScriptedAdapter(ProviderAdapter):
    def __init__(self, events: Sequence[StreamEvent], **config) -> None:
        super().__init__(ProviderConfigSnapshot(provider_type=ProviderType.OPENAI, **config), "sk-scripted")
        self._events = list(events)
        self.sent: list[tuple] = []

    async def fetch_models(self) -> list[ModelInfo]:
        return []

    async def validate_credentials(self) -> bool:
        return True

    def send_message(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        *,
        system_prompt: str | None = None,
        attachments: Sequence[AttachmentPayload] = (),
        options: RequestOptions | None = None,
    ) -> BaseStreamIterator:
        self.sent.append((tuple(messages), model, system_prompt, tuple(attachments), options))
        chunks = [RawChunk(str(index)) for index in range(len(self._events))]
        return ReplayStreamIterator(
            chunks,
            _ScriptedNormalizer(self._events),
            handle=self._begin(),
            on_release=self._slot.release,
        )


def _messages(content: str = "hello") -> list[ChatMessage]:
    return [ChatMessage(MessageRole.USER, content)]


SUCCESS: list[StreamEvent] = [
    ModelUsed("gpt-4o"),
    InputTokenCount(1000),
    TextDelta("Hel"),
    TextDelta("lo"),
    OutputTokenCount(1000),
    Done(),
]


def test_turn_folds_events_into_state() -> None:
    adapter = _ScriptedAdapter(SUCCESS)
    turn = ChatTurn(adapter, _messages(), "gpt-4o", system_prompt="be brief")

    state = asyncio.run(turn.run())

    assert state.text == "Hello"
    assert state.model == "gpt-4o"
    assert (state.input_tokens, state.output_tokens) == (1000, 1000)
    assert state.completed and state.finished
    assert state.error is None
    assert turn.closed
    assert turn.cost() == pytest.approx(0.0125)
    assert adapter.sent[0][1:3] == ("gpt-4o", "be brief")
    assert adapter.in_flight is None


def test_transcript_records_snapshots() -> None:
    transcript = TurnTranscript()
    turn = ChatTurn(_ScriptedAdapter(SUCCESS), _messages(), "gpt-4o", transcript=transcript)

    asyncio.run(turn.run())

    assert len(transcript) == len(SUCCESS)
    assert transcript.events == tuple(SUCCESS)
    assert [state.text for state in transcript.states] == ["", "", "Hel", "Hello", "Hello", "Hello"]
    assert not transcript.states[3].completed
    assert transcript.states[-1].completed
    assert transcript.terminal == Done()
    assert transcript.entries[2].event == TextDelta("Hel")
    assert transcript.entries[2].state.text == "Hel"

    async def replayed() -> list[StreamEvent]:
        return [event async for event in transcript.replay()]

    assert asyncio.run(replayed()) == SUCCESS


def test_error_terminal_sets_state_error(caplog: pytest.LogCaptureFixture) -> None:
    events = [ModelUsed("gpt-4o"), TextDelta("par"), ErrorEvent(RateLimitedError(3.0))]
    turn = ChatTurn(_ScriptedAdapter(events), _messages(), "gpt-4o")

    with caplog.at_level(logging.ERROR, logger="chatrelay.runtime.loop"):
        state = asyncio.run(turn.run())

    assert state.error == RateLimitedError(3.0)
    assert state.finished and not state.completed
    assert state.text == "par"
    assert turn.cost() is None
    assert "turn failed kind=rate_limited" in caplog.text


def test_events_after_terminal_never_reach_state() -> None:
    events = [TextDelta("a"), Done(), TextDelta("late")]
    turn = ChatTurn(_ScriptedAdapter(events), _messages(), "gpt-4o")

    async def consume() -> list[StreamEvent]:
        return [event async for event in turn]

    collected = asyncio.run(consume())

    assert collected == [TextDelta("a"), Done()]
    assert turn.state.text == "a"


def test_early_close_cancels_stream() -> None:
    adapter = _ScriptedAdapter(SUCCESS)
    turn = ChatTurn(adapter, _messages(), "gpt-4o")

    async def scenario() -> StreamEvent:
        first = await turn.__anext__()
        handle = adapter.in_flight
        await turn.aclose()
        assert handle is not None and handle.cancelled
        with pytest.raises(StopAsyncIteration):
            await turn.__anext__()
        return first

    assert asyncio.run(scenario()) == ModelUsed("gpt-4o")
    assert turn.closed
    assert not turn.state.finished
    assert adapter.in_flight is None


def test_completion_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    turn = ChatTurn(_ScriptedAdapter(SUCCESS), _messages(), "gpt-4o")
    with caplog.at_level(logging.INFO, logger="chatrelay.runtime.loop"):
        asyncio.run(turn.run())
    assert "turn complete model=gpt-4o" in caplog.text


def test_cost_uses_requested_model_when_none_reported() -> None:
    events = [InputTokenCount(1_000_000), OutputTokenCount(0), Done()]
    turn = ChatTurn(_ScriptedAdapter(events), _messages(), "gpt-4o-mini")
    asyncio.run(turn.run())
    assert turn.cost() == pytest.approx(0.15)


def test_cost_prefers_catalog_pricing() -> None:
    catalog = [ModelInfo(id="house", display_name="House", input_token_cost=1.0, output_token_cost=1.0)]
    events = [ModelUsed("house"), InputTokenCount(500_000), OutputTokenCount(500_000), Done()]
    turn = ChatTurn(_ScriptedAdapter(events, available_models=catalog), _messages(), "house")
    asyncio.run(turn.run())
    assert turn.cost() == pytest.approx(1.0)


def test_turn_over_http_adapter() -> None:
    body = sse_body(openai_stream_frames(("Hi", " there"), usage={"prompt_tokens": 9, "completion_tokens": 2}))
    client, _ = make_client(lambda request: streaming_response(body, chunk_size=11))
    adapter = OpenAIAdapter(ProviderConfigSnapshot(provider_type="openai"), "sk-http-turn", client=client)

    state = asyncio.run(ChatTurn(adapter, _messages(), "gpt-4o-mini").run())

    assert state.text == "Hi there"
    assert (state.input_tokens, state.output_tokens) == (9, 2)
    assert state.completed


def test_transcript_has_no_terminal_until_turn_ends() -> None:
    transcript = TurnTranscript()
    turn = ChatTurn(_ScriptedAdapter(SUCCESS), _messages(), "gpt-4o", transcript=transcript)

    async def first_two() -> None:
        await turn.__anext__()
        await turn.__anext__()
        await turn.aclose()

    asyncio.run(first_two())

    assert len(transcript) == 2
    assert transcript.terminal is None


class _ExplodingStream(ReplayStreamIterator):
    async def __anext__(self) -> StreamEvent:
        raise RuntimeError("decoder crashed")


class _ExplodingAdapter(_ScriptedAdapter):
    def send_message(self, messages, model, **kwargs) -> BaseStreamIterator:
        return _ExplodingStream([], _ScriptedNormalizer([]), handle=self._begin(), on_release=self._slot.release)


def test_unexpected_stream_failure_closes_turn() -> None:
    adapter = _ExplodingAdapter([])
    turn = ChatTurn(adapter, _messages(), "gpt-4o")

    with pytest.raises(RuntimeError):
        asyncio.run(turn.run())

    assert turn.closed
    assert adapter.in_flight is None
