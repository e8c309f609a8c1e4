from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from chatrelay.core.adapters.openai import (
    OpenAIAdapter,
    OpenAIStreamNormalizer,
    build_openai_request,
    describe_model,
    is_chat_model,
)
from chatrelay.core.adapters.stream import Done, RawChunk
from chatrelay.core.errors import (
    InvalidAPIKeyError,
    ModelNotFoundError,
    NetworkError,
    RateLimitedError,
    ServerError,
    UnauthorizedError,
    VendorError,
)
from chatrelay.core.message import AttachmentPayload, ChatMessage, MessageRole, RequestOptions
from chatrelay.io.schema import ProviderConfigSnapshot, ProviderType

from tests.fixtures.http_fake import (
    ChunkedStream,
    fixed,
    make_client,
    openai_stream_frames,
    raising,
    sse_body,
    streaming_response,
)
from tests.harness import collect, terminal_of, text_of

KEY = "sk-proj-abcdefghijklmnop1234"
CONFIG = ProviderConfigSnapshot(name="OpenAI", provider_type=ProviderType.OPENAI)


def _adapter(handler, config: ProviderConfigSnapshot = CONFIG):
    client, transport = make_client(handler)
    return OpenAIAdapter(config, KEY, client=client), transport


@pytest.mark.parametrize("chunk_size", [None, 1, 5, 33])
def test_streams_text_usage_and_done(chunk_size: int | None) -> None:
    body = sse_body(openai_stream_frames(usage={"prompt_tokens": 9, "completion_tokens": 4}))
    adapter, _ = _adapter(fixed(lambda: streaming_response(body, chunk_size=chunk_size)))

    events = collect(adapter, prompt="Hi", model="gpt-4o-mini")

    assert [event.type for event in events] == ["model", "text", "text", "input_tokens", "output_tokens", "done"]
    assert text_of(events) == "Hello, world"
    assert events[0].value == "gpt-4o-mini"


def test_done_sentinel_stops_consumption() -> None:
    stream = ChunkedStream([sse_body(openai_stream_frames()), b"data: {\"choices\": [{\"delta\": {\"content\": \"late\"}}]}\n\n"])
    adapter, _ = _adapter(fixed(lambda: streaming_response(b"", stream=stream)))

    events = collect(adapter, prompt="Hi")

    assert text_of(events) == "Hello, world"
    assert terminal_of(events).type == "done"
    assert stream.delivered == 1


def test_sentinel_is_not_json_decoded() -> None:
    normalizer = OpenAIStreamNormalizer()
    assert asyncio.run(normalizer.normalize_chunk(RawChunk(data="[DONE]"))) == [Done()]


def test_stream_without_sentinel_synthesizes_done() -> None:
    body = sse_body(openai_stream_frames(done=False))
    adapter, _ = _adapter(fixed(lambda: streaming_response(body)))

    events = collect(adapter, prompt="Hi")

    assert terminal_of(events).type == "done"
    assert text_of(events) == "Hello, world"


def test_error_object_in_stream_is_vendor_error() -> None:
    body = sse_body([{"error": {"message": "context too long", "code": 400}}, "[DONE]"])
    adapter, _ = _adapter(fixed(lambda: streaming_response(body)))

    events = collect(adapter, prompt="Hi")

    assert terminal_of(events).error == VendorError("context too long", 400)


def test_malformed_and_empty_frames_are_skipped() -> None:
    frames = openai_stream_frames()
    body = sse_body(frames[:2]) + b"data: {broken\n\ndata: []\n\n" + sse_body(frames[2:])
    adapter, _ = _adapter(fixed(lambda: streaming_response(body)))

    events = collect(adapter, prompt="Hi")

    assert text_of(events) == "Hello, world"


def test_request_body_shapes_content_by_attachments() -> None:
    png = AttachmentPayload(b"img", "image/jpeg")
    request = build_openai_request(
        [
            ChatMessage(MessageRole.USER, "plain"),
            ChatMessage(MessageRole.ASSISTANT, "ok"),
            ChatMessage(MessageRole.USER, "look", (png, AttachmentPayload(b"a,b", "text/csv"))),
        ],
        "gpt-4o",
        system_prompt="sys",
        options=RequestOptions(max_tokens=64, top_p=0.9),
    )
    payload = json.loads(request.to_bytes())

    assert payload["messages"][0] == {"role": "system", "content": "sys"}
    assert payload["messages"][1] == {"role": "user", "content": "plain"}
    assert payload["messages"][3]["content"] == [
        {"type": "text", "text": "look"},
        {"type": "image_url", "image_url": {"url": "data:image/jpeg;base64,aW1n"}},
    ]
    assert payload["max_tokens"] == 64
    assert payload["top_p"] == 0.9
    assert "temperature" not in payload
    assert "stream_options" not in payload


def test_request_headers_and_usage_option() -> None:
    body = sse_body(openai_stream_frames())
    adapter, transport = _adapter(fixed(lambda: streaming_response(body)))

    collect(adapter, prompt="Hi", model="gpt-4o")

    request = transport.requests[-1]
    assert str(request.url) == "https://api.openai.com/v1/chat/completions"
    assert request.headers["authorization"] == f"Bearer {KEY}"
    assert transport.last_json["stream_options"] == {"include_usage": True}


def test_compatible_vendor_uses_its_base_url() -> None:
    config = ProviderConfigSnapshot(provider_type=ProviderType.GROQ)
    adapter, transport = _adapter(fixed(lambda: streaming_response(sse_body(openai_stream_frames()))), config)

    collect(adapter, prompt="Hi", model="llama-3.1-8b-instant")

    assert str(transport.requests[-1].url) == "https://api.groq.com/openai/v1/chat/completions"
    assert "stream_options" not in transport.last_json


def test_not_found_status_maps_to_model_not_found() -> None:
    adapter, _ = _adapter(fixed(lambda: httpx.Response(404, json={"error": {"message": "no such model"}})))
    events = collect(adapter, prompt="Hi", model="gpt-9")
    assert terminal_of(events).error == ModelNotFoundError("gpt-9")


def test_server_error_message_is_redacted() -> None:
    adapter, _ = _adapter(
        fixed(lambda: httpx.Response(500, headers={"X-Error-Message": f"bad key {KEY}"}))
    )
    events = collect(adapter, prompt="Hi")
    error = terminal_of(events).error
    assert isinstance(error, ServerError)
    assert error.status_code == 500
    assert KEY not in error.description


def test_unauthorized_stream() -> None:
    adapter, _ = _adapter(fixed(lambda: httpx.Response(401)))
    assert terminal_of(collect(adapter, prompt="Hi")).error == UnauthorizedError()


def test_missing_credential() -> None:
    client, transport = make_client(fixed(lambda: httpx.Response(200)))
    adapter = OpenAIAdapter(CONFIG, "   ", client=client)
    assert terminal_of(collect(adapter, prompt="Hi")).error == InvalidAPIKeyError()
    with pytest.raises(InvalidAPIKeyError):
        asyncio.run(adapter.fetch_models())
    assert transport.requests == []


def test_fetch_models_filters_and_sorts() -> None:
    listing = {
        "data": [
            {"id": "whisper-1"},
            {"id": "gpt-4o-mini"},
            {"id": "text-embedding-3-small"},
            {"id": "gpt-4o"},
            {"id": "o1-mini"},
            {"id": "gpt-4-0613"},
        ]
    }
    adapter, transport = _adapter(fixed(lambda: httpx.Response(200, json=listing)))

    models = asyncio.run(adapter.fetch_models())

    assert str(transport.requests[-1].url) == "https://api.openai.com/v1/models"
    assert [model.display_name for model in models] == ["GPT-4o", "GPT-4o Mini", "Gpt 4 0613", "o1 Mini"]
    by_id = {model.id: model for model in models}
    assert by_id["gpt-4o"].supports_vision is True
    assert by_id["gpt-4o"].context_window == 128_000
    assert by_id["gpt-4-0613"].context_window == 8_192
    assert by_id["gpt-4-0613"].supports_vision is False


def test_describe_model_unknown_id_has_no_metadata() -> None:
    model = describe_model("chatty-model")
    assert is_chat_model("chatty-model")
    assert model.display_name == "Chatty Model"
    assert model.context_window is None
    assert model.input_token_cost is None


@pytest.mark.parametrize("status", [401, 403])
def test_validation_false_on_rejection(status: int) -> None:
    adapter, transport = _adapter(fixed(lambda: httpx.Response(status)))
    assert asyncio.run(adapter.validate_credentials()) is False
    assert transport.requests[-1].method == "GET"


def test_validation_raises_on_connection_failure() -> None:
    adapter, _ = _adapter(raising(lambda request: httpx.ConnectError("refused", request=request)))
    with pytest.raises(NetworkError):
        asyncio.run(adapter.validate_credentials())


def test_deeply_nested_frame_is_skipped() -> None:
    frames = openai_stream_frames()
    body = sse_body(frames[:2]) + b"data: " + b"[" * 100_000 + b"\n\n" + sse_body(frames[2:])
    adapter, _ = _adapter(fixed(lambda: streaming_response(body)))

    events = collect(adapter, prompt="Hi")

    assert text_of(events) == "Hello, world"
    assert terminal_of(events).type == "done"


def test_credential_with_invisible_character_fails_in_stream() -> None:
    client, transport = make_client(fixed(lambda: httpx.Response(200)))
    adapter = OpenAIAdapter(CONFIG, "sk-test-key\u200b123456", client=client)

    events = collect(adapter, prompt="Hi")

    assert isinstance(terminal_of(events).error, InvalidAPIKeyError)
    assert asyncio.run(adapter.validate_credentials()) is False
    assert transport.requests == []
    assert adapter.in_flight is None


def test_unencodable_custom_header_fails_in_stream() -> None:
    config = ProviderConfigSnapshot(provider_type=ProviderType.OPENAI, custom_headers={"X-Team": "équipe"})
    adapter, transport = _adapter(fixed(lambda: httpx.Response(200)), config)

    events = collect(adapter, prompt="Hi")

    assert terminal_of(events).type == "error"
    assert transport.requests == []


def test_infinite_retry_after_is_rate_limited() -> None:
    adapter, _ = _adapter(fixed(lambda: httpx.Response(429, headers={"Retry-After": "inf"})))

    events = collect(adapter, prompt="Hi")

    assert terminal_of(events).error == RateLimitedError(None)


def test_non_image_attachments_use_content_array() -> None:
    request = build_openai_request(
        [ChatMessage(MessageRole.USER, "summarize", (AttachmentPayload(b"%PDF", "application/pdf"),))],
        "gpt-4o",
    )

    payload = json.loads(request.to_bytes())

    assert payload["messages"][0]["content"] == [{"type": "text", "text": "summarize"}]
