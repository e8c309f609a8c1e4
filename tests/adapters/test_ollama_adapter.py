from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from chatrelay.core.adapters.ollama import DEFAULT_MODELS, OllamaAdapter, display_name_for, supports_vision
from chatrelay.core.errors import ModelNotFoundError, VendorError
from chatrelay.core.message import AttachmentPayload, ChatMessage, MessageRole, RequestOptions
from chatrelay.io.schema import ProviderConfigSnapshot, ProviderType

from tests.fixtures.http_fake import fixed, make_client, ndjson_body, ollama_lines, raising, streaming_response
from tests.harness import collect, terminal_of, text_of

CONFIG = ProviderConfigSnapshot(name="Local", provider_type=ProviderType.OLLAMA)


def _adapter(handler, config: ProviderConfigSnapshot = CONFIG):
    client, transport = make_client(handler)
    return OllamaAdapter(config, None, client=client), transport


@pytest.mark.parametrize("chunk_size", [None, 1, 3, 17])
def test_streams_lines_into_events(chunk_size: int | None) -> None:
    body = ndjson_body(ollama_lines())
    adapter, _ = _adapter(fixed(lambda: streaming_response(body, chunk_size=chunk_size)))

    events = collect(adapter, prompt="Hi", model="llama3.2")

    assert [event.type for event in events] == ["model", "text", "text", "output_tokens", "input_tokens", "done"]
    assert text_of(events) == "Hello, world"
    assert events[3].value == 42
    assert events[4].value == 10


def test_request_body_and_options() -> None:
    adapter, transport = _adapter(fixed(lambda: streaming_response(ndjson_body(ollama_lines()))))
    image = AttachmentPayload(b"pixels", "image/png")

    collect(
        adapter,
        messages=[ChatMessage(MessageRole.USER, "describe", (image, AttachmentPayload(b"x", "audio/wav")))],
        model="llava",
        system_prompt="sys",
        options=RequestOptions(max_tokens=32, temperature=0.2),
    )

    request = transport.requests[-1]
    assert str(request.url) == "http://localhost:11434/api/chat"
    assert "authorization" not in request.headers
    payload = json.loads(request.content)
    assert payload["messages"][0] == {"role": "system", "content": "sys"}
    assert payload["messages"][1]["images"] == [image.base64()]
    assert payload["options"] == {"num_predict": 32, "temperature": 0.2}
    assert payload["stream"] is True


def test_options_omitted_when_unset() -> None:
    adapter, transport = _adapter(fixed(lambda: streaming_response(ndjson_body(ollama_lines()))))
    collect(adapter, prompt="Hi", model="llama3.2")
    assert "options" not in transport.last_json
    assert "images" not in transport.last_json["messages"][0]


def test_malformed_lines_are_skipped() -> None:
    lines = ollama_lines()
    body = ndjson_body(lines[:1]) + b"{oops\n" + ndjson_body(lines[1:])
    adapter, _ = _adapter(fixed(lambda: streaming_response(body)))

    events = collect(adapter, prompt="Hi", model="llama3.2")

    assert text_of(events) == "Hello, world"
    assert terminal_of(events).type == "done"


def test_unterminated_final_line_is_processed() -> None:
    body = ndjson_body(ollama_lines()).rstrip(b"\n")
    adapter, _ = _adapter(fixed(lambda: streaming_response(body, chunk_size=4)))
    events = collect(adapter, prompt="Hi", model="llama3.2")
    assert [event.type for event in events][-3:] == ["output_tokens", "input_tokens", "done"]


def test_stream_without_done_line_completes() -> None:
    adapter, _ = _adapter(fixed(lambda: streaming_response(ndjson_body(ollama_lines(done=False)))))
    events = collect(adapter, prompt="Hi", model="llama3.2")
    assert terminal_of(events).type == "done"


def test_error_line_is_vendor_error() -> None:
    body = ndjson_body([{"error": "model runner crashed"}])
    adapter, _ = _adapter(fixed(lambda: streaming_response(body)))
    events = collect(adapter, prompt="Hi", model="llama3.2")
    assert terminal_of(events).error == VendorError("model runner crashed")


def test_missing_model_status() -> None:
    adapter, _ = _adapter(fixed(lambda: httpx.Response(404, json={"error": "model 'nope' not found"})))
    events = collect(adapter, prompt="Hi", model="nope")
    assert terminal_of(events).error == ModelNotFoundError("nope")


def test_non_streaming_body() -> None:
    reply = ollama_lines(text_parts=())[0]
    reply["message"]["content"] = "complete"
    adapter, transport = _adapter(fixed(lambda: httpx.Response(200, json=reply)))

    events = collect(adapter, prompt="Hi", model="llama3.2", options=RequestOptions(stream=False))

    assert text_of(events) == "complete"
    assert terminal_of(events).type == "done"
    assert transport.last_json["stream"] is False


def test_fetch_models_from_tags() -> None:
    tags = {"models": [{"name": "llama3.1:70b"}, {"name": "llava:latest"}, {"name": "my-model:latest"}]}
    adapter, transport = _adapter(fixed(lambda: httpx.Response(200, json=tags)))

    models = asyncio.run(adapter.fetch_models())

    assert str(transport.requests[-1].url) == "http://localhost:11434/api/tags"
    assert [(model.id, model.display_name, model.supports_vision) for model in models] == [
        ("llama3.1:70b", "Llama 3.1 70B", False),
        ("llava:latest", "LLaVA", True),
        ("my-model:latest", "My Model", False),
    ]


@pytest.mark.parametrize(
    "handler",
    [
        fixed(lambda: httpx.Response(200, json={"models": []})),
        fixed(lambda: httpx.Response(500)),
        fixed(lambda: httpx.Response(200, content=b"not json")),
        raising(lambda request: httpx.ConnectError("refused", request=request)),
    ],
)
def test_fetch_models_falls_back_to_defaults(handler) -> None:
    adapter, _ = _adapter(handler)
    assert asyncio.run(adapter.fetch_models()) == list(DEFAULT_MODELS)


def test_validate_reports_reachability() -> None:
    up, _ = _adapter(fixed(lambda: httpx.Response(200, json={"models": []})))
    down, _ = _adapter(raising(lambda request: httpx.ConnectError("refused", request=request)))
    assert asyncio.run(up.validate_credentials()) is True
    assert asyncio.run(down.validate_credentials()) is False


def test_custom_base_url() -> None:
    config = ProviderConfigSnapshot(provider_type=ProviderType.OLLAMA, base_url="http://gpu-box:11434/")
    adapter, transport = _adapter(fixed(lambda: streaming_response(ndjson_body(ollama_lines()))), config)
    collect(adapter, prompt="Hi", model="llama3.2")
    assert str(transport.requests[-1].url) == "http://gpu-box:11434/api/chat"


def test_display_helpers() -> None:
    assert display_name_for("codellama:7b") == "Code Llama 7B"
    assert display_name_for("phi3:latest") == "Phi-3"
    assert supports_vision("moondream:1.8b")
    assert not supports_vision("mistral")
