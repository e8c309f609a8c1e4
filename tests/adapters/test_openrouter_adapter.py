from __future__ import annotations

import asyncio

import httpx
import pytest

from chatrelay.core.adapters.openrouter import (
    APP_REFERER,
    APP_TITLE,
    OpenRouterAdapter,
    describe_openrouter_model,
    openrouter_display_name,
    per_million,
)
from chatrelay.io.schema import ProviderConfigSnapshot, ProviderType

from tests.fixtures.http_fake import fixed, make_client, openai_stream_frames, sse_body, streaming_response
from tests.harness import collect, terminal_of

KEY = "sk-or-v1-abcdefghijklmnop"
CONFIG = ProviderConfigSnapshot(name="OpenRouter", provider_type=ProviderType.OPENROUTER)

CATALOG = {
    "data": [
        {
            "id": "anthropic/claude-3.5-sonnet",
            "name": "Anthropic: Claude 3.5 Sonnet",
            "context_length": 200000,
            "pricing": {"prompt": "0.000003", "completion": "0.000015"},
            "architecture": {"input_modalities": ["text", "image"]},
        },
        {
            "id": "meta-llama/llama-3.1-8b-instruct",
            "context_length": 131072,
            "pricing": {"prompt": "0", "completion": "0"},
            "architecture": {"input_modalities": ["text"]},
        },
        {"id": "openai/gpt-4o", "name": "OpenAI: GPT-4o"},
        {"id": "openrouter/free", "name": "Free Models Router", "pricing": {"prompt": "-1", "completion": "-1"}},
        {"name": "no id"},
    ]
}


def _adapter(handler, config: ProviderConfigSnapshot = CONFIG):
    client, transport = make_client(handler)
    return OpenRouterAdapter(config, KEY, client=client), transport


def test_fetch_models_keeps_whole_catalog() -> None:
    adapter, transport = _adapter(fixed(lambda: httpx.Response(200, json=CATALOG)))

    models = asyncio.run(adapter.fetch_models())

    assert [model.id for model in models] == [
        "openrouter/free",
        "anthropic/claude-3.5-sonnet",
        "meta-llama/llama-3.1-8b-instruct",
        "openai/gpt-4o",
    ]
    assert str(transport.requests[-1].url) == "https://openrouter.ai/api/v1/models"


def test_model_metadata_comes_from_listing() -> None:
    claude = describe_openrouter_model(CATALOG["data"][0])

    assert claude.display_name == "Anthropic: Claude 3.5 Sonnet"
    assert claude.context_window == 200_000
    assert claude.supports_vision
    assert claude.input_token_cost == pytest.approx(3.0)
    assert claude.output_token_cost == pytest.approx(15.0)
    assert claude.calculate_cost(1_000_000, 0) == pytest.approx(3.0)


def test_model_metadata_fallbacks() -> None:
    llama = describe_openrouter_model(CATALOG["data"][1])
    gpt = describe_openrouter_model(CATALOG["data"][2])
    router = describe_openrouter_model(CATALOG["data"][3])

    assert llama.display_name == "Llama 3.1 8b Instruct"
    assert not llama.supports_vision
    assert llama.input_token_cost == 0.0
    assert gpt.context_window == 128_000
    assert gpt.supports_vision
    assert gpt.pricing is None
    assert router.input_token_cost is None
    assert describe_openrouter_model({"name": "no id"}) is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [("0.000002", 2.0), (0, 0.0), ("-1", None), ("free", None), ("inf", None), (None, None), (True, None)],
)
def test_per_million(value, expected) -> None:
    if expected is None:
        assert per_million(value) is None
    else:
        assert per_million(value) == pytest.approx(expected)


def test_display_name_without_vendor_prefix() -> None:
    assert openrouter_display_name("auto") == "auto"
    assert openrouter_display_name("mistralai/mistral-7b") == "Mistral 7b"


def test_streams_with_attribution_headers() -> None:
    body = sse_body(openai_stream_frames(model="openai/gpt-4o"))
    adapter, transport = _adapter(fixed(lambda: streaming_response(body)))

    events = collect(adapter, prompt="Hi", model="openai/gpt-4o")

    assert terminal_of(events).type == "done"
    request = transport.requests[-1]
    assert str(request.url) == "https://openrouter.ai/api/v1/chat/completions"
    assert request.headers["http-referer"] == APP_REFERER
    assert request.headers["x-title"] == APP_TITLE
    assert request.headers["authorization"] == f"Bearer {KEY}"


def test_custom_headers_replace_attribution() -> None:
    config = ProviderConfigSnapshot(provider_type=ProviderType.OPENROUTER, custom_headers={"X-Title": "My App"})
    adapter, transport = _adapter(fixed(lambda: streaming_response(sse_body(openai_stream_frames()))), config)

    collect(adapter, prompt="Hi", model="openai/gpt-4o")

    assert transport.requests[-1].headers["x-title"] == "My App"


def test_validation_uses_models_endpoint() -> None:
    adapter, transport = _adapter(fixed(lambda: httpx.Response(200, json={"data": []})))

    assert asyncio.run(adapter.validate_credentials()) is True
    assert str(transport.requests[-1].url) == "https://openrouter.ai/api/v1/models"
