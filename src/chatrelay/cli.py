"""Command line interface for exercising provider adapters."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import mimetypes
import os
import sys
from pathlib import Path
from typing import Sequence

import httpx
from pydantic import ValidationError

from .config import TransportSettings
from .core.adapters import ProviderAdapter, create_adapter
from .core.adapters.stream import TextDelta
from .core.errors import ProviderError
from .core.message import AttachmentPayload, ChatMessage, MessageRole, RequestOptions
from .io.schema import ProviderConfigSnapshot, ProviderType
from .pricing import format_cost, format_token_count
from .runtime import ChatTurn

LOGGER = logging.getLogger(__name__)


def _load_config(args: argparse.Namespace) -> ProviderConfigSnapshot:
    if args.config is not None:
        try:
            raw = args.config.read_text(encoding="utf-8")
        except OSError as exc:
            raise argparse.ArgumentTypeError(f"cannot read config file: {exc}") from exc
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError) as exc:
            raise argparse.ArgumentTypeError(f"config file is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise argparse.ArgumentTypeError("config file must contain a JSON object")
        if args.provider is not None:
            data["provider_type"] = args.provider
        if args.base_url is not None:
            data["base_url"] = args.base_url
        return ProviderConfigSnapshot.model_validate(data)

    if args.provider is None:
        raise argparse.ArgumentTypeError("either --config or --provider is required")
    return ProviderConfigSnapshot(
        name=args.provider,
        provider_type=ProviderType(args.provider),
        base_url=args.base_url,
    )


def _load_credential(args: argparse.Namespace) -> str | None:
    if not args.api_key_env:
        return None
    value = os.environ.get(args.api_key_env)
    if value is None:
        LOGGER.warning("environment variable %s is not set", args.api_key_env)
    return value


def _load_attachment(path: Path) -> AttachmentPayload:
    mime_type, _ = mimetypes.guess_type(path.name)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise argparse.ArgumentTypeError(f"cannot read attachment {path}: {exc}") from exc
    return AttachmentPayload(data=data, mime_type=mime_type or "application/octet-stream")


def _add_connection_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, help="JSON provider configuration snapshot")
    parser.add_argument(
        "--provider",
        choices=[provider.value for provider in ProviderType],
        help="Provider type when no configuration file is given",
    )
    parser.add_argument("--base-url", help="Override the provider base URL")
    parser.add_argument(
        "--api-key-env",
        metavar="NAME",
        help="Environment variable holding the API key",
    )
    parser.add_argument("--timeout", type=float, default=60.0, help="Request timeout in seconds")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Talk to chat-completion providers")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    models_parser = subparsers.add_parser("models", help="list the models a provider offers")
    _add_connection_arguments(models_parser)

    validate_parser = subparsers.add_parser("validate", help="check that the credential is accepted")
    _add_connection_arguments(validate_parser)

    chat_parser = subparsers.add_parser("chat", help="send a prompt and stream the reply")
    _add_connection_arguments(chat_parser)
    chat_parser.add_argument("prompt", help="User message to send")
    chat_parser.add_argument("-m", "--model", default="", help="Model identifier")
    chat_parser.add_argument("-s", "--system", help="System prompt")
    chat_parser.add_argument("--temperature", type=float, help="Sampling temperature")
    chat_parser.add_argument("--top-p", type=float, help="Nucleus sampling mass")
    chat_parser.add_argument("--max-tokens", type=int, help="Maximum output tokens")
    chat_parser.add_argument(
        "--no-stream",
        action="store_true",
        help="Request the whole reply at once instead of streaming",
    )
    chat_parser.add_argument(
        "-i",
        "--image",
        type=Path,
        action="append",
        default=[],
        help="Attach an image file (repeatable)",
    )

    return parser


def _build_adapter(args: argparse.Namespace, client: httpx.AsyncClient | None) -> ProviderAdapter:
    config = _load_config(args)
    settings = TransportSettings(timeout=args.timeout)
    return create_adapter(config, _load_credential(args), settings=settings, client=client)


async def _handle_models(adapter: ProviderAdapter) -> int:
    models = await adapter.fetch_models()
    for model in models:
        details = [model.display_name]
        if model.context_window_description:
            details.append(model.context_window_description)
        if model.supports_vision:
            details.append("vision")
        print(f"{model.id}\t{' | '.join(details)}")
    return 0


async def _handle_validate(adapter: ProviderAdapter) -> int:
    if await adapter.validate_credentials():
        print("credentials accepted")
        return 0
    print("credentials rejected")
    return 1


async def _handle_chat(adapter: ProviderAdapter, args: argparse.Namespace) -> int:
    attachments = [_load_attachment(path) for path in args.image]
    options = RequestOptions(
        temperature=args.temperature,
        max_tokens=args.max_tokens,
        top_p=args.top_p,
        stream=not args.no_stream,
    )
    turn = ChatTurn(
        adapter,
        [ChatMessage(MessageRole.USER, args.prompt)],
        args.model,
        system_prompt=args.system,
        attachments=attachments,
        options=options,
    )
    try:
        async for event in turn:
            if isinstance(event, TextDelta):
                sys.stdout.write(event.text)
                sys.stdout.flush()
    finally:
        await turn.aclose()

    state = turn.state
    if state.text and not state.text.endswith("\n"):
        sys.stdout.write("\n")
    if state.error is not None:
        print(f"error: {state.error.description}", file=sys.stderr)
        return 1

    summary = [f"model={state.model or args.model or '?'}"]
    if state.input_tokens is not None:
        summary.append(f"in={format_token_count(state.input_tokens)}")
    if state.output_tokens is not None:
        summary.append(f"out={format_token_count(state.output_tokens)}")
    cost = turn.cost()
    if cost is not None:
        summary.append(f"cost={format_cost(cost)}")
    print(" ".join(summary), file=sys.stderr)
    return 0


async def _dispatch(args: argparse.Namespace, client: httpx.AsyncClient | None) -> int:
    adapter = _build_adapter(args, client)
    if args.command == "models":
        return await _handle_models(adapter)
    if args.command == "validate":
        return await _handle_validate(adapter)
    return await _handle_chat(adapter, args)


def main(argv: Sequence[str] | None = None, *, client: httpx.AsyncClient | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_dispatch(args, client))
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
    except ValidationError as exc:
        parser.error(f"invalid configuration: {exc.error_count()} problem(s)")
    except ValueError as exc:
        parser.error(str(exc))
    except ProviderError as exc:
        print(f"error: {exc.description}", file=sys.stderr)
        return 2
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
