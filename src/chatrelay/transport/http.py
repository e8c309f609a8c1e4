"""Thin ``httpx`` wrapper mapping HTTP and transport failures to provider errors."""

from __future__ import annotations

import json
import logging
import math
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field

import httpx

from ..config import DEFAULT_SETTINGS, TransportSettings
from ..core.errors import (
    InvalidAPIKeyError,
    InvalidResponseError,
    ModelNotFoundError,
    NetworkError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitedError,
    ServerError,
    TokenExpiredError,
    UnauthorizedError,
)
from ..core.redaction import redact

LOGGER = logging.getLogger(__name__)

ERROR_MESSAGE_HEADER = "X-Error-Message"


@dataclass(frozen=True, slots=True)
class PreparedRequest:
    """Fully built request; ``model`` enables 404 to model-not-found mapping."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None
    model: str | None = None


class OpenResponse:
    """A streaming response together with the client that must close with it."""

    def __init__(self, response: httpx.Response, owned_client: httpx.AsyncClient | None) -> None:
        self.response = response
        self._owned_client = owned_client
        self._closed = False

    @property
    def status_code(self) -> int:
        return self.response.status_code

    def aiter_bytes(self) -> AsyncIterator[bytes]:
        return self.response.aiter_bytes()

    async def aread(self) -> bytes:
        return await self.response.aread()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.response.aclose()
        finally:
            if self._owned_client is not None:
                await self._owned_client.aclose()


class HTTPClient:
    """Issue provider requests and translate failures into :class:`ProviderError`.

    When no ``httpx.AsyncClient`` is supplied a short-lived client is created
    per request and closed together with its response.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        settings: TransportSettings | None = None,
        secrets: Sequence[str | None] = (),
        oauth: bool = False,
    ) -> None:
        self._client = client
        self._settings = settings or DEFAULT_SETTINGS
        self._secrets = tuple(secret for secret in secrets if secret)
        self._oauth = oauth

    @property
    def settings(self) -> TransportSettings:
        return self._settings

    @property
    def secrets(self) -> tuple[str, ...]:
        return self._secrets

    async def open(self, request: PreparedRequest, *, timeout: float | None = None) -> OpenResponse:
        """Send ``request`` and return the un-read response once headers arrive.

        Non-2xx responses are drained, closed, and raised as the mapped error.
        """

        client, owned = self._acquire_client()
        headers = dict(request.headers)
        if self._settings.user_agent and "user-agent" not in {k.lower() for k in headers}:
            headers["User-Agent"] = self._settings.user_agent

        LOGGER.debug("request method=%s url=%s", request.method, redact(request.url, self._secrets))
        try:
            try:
                http_request = client.build_request(
                    request.method,
                    request.url,
                    headers=headers,
                    content=request.body,
                    timeout=timeout if timeout is not None else self._settings.timeout,
                )
            except ValueError as exc:
                raise self._unsendable_headers(headers) from exc
            response = await client.send(http_request, stream=True)
        except ProviderError:
            if owned:
                await client.aclose()
            raise
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            if owned:
                await client.aclose()
            raise map_transport_error(exc, secrets=self._secrets) from exc
        except BaseException:
            if owned:
                await client.aclose()
            raise

        opened = OpenResponse(response, client if owned else None)
        LOGGER.debug("response status=%s", response.status_code)
        if response.is_success:
            return opened

        try:
            body = await response.aread()
        except httpx.HTTPError:
            body = b""
        await opened.aclose()
        error = self.error_for_status(
            response.status_code,
            response.headers,
            body,
            model=request.model,
        )
        if error is None:  # pragma: no cover - guarded by is_success above
            msg = f"unexpected status {response.status_code}"
            raise InvalidResponseError(msg)
        raise error

    async def fetch(self, request: PreparedRequest, *, timeout: float | None = None) -> bytes:
        """Send ``request`` and return the full response body of a 2xx reply."""

        opened = await self.open(request, timeout=timeout)
        try:
            return await opened.aread()
        except httpx.HTTPError as exc:
            raise map_transport_error(exc, secrets=self._secrets) from exc
        finally:
            await opened.aclose()

    def error_for_status(
        self,
        status_code: int,
        headers: Mapping[str, str],
        body: bytes = b"",
        *,
        model: str | None = None,
    ) -> ProviderError | None:
        return error_for_status(
            status_code,
            headers,
            body,
            model=model,
            oauth=self._oauth,
            secrets=self._secrets,
        )

    def _unsendable_headers(self, headers: Mapping[str, str]) -> ProviderError:
        """Error for a request whose headers cannot be encoded for the wire."""

        for name, value in headers.items():
            try:
                value.encode("ascii")
            except UnicodeEncodeError:
                if any(secret in value for secret in self._secrets):
                    LOGGER.error("credential contains characters that cannot be sent")
                    return InvalidAPIKeyError()
                LOGGER.error("header %s contains characters that cannot be sent", name)
                return InvalidResponseError(f"Header '{name}' contains characters that cannot be sent")
        return InvalidResponseError("request could not be built")

    def _acquire_client(self) -> tuple[httpx.AsyncClient, bool]:
        if self._client is not None:
            return self._client, False
        return httpx.AsyncClient(timeout=self._settings.timeout), True


def error_for_status(
    status_code: int,
    headers: Mapping[str, str],
    body: bytes = b"",
    *,
    model: str | None = None,
    oauth: bool = False,
    secrets: Sequence[str | None] = (),
) -> ProviderError | None:
    """Map an HTTP status onto the error taxonomy; ``None`` means success."""

    if 200 <= status_code < 300:
        return None
    if status_code == 401:
        return TokenExpiredError() if oauth else UnauthorizedError()
    if status_code == 403:
        return UnauthorizedError()
    if status_code == 429:
        return RateLimitedError(parse_retry_after(_header(headers, "Retry-After")))
    if status_code == 404 and model:
        return ModelNotFoundError(model)

    message = _header(headers, ERROR_MESSAGE_HEADER) or extract_error_message(body)
    return ServerError(status_code, message, secrets=secrets)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a delta-seconds ``Retry-After`` value; HTTP dates are ignored."""

    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if seconds < 0 or not math.isfinite(seconds):
        return None
    return seconds


def extract_error_message(body: bytes) -> str | None:
    """Pull a human readable message out of a JSON error body, if present."""

    if not body:
        return None
    try:
        payload = json.loads(body)
    except (ValueError, RecursionError):
        return None
    if not isinstance(payload, Mapping):
        return None

    error = payload.get("error")
    if isinstance(error, Mapping):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    if isinstance(error, str) and error:
        return error

    message = payload.get("message")
    if isinstance(message, str) and message:
        return message
    return None


def map_transport_error(
    exc: BaseException,
    *,
    secrets: Sequence[str | None] = (),
) -> ProviderError:
    """Translate an ``httpx`` exception into the error taxonomy."""

    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return ProviderTimeoutError()
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return InvalidResponseError("Invalid URL")
    if isinstance(exc, httpx.DecodingError):
        return InvalidResponseError("response body could not be decoded")
    return NetworkError(exc, secrets=secrets)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


__all__ = [
    "ERROR_MESSAGE_HEADER",
    "HTTPClient",
    "OpenResponse",
    "PreparedRequest",
    "error_for_status",
    "extract_error_message",
    "map_transport_error",
    "parse_retry_after",
]
