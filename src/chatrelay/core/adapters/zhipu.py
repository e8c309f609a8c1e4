"""Z.AI (Zhipu GLM) adapter.

Z.AI speaks the Chat Completions wire format but publishes no ``/models``
endpoint, so the catalog is fixed and credentials are checked with a
one-token completion.
"""

from __future__ import annotations

import logging

from ...io.schema import ModelInfo
from ...transport.http import PreparedRequest
from ..message import ChatMessage, RequestOptions
from .openai import OpenAIAdapter, build_openai_request


LOGGER = logging.getLogger(__name__)

VALIDATION_MODEL = "glm-5"

# Billed by subscription rather than per token.
KNOWN_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(id="glm-5", display_name="GLM-5", context_window=128_000, supports_vision=True),
    ModelInfo(id="glm-4.7", display_name="GLM-4.7", context_window=128_000, supports_vision=True),
)


class ZhipuAdapter(OpenAIAdapter):
    async def fetch_models(self) -> list[ModelInfo]:
        LOGGER.debug("returning built-in Z.AI catalog")
        return list(KNOWN_MODELS)

    async def validate_credentials(self) -> bool:
        if not self._credential:
            return False
        payload = build_openai_request(
            [ChatMessage("user", "Hi")],
            self._resolve_model(None) or VALIDATION_MODEL,
            options=RequestOptions(max_tokens=1, stream=False),
            stream=False,
        )
        request = PreparedRequest("POST", self._chat_url(), headers=self._headers(), body=payload.to_bytes())
        return await self._check_credential(request)

    def _default_headers(self) -> dict[str, str]:
        return {"Accept-Language": "en-US,en"}


__all__ = ["KNOWN_MODELS", "ZhipuAdapter"]
