"""
HTTP adapters for the chat backends.

One adapter per wire format. Each call uses the credential captured in the
RoutingSelection it is given, never the router's live value.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

import httpx

from little_helper.exceptions import (
    BackendAuthRejected,
    BackendError,
    BackendFatal,
    BackendRateLimited,
    ProviderUnreachable,
)
from little_helper.models.chat import ChatMessage, ChatRole
from little_helper.models.provider import RoutingSelection
from little_helper.services.provider_catalog import CLAUDE_SUBSCRIPTION
from little_helper.utils.redaction import redact_sensitive_data

logger = logging.getLogger(__name__)

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_OAUTH_BETA = "oauth-2025-04-20"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
MAX_TOKENS = 4096


class ChatBackend(Protocol):
    """Anything that can turn a message history into an assistant reply."""

    async def generate(
        self, selection: RoutingSelection, messages: Sequence[ChatMessage]
    ) -> str: ...


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return redact_sensitive_data(response.text[:200])
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return redact_sensitive_data(str(error["message"]))
        if isinstance(error, str):
            return redact_sensitive_data(error)
    return redact_sensitive_data(response.text[:200])


def raise_for_backend_status(provider_id: str, response: httpx.Response) -> None:
    """Map a non-2xx backend response onto the backend error taxonomy."""
    code = response.status_code
    if response.is_success:
        return

    detail = _error_detail(response)
    context = {"detail": detail}
    if code in (401, 403):
        raise BackendAuthRejected(
            f"{provider_id} rejected the credential ({code})", provider_id, code, context
        )
    if code == 429:
        raise BackendRateLimited(f"{provider_id} rate limit reached (429)", provider_id, code, context)
    if code == 408 or code >= 500:
        raise ProviderUnreachable(
            f"{provider_id} is temporarily unavailable ({code})", provider_id, code, context
        )
    raise BackendFatal(f"{provider_id} error ({code}): {detail}", provider_id, code, context)


class HttpChatBackends:
    """
    Chat backend adapters over a shared httpx configuration.

    Args:
        timeout_seconds: Timeout for a single backend call
        ollama_base_url: Base URL of the local Ollama runtime
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(
        self,
        timeout_seconds: float = 120.0,
        ollama_base_url: str = "http://127.0.0.1:11434",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout_seconds
        self.ollama_base_url = ollama_base_url.rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def generate(
        self, selection: RoutingSelection, messages: Sequence[ChatMessage]
    ) -> str:
        """
        Send the history to the selected backend and return the reply text.

        Raises:
            BackendAuthRejected: 401/403
            BackendRateLimited: 429
            ProviderUnreachable: network failure, timeout, 408 or 5xx
            BackendFatal: anything else, including unparseable responses
        """
        adapters = {
            "anthropic": self._anthropic,
            "openai": self._openai,
            "gemini": self._gemini,
            "ollama": self._ollama,
        }
        adapter = adapters.get(selection.adapter)
        if adapter is None:
            raise BackendFatal(f"No adapter named {selection.adapter}", selection.provider_id)

        logger.debug(
            "Calling chat backend",
            extra={
                "provider_id": selection.provider_id,
                "model_id": selection.model_id,
                "message_count": len(messages),
            },
        )
        try:
            return await adapter(selection, messages)
        except BackendError:
            raise
        except httpx.TimeoutException as e:
            raise ProviderUnreachable(
                f"{selection.provider_id} timed out", selection.provider_id, context={"error": type(e).__name__}
            ) from e
        except httpx.TransportError as e:
            raise ProviderUnreachable(
                f"Could not connect to {selection.provider_id}",
                selection.provider_id,
                context={"error": type(e).__name__},
            ) from e

    async def _post(
        self,
        selection: RoutingSelection,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> Any:
        async with self._client() as client:
            response = await client.post(url, json=payload, headers=headers)

        raise_for_backend_status(selection.provider_id, response)
        try:
            body = response.json()
        except ValueError as e:
            raise BackendFatal(
                f"{selection.provider_id} returned an unreadable response",
                selection.provider_id,
                response.status_code,
            ) from e
        if not isinstance(body, dict):
            raise BackendFatal(
                f"{selection.provider_id} returned an unexpected response",
                selection.provider_id,
                response.status_code,
            )
        return body

    @staticmethod
    def _secret(selection: RoutingSelection) -> str:
        if selection.credential is None:
            raise BackendAuthRejected("No credential available", selection.provider_id)
        return selection.credential.access_secret

    async def _anthropic(
        self, selection: RoutingSelection, messages: Sequence[ChatMessage]
    ) -> str:
        secret = self._secret(selection)
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        if selection.provider_id == CLAUDE_SUBSCRIPTION:
            headers["Authorization"] = f"Bearer {secret}"
            headers["anthropic-beta"] = ANTHROPIC_OAUTH_BETA
        else:
            headers["x-api-key"] = secret

        system = "\n\n".join(m.content for m in messages if m.role is ChatRole.SYSTEM)
        payload: dict[str, Any] = {
            "model": selection.model_id,
            "max_tokens": MAX_TOKENS,
            "messages": [
                {"role": m.role.value, "content": m.content}
                for m in messages
                if m.role is not ChatRole.SYSTEM
            ],
        }
        if system:
            payload["system"] = system

        body = await self._post(selection, ANTHROPIC_URL, payload, headers)
        blocks = body.get("content") or []
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")

    async def _openai(
        self, selection: RoutingSelection, messages: Sequence[ChatMessage]
    ) -> str:
        headers = {"Authorization": f"Bearer {self._secret(selection)}"}
        payload = {
            "model": selection.model_id,
            "messages": [{"role": m.role.value, "content": m.content} for m in messages],
        }
        body = await self._post(selection, OPENAI_URL, payload, headers)
        choices = body.get("choices") or []
        if not choices:
            return ""
        return choices[0].get("message", {}).get("content") or ""

    async def _gemini(
        self, selection: RoutingSelection, messages: Sequence[ChatMessage]
    ) -> str:
        headers = {"x-goog-api-key": self._secret(selection)}
        system = "\n\n".join(m.content for m in messages if m.role is ChatRole.SYSTEM)
        payload: dict[str, Any] = {
            "contents": [
                {
                    "role": "model" if m.role is ChatRole.ASSISTANT else "user",
                    "parts": [{"text": m.content}],
                }
                for m in messages
                if m.role is not ChatRole.SYSTEM
            ],
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        body = await self._post(
            selection, GEMINI_URL.format(model=selection.model_id), payload, headers
        )
        candidates = body.get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts)

    async def _ollama(
        self, selection: RoutingSelection, messages: Sequence[ChatMessage]
    ) -> str:
        prompt = "\n".join(f"{m.role.value}: {m.content}" for m in messages)
        payload = {"model": selection.model_id, "prompt": prompt, "stream": False}
        body = await self._post(selection, f"{self.ollama_base_url}/api/generate", payload)
        return body.get("response", "")
