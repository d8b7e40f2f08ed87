"""Model client used by the chat engine.

LLMClient wraps two provider calls: chat completion with optional tool
advertisement, and text embedding. A concrete provider object can be injected
(``client``); without one the client either falls back to deterministic local
answers or, when fallback is disabled, refuses to run.
"""

from __future__ import annotations

import hashlib
import inspect
from typing import Any, List, Sequence

from domain.models import ChatMessage, ChatResponse, ToolDefinition
from infrastructure.runtime_errors import ConfigurationError


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class LLMClient:
    """Unified interface for model calls."""

    def __init__(
        self,
        endpoint: str | None = None,
        api_key: str | None = None,
        model_name: str | None = None,
        client: Any | None = None,
        allow_fallback: bool = True,
        embedding_dim: int = 1024,
        max_tokens: int = 16000,
    ) -> None:
        self.endpoint = endpoint
        self.api_key = api_key
        self.model_name = model_name
        self.client = client
        self.allow_fallback = allow_fallback
        self.embedding_dim = embedding_dim
        self.max_tokens = max_tokens

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key or self.client)

    @property
    def embeddings_enabled(self) -> bool:
        return self.has_credentials or self.allow_fallback

    def _ensure_credentials(self) -> None:
        if self.allow_fallback:
            return
        if not self.has_credentials:
            raise ConfigurationError("Model provider credentials are not configured")

    def _fallback_embedding(self, text: str) -> List[float]:
        values: list[float] = []
        counter = 0
        while len(values) < self.embedding_dim:
            digest = hashlib.sha256(f"{counter}:{text}".encode("utf-8")).digest()
            for idx in range(0, len(digest), 4):
                chunk = digest[idx : idx + 4]
                values.append(int.from_bytes(chunk, byteorder="big") / 2**32 - 0.5)
            counter += 1
        return values[: self.embedding_dim]

    def _fallback_chat(self, messages: Sequence[ChatMessage]) -> ChatResponse:
        for message in reversed(messages):
            if message.role.value == "user":
                return ChatResponse(content=f"echo: {message.content}", finish_reason="stop")
        return ChatResponse(content="Done.", finish_reason="stop")

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolDefinition] | None = None,
        thinking_budget: int | None = None,
    ) -> ChatResponse:
        """Sends the conversation to the model and returns its response."""

        if self.client:
            return await _maybe_await(
                self.client.chat(list(messages), tools=list(tools or []), thinking_budget=thinking_budget)
            )

        self._ensure_credentials()
        return self._fallback_chat(messages)

    async def embed(self, text: str) -> List[float] | None:
        """Returns an embedding for ``text`` or ``None`` when embeddings are unavailable."""

        if self.client:
            embed = getattr(self.client, "embed", None)
            if embed is None:
                return None
            return await _maybe_await(embed(text))

        if not self.embeddings_enabled:
            return None
        return self._fallback_embedding(text)
