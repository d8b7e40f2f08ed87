"""GigaChat model adapter.

Implements :class:`~infrastructure.llm_client.LLMClient` on top of the
official GigaChat SDK: chat completion with function calling and text
embeddings. Message and tool conversion is kept in pure helpers so it can be
checked without network access.
"""

from __future__ import annotations

import json
import logging
import uuid
from base64 import b64encode
from typing import Any, List, Sequence

from gigachat import GigaChat
from gigachat.exceptions import GigaChatException

from domain.enums import MessageRole
from domain.models import ChatMessage, ChatResponse, ToolCall, ToolDefinition
from infrastructure.llm_client import LLMClient
from infrastructure.runtime_errors import ConfigurationError

logger = logging.getLogger(__name__)


def _function_result_content(content: str) -> str:
    # Function results must be JSON; plain text results are wrapped.
    try:
        json.loads(content)
    except (TypeError, ValueError):
        return json.dumps({"result": content}, ensure_ascii=False)
    return content


def _parse_arguments(raw: str) -> dict[str, Any]:
    try:
        value = json.loads(raw or "{}")
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}


class GigaChatAdapter(LLMClient):
    """``LLMClient`` implementation backed by GigaChat.

    Parameters
    ----------
    base_url: str | None
        GigaChat API endpoint.
    auth_url: str | None
        OAuth endpoint used to obtain access tokens.
    credentials: str | None
        Ready credentials string (base64 of ``client_id:client_secret``).
    client_id, client_secret: str | None
        Used to build ``credentials`` when it is not given.
    model_name: str
        Chat model identifier.
    embeddings_model: str
        Embedding model identifier.
    """

    def __init__(
        self,
        *,
        base_url: str | None,
        auth_url: str | None,
        credentials: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        model_name: str = "GigaChat",
        embeddings_model: str = "Embeddings",
        scope: str = "GIGACHAT_API_PERS",
        verify_ssl_certs: bool = True,
        access_token: str | None = None,
        allow_fallback: bool = False,
        embedding_dim: int = 1024,
        max_tokens: int = 16000,
        request_timeout_s: float | None = None,
    ) -> None:
        resolved_credentials = credentials or self._build_credentials(client_id, client_secret)
        super().__init__(
            endpoint=base_url,
            api_key=resolved_credentials or access_token,
            model_name=model_name,
            allow_fallback=allow_fallback,
            embedding_dim=embedding_dim,
            max_tokens=max_tokens,
        )
        self.auth_url = auth_url
        self.credentials = resolved_credentials
        self.access_token = access_token
        self.scope = scope
        self.verify_ssl_certs = verify_ssl_certs
        self.embeddings_model = embeddings_model
        self.request_timeout_s = request_timeout_s

    @staticmethod
    def _build_credentials(client_id: str | None, client_secret: str | None) -> str | None:
        if not client_id or not client_secret:
            return None
        token = f"{client_id}:{client_secret}".encode("utf-8")
        return b64encode(token).decode("utf-8")

    def _create_client(self) -> GigaChat:
        if not (self.credentials or self.access_token):
            raise ConfigurationError("GigaChat credentials are not configured")

        options: dict[str, Any] = {
            "base_url": self.endpoint,
            "auth_url": self.auth_url,
            "credentials": self.credentials,
            "access_token": self.access_token,
            "scope": self.scope,
            "verify_ssl_certs": self.verify_ssl_certs,
            "model": self.model_name,
        }
        if self.request_timeout_s:
            options["timeout"] = self.request_timeout_s
        return GigaChat(**options)

    # ------------------------------------------------------------------
    # Payload mapping
    # ------------------------------------------------------------------
    @staticmethod
    def message_to_payload(message: ChatMessage, tool_names: dict[str, str]) -> dict[str, Any]:
        if message.role is MessageRole.TOOL:
            return {
                "role": "function",
                "name": message.name or tool_names.get(message.tool_call_id or "", "tool"),
                "content": _function_result_content(message.content),
            }
        payload: dict[str, Any] = {"role": message.role.value, "content": message.content}
        if message.tool_calls:
            # The provider carries a single function call per assistant message.
            first = message.tool_calls[0]
            payload["function_call"] = {"name": first.name, "arguments": _parse_arguments(first.arguments)}
        return payload

    def build_chat_payload(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> dict[str, Any]:
        tool_names: dict[str, str] = {}
        for message in messages:
            for call in message.tool_calls:
                tool_names[call.id] = call.name
        payload: dict[str, Any] = {
            "model": self.model_name,
            "messages": [self.message_to_payload(message, tool_names) for message in messages],
            "max_tokens": self.max_tokens,
        }
        if tools:
            payload["functions"] = [
                {"name": tool.name, "description": tool.description, "parameters": tool.parameters}
                for tool in tools
            ]
            payload["function_call"] = "auto"
        return payload

    @staticmethod
    def parse_chat_response(response: Any) -> ChatResponse:
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ChatResponse(content="")
        choice = choices[0]
        message = choice.message
        tool_calls: list[ToolCall] = []
        function_call = getattr(message, "function_call", None)
        if function_call is not None:
            arguments = getattr(function_call, "arguments", None) or {}
            call_id = getattr(message, "functions_state_id", None) or f"call_{uuid.uuid4().hex[:12]}"
            tool_calls.append(
                ToolCall(
                    id=str(call_id),
                    name=str(function_call.name),
                    arguments=arguments if isinstance(arguments, str) else json.dumps(arguments, ensure_ascii=False),
                )
            )
        return ChatResponse(
            content=getattr(message, "content", None) or "",
            tool_calls=tool_calls,
            finish_reason=getattr(choice, "finish_reason", None),
        )

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------
    async def chat(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolDefinition] | None = None,
        thinking_budget: int | None = None,
    ) -> ChatResponse:
        """Sends the conversation to GigaChat."""

        if not self.has_credentials:
            return await super().chat(messages, tools, thinking_budget)
        if thinking_budget:
            logger.debug("GigaChat has no thinking trace; budget %s ignored", thinking_budget)

        payload = self.build_chat_payload(messages, tools)
        try:
            async with self._create_client() as client:
                response = await client.achat(payload)
        except GigaChatException as exc:  # pragma: no cover - external SDK
            raise RuntimeError(f"GigaChat chat request failed: {exc}") from exc
        return self.parse_chat_response(response)

    async def embed(self, text: str) -> List[float] | None:
        """Returns an embedding for ``text`` through GigaChat."""

        if not self.has_credentials:
            return await super().embed(text)
        try:
            async with self._create_client() as client:
                response = await client.aembeddings([text], model=self.embeddings_model)
        except GigaChatException as exc:  # pragma: no cover - external SDK
            raise RuntimeError(f"GigaChat embedding request failed: {exc}") from exc

        data = getattr(response, "data", None) or []
        return list(data[0].embedding) if data else None
