import asyncio

import pytest

from domain.models import ChatMessage, ChatResponse, ToolDefinition
from infrastructure.llm_client import LLMClient
from infrastructure.runtime_errors import ConfigurationError


class DummyProvider:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def embed(self, text: str):
        self.calls.append(f"embed:{text}")
        return [1.0, 2.0]

    async def chat(self, messages, tools=None, thinking_budget=None):
        self.calls.append(f"chat:{len(messages)}:{[tool.name for tool in tools]}:{thinking_budget}")
        return ChatResponse(content="provider answer")


def test_fallback_embeddings_are_deterministic():
    client = LLMClient(embedding_dim=8)

    first = asyncio.run(client.embed("text"))
    second = asyncio.run(client.embed("text"))
    other = asyncio.run(client.embed("other"))

    assert len(first) == 8
    assert first == second
    assert first != other
    assert all(-0.5 <= value < 0.5 for value in first)


def test_fallback_embedding_covers_large_dimensions():
    client = LLMClient(embedding_dim=1024)

    assert len(asyncio.run(client.embed("text"))) == 1024


def test_fallback_chat_echoes_last_user_message():
    client = LLMClient()
    messages = [ChatMessage.system("sys"), ChatMessage.user("Hello"), ChatMessage.assistant("hi")]

    response = asyncio.run(client.chat(messages))

    assert response.content == "echo: Hello"
    assert response.has_tool_calls is False


def test_uses_injected_client_when_present():
    provider = DummyProvider()
    client = LLMClient(client=provider, allow_fallback=False)

    response = asyncio.run(
        client.chat([ChatMessage.user("q")], tools=[ToolDefinition(name="read_file")], thinking_budget=256)
    )

    assert response.content == "provider answer"
    assert asyncio.run(client.embed("foo")) == [1.0, 2.0]
    assert provider.calls == ["chat:1:['read_file']:256", "embed:foo"]


def test_missing_credentials_raise_error_when_fallback_disabled():
    client = LLMClient(allow_fallback=False, api_key=None, client=None)

    with pytest.raises(ConfigurationError):
        asyncio.run(client.chat([ChatMessage.user("data")]))

    assert client.embeddings_enabled is False
    assert asyncio.run(client.embed("data")) is None
