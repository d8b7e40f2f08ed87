from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import pytest

from domain.models import ChatMessage, ToolCall, ToolDefinition
from infrastructure.gigachat_adapter import GigaChatAdapter
from infrastructure.runtime_errors import ConfigurationError


def _adapter(**kwargs) -> GigaChatAdapter:
    options = {"base_url": None, "auth_url": None, "model_name": "GigaChat-Pro"}
    options.update(kwargs)
    return GigaChatAdapter(**options)


class _FakeGigaChat:
    def __init__(self, response) -> None:
        self.response = response
        self.payloads: list[dict] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def achat(self, payload):
        self.payloads.append(payload)
        return self.response

    async def aembeddings(self, texts, model=None):
        return SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2, 0.3])])


def test_credentials_are_built_from_client_pair() -> None:
    adapter = _adapter(client_id="id", client_secret="secret")

    assert adapter.credentials == "aWQ6c2VjcmV0"
    assert adapter.has_credentials is True


def test_payload_maps_tools_and_function_messages() -> None:
    adapter = _adapter(credentials="token", max_tokens=512)
    messages = [
        ChatMessage.system("sys"),
        ChatMessage.user("read a.txt"),
        ChatMessage.assistant_with_tools("", [ToolCall(id="c1", name="read_file", arguments='{"path": "a.txt"}')]),
        ChatMessage.tool_result("c1", "Error: File not found: a.txt"),
    ]
    tools = [ToolDefinition(name="read_file", description="Read", parameters={"type": "object", "properties": {}})]

    payload = adapter.build_chat_payload(messages, tools)

    assert payload["model"] == "GigaChat-Pro"
    assert payload["max_tokens"] == 512
    assert payload["function_call"] == "auto"
    assert payload["functions"] == [
        {"name": "read_file", "description": "Read", "parameters": {"type": "object", "properties": {}}}
    ]
    assert payload["messages"][2] == {
        "role": "assistant",
        "content": " ",
        "function_call": {"name": "read_file", "arguments": {"path": "a.txt"}},
    }
    assert payload["messages"][3] == {
        "role": "function",
        "name": "read_file",
        "content": json.dumps({"result": "Error: File not found: a.txt"}),
    }


def test_payload_without_tools_has_no_functions() -> None:
    payload = _adapter(credentials="token").build_chat_payload([ChatMessage.user("hi")])

    assert "functions" not in payload
    assert payload["messages"] == [{"role": "user", "content": "hi"}]


def test_function_call_response_becomes_tool_call() -> None:
    response = SimpleNamespace(
        choices=[
            SimpleNamespace(
                finish_reason="function_call",
                message=SimpleNamespace(
                    content="",
                    function_call=SimpleNamespace(name="web_search", arguments={"query": "news"}),
                    functions_state_id=None,
                ),
            )
        ]
    )

    parsed = GigaChatAdapter.parse_chat_response(response)

    assert parsed.finish_reason == "function_call"
    assert len(parsed.tool_calls) == 1
    call = parsed.tool_calls[0]
    assert call.name == "web_search"
    assert json.loads(call.arguments) == {"query": "news"}
    assert call.id.startswith("call_")


def test_chat_and_embed_go_through_sdk_client(monkeypatch) -> None:
    adapter = _adapter(credentials="token")
    fake = _FakeGigaChat(
        SimpleNamespace(
            choices=[SimpleNamespace(finish_reason="stop", message=SimpleNamespace(content="pong", function_call=None))]
        )
    )
    monkeypatch.setattr(adapter, "_create_client", lambda: fake)

    response = asyncio.run(adapter.chat([ChatMessage.user("ping")]))
    vector = asyncio.run(adapter.embed("ping"))

    assert response.content == "pong"
    assert fake.payloads[0]["messages"] == [{"role": "user", "content": "ping"}]
    assert vector == [0.1, 0.2, 0.3]


def test_without_credentials_uses_fallback_only_when_allowed() -> None:
    permissive = _adapter(allow_fallback=True)
    strict = _adapter(allow_fallback=False)

    assert asyncio.run(permissive.chat([ChatMessage.user("ping")])).content == "echo: ping"
    with pytest.raises(ConfigurationError):
        asyncio.run(strict.chat([ChatMessage.user("ping")]))
    with pytest.raises(ConfigurationError):
        strict._create_client()
