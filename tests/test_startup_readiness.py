from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import app.main as main_module
from app.config import Settings
from app.main import _validate_external_credentials
from chat.bootstrap import create_chat_runtime, create_llm_client
from infrastructure.gigachat_adapter import GigaChatAdapter
from infrastructure.runtime_errors import ConfigurationError, ToolServerError


class _RuntimeStub:
    def __init__(self) -> None:
        self.llm_client = GigaChatAdapter(base_url=None, auth_url=None, allow_fallback=True)
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


def test_validate_credentials_fails_without_fallback() -> None:
    adapter = GigaChatAdapter(base_url=None, auth_url=None, allow_fallback=False)

    with pytest.raises(RuntimeError):
        _validate_external_credentials(FastAPI(), SimpleNamespace(llm_client=adapter))


def test_validate_credentials_allows_fallback() -> None:
    adapter = GigaChatAdapter(base_url=None, auth_url=None, allow_fallback=True)

    _validate_external_credentials(FastAPI(), SimpleNamespace(llm_client=adapter))


def test_llm_client_uses_fallback_without_credentials() -> None:
    settings = Settings(_env_file=None, gigachat_client_id=None, gigachat_client_secret=None)

    client = create_llm_client(settings)

    assert client.allow_fallback is True
    assert client.has_credentials is False


def test_missing_credentials_are_fatal_when_fallback_disabled() -> None:
    settings = Settings(_env_file=None, llm_allow_fallback=False)

    with pytest.raises(ConfigurationError):
        create_llm_client(settings)


def test_bad_hosted_configuration_is_a_startup_error(tmp_path) -> None:
    settings = Settings(_env_file=None, data_dir=tmp_path, tavily_api_url="ftp://search.local")

    with pytest.raises(ToolServerError):
        asyncio.run(create_chat_runtime(settings))


def test_failed_external_server_is_a_startup_error(tmp_path) -> None:
    settings = Settings(
        _env_file=None,
        data_dir=tmp_path,
        hosted_tools=False,
        mcp_servers=["definitely-not-an-installed-binary-7f3a"],
        mcp_handshake_timeout_s=5.0,
    )

    with pytest.raises(ToolServerError, match="mcp-0"):
        asyncio.run(create_chat_runtime(settings))


def test_health_reports_ready_runtime(monkeypatch) -> None:
    stub = _RuntimeStub()

    async def _fake_create(_settings):
        return stub

    monkeypatch.setattr(main_module, "create_chat_runtime", _fake_create)

    with TestClient(main_module.app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert stub.closed is True


def test_health_reports_startup_failure(monkeypatch) -> None:
    async def _failing_create(_settings):
        raise ToolServerError("Failed to start external tool server mcp-0")

    monkeypatch.setattr(main_module, "create_chat_runtime", _failing_create)

    with TestClient(main_module.app) as client:
        response = client.get("/health")

    assert response.status_code == 503
    payload = response.json()
    assert payload["status"] == "failed"
    assert "mcp-0" in payload["error"]
