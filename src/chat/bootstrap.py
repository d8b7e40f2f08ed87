"""Фабрики для сборки чат-рантайма из настроек."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.config import Settings, get_settings
from chat.memory_store import ChatMemoryStore
from chat.runtime import ChatEngine
from chat.session import SessionManager
from chat.state_store import SessionStore
from chat.tool_registry import (
    ExternalToolAdapter,
    HostedToolAdapter,
    LocalToolAdapter,
    ToolAdapter,
    ToolRegistry,
)
from infrastructure.gigachat_adapter import GigaChatAdapter
from infrastructure.llm_client import LLMClient
from infrastructure.runtime_errors import ConfigurationError, ToolServerError
from tools.external_servers import ExternalToolServerManager
from tools.hosted_server import HostedToolServer
from tools.local_tools import LocalTools

logger = logging.getLogger(__name__)


@dataclass
class ChatRuntime:
    """Собранные компоненты рантайма; владеет внешними серверами инструментов."""

    settings: Settings
    store: SessionStore
    llm_client: LLMClient
    registry: ToolRegistry
    engine: ChatEngine
    sessions: SessionManager
    external_servers: ExternalToolServerManager = field(default_factory=ExternalToolServerManager)

    async def aclose(self) -> None:
        await self.external_servers.aclose()


def create_llm_client(settings: Settings) -> GigaChatAdapter:
    """Создаёт клиент модели; без учётных данных включает fallback, если он разрешён."""

    credentials_provided = settings.has_model_credentials
    if not credentials_provided and not settings.llm_allow_fallback:
        raise ConfigurationError("GigaChat credentials are not configured and fallback is disabled")
    if not credentials_provided:
        logger.warning("Учётные данные модели отсутствуют, используется fallback режим")

    return GigaChatAdapter(
        base_url=settings.gigachat_api_url,
        auth_url=settings.gigachat_auth_url,
        credentials=settings.gigachat_credentials,
        client_id=settings.gigachat_client_id,
        client_secret=settings.gigachat_client_secret,
        access_token=settings.gigachat_access_token,
        model_name=settings.model_name,
        embeddings_model=settings.gigachat_embeddings_model,
        scope=settings.gigachat_scope,
        verify_ssl_certs=settings.gigachat_verify_ssl,
        allow_fallback=not credentials_provided,
        embedding_dim=settings.embedding_dim,
        max_tokens=settings.max_tokens,
        request_timeout_s=settings.model_timeout_s,
    )


async def create_tool_registry(
    settings: Settings,
    store: SessionStore,
    external_servers: ExternalToolServerManager,
) -> ToolRegistry:
    """Собирает адаптеры в порядке приоритета: local, hosted, external."""

    adapters: list[ToolAdapter] = []
    if settings.local_tools or settings.history_tool:
        local_tools = LocalTools(
            workspace_root=settings.workspace_root,
            history_store=store if settings.history_tool else None,
            enable_filesystem=settings.local_tools,
        )
        adapters.append(LocalToolAdapter(local_tools))

    if settings.hosted_tools:
        hosted = await HostedToolServer.create(
            tavily_api_key=settings.tavily_api_key,
            tavily_api_url=settings.tavily_api_url,
            request_timeout_s=settings.tool_call_timeout_s,
        )
        adapters.append(HostedToolAdapter(hosted))

    for name, command in settings.external_servers():
        await external_servers.add_server(name, command)
    if external_servers.servers:
        adapters.append(ExternalToolAdapter(external_servers))

    registry = ToolRegistry(adapters)
    for source, names in registry.describe().items():
        logger.info("Инструменты [%s]: %s", source, ", ".join(names) or "-")
    return registry


async def create_chat_runtime(
    settings: Settings | None = None,
    *,
    llm_client: LLMClient | None = None,
) -> ChatRuntime:
    """Создаёт собранный чат-рантайм со всеми зависимостями.

    Ошибка запуска любого сервера инструментов фатальна: уже запущенные
    внешние серверы останавливаются, исключение пробрасывается.
    """

    resolved_settings = settings or get_settings()
    client = llm_client or create_llm_client(resolved_settings)
    store = SessionStore(
        ChatMemoryStore(resolved_settings.data_dir),
        embedding_dim=resolved_settings.embedding_dim,
    )
    external_servers = ExternalToolServerManager(
        handshake_timeout_s=resolved_settings.mcp_handshake_timeout_s,
        call_timeout_s=resolved_settings.tool_call_timeout_s,
    )
    try:
        registry = await create_tool_registry(resolved_settings, store, external_servers)
    except ToolServerError:
        await external_servers.aclose()
        raise

    engine = ChatEngine(
        store=store,
        llm_client=client,
        registry=registry,
        system_prompt=resolved_settings.system_prompt,
        thinking_budget=resolved_settings.thinking_budget,
        max_tool_rounds=resolved_settings.max_tool_rounds,
        model_timeout_s=resolved_settings.model_timeout_s,
    )
    logger.debug("Чат-рантайм собран: %s", resolved_settings.safe_model_dump())
    return ChatRuntime(
        settings=resolved_settings,
        store=store,
        llm_client=client,
        registry=registry,
        engine=engine,
        sessions=SessionManager(store),
        external_servers=external_servers,
    )
