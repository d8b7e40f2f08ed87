"""Модуль конфигурации приложения."""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ROOT_DIR = Path(__file__).resolve().parent.parent.parent
ENV_PATH = ROOT_DIR / ".env"

# Загружаем переменные только если файл существует, чтобы избежать лишних предупреждений
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=False)

_SECRET_FIELDS = (
    "gigachat_credentials",
    "gigachat_client_id",
    "gigachat_client_secret",
    "gigachat_access_token",
    "tavily_api_key",
)


class Settings(BaseSettings):
    """Основные настройки приложения."""

    model_config = SettingsConfigDict(
        env_prefix="SECRETARY_",
        env_file=ENV_PATH,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        protected_namespaces=("settings_",),
    )

    app_name: str = Field(default="secretary-service", description="Название сервиса")
    api_prefix: str = Field(default="/api/v1", description="Префикс для HTTP API")
    host: str = Field(default="127.0.0.1", description="Хост для запуска приложения")
    port: int = Field(default=8000, description="Порт для запуска приложения")
    data_dir: Path = Field(default=ROOT_DIR / ".secretary", description="Каталог журнала сессий")
    embedding_dim: int = Field(default=1024, description="Размерность эмбеддингов")

    gigachat_credentials: str | None = Field(
        default=None,
        description="Готовая строка авторизации GigaChat (base64 client_id:client_secret)",
        validation_alias=AliasChoices("GIGACHAT_CREDENTIALS", "SECRETARY_GIGACHAT_CREDENTIALS"),
    )
    gigachat_client_id: str | None = Field(
        default=None,
        description="Идентификатор клиента GigaChat",
        validation_alias=AliasChoices("GIGACHAT_CLIENT_ID", "SECRETARY_GIGACHAT_CLIENT_ID"),
    )
    gigachat_client_secret: str | None = Field(
        default=None,
        description="Секрет клиента GigaChat",
        validation_alias=AliasChoices("GIGACHAT_CLIENT_SECRET", "SECRETARY_GIGACHAT_CLIENT_SECRET"),
    )
    gigachat_access_token: str | None = Field(
        default=None,
        description="Готовый access token GigaChat",
        validation_alias=AliasChoices("GIGACHAT_ACCESS_TOKEN", "SECRETARY_GIGACHAT_ACCESS_TOKEN"),
    )
    gigachat_scope: str = Field(
        default="GIGACHAT_API_PERS",
        description="OAuth scope, используемый GigaChat",
        validation_alias=AliasChoices("GIGACHAT_SCOPE", "SECRETARY_GIGACHAT_SCOPE"),
    )
    gigachat_auth_url: str = Field(
        default="https://ngw.devices.sberbank.ru:9443/api/v2/oauth",
        description="Endpoint авторизации GigaChat",
        validation_alias=AliasChoices("GIGACHAT_AUTH_URL", "SECRETARY_GIGACHAT_AUTH_URL"),
    )
    gigachat_api_url: str = Field(
        default="https://gigachat.devices.sberbank.ru/api/v1",
        description="Endpoint API GigaChat",
        validation_alias=AliasChoices("GIGACHAT_API_URL", "SECRETARY_GIGACHAT_API_URL"),
    )
    gigachat_verify_ssl: bool = Field(
        default=True,
        description="Проверять ли SSL сертификаты для GigaChat",
        validation_alias=AliasChoices("GIGACHAT_VERIFY_SSL", "SECRETARY_GIGACHAT_VERIFY_SSL"),
    )
    gigachat_embeddings_model: str = Field(default="Embeddings", description="Модель эмбеддингов")

    model_name: str = Field(default="GigaChat", description="Идентификатор чат-модели")
    max_tokens: int = Field(default=16000, description="Лимит токенов ответа модели")
    thinking_budget: int = Field(default=0, description="Бюджет рассуждений модели, 0 - выключено")
    system_prompt: str | None = Field(default=None, description="Переопределение системного промпта")
    llm_allow_fallback: bool = Field(
        default=True,
        description="Разрешить локальный fallback модели при отсутствии учётных данных",
    )

    local_tools: bool = Field(default=True, description="Включить файловые инструменты")
    history_tool: bool = Field(default=True, description="Включить инструмент поиска по истории")
    hosted_tools: bool = Field(default=True, description="Включить встроенный сервер web-инструментов")
    workspace_root: Path | None = Field(
        default=None,
        description="Корень, за пределы которого не выходят файловые инструменты",
    )
    tavily_api_key: str | None = Field(
        default=None,
        description="API ключ Tavily для web_search",
        validation_alias=AliasChoices("TAVILY_API_KEY", "SECRETARY_TAVILY_API_KEY"),
    )
    tavily_api_url: str = Field(default="https://api.tavily.com/search", description="Endpoint поиска Tavily")
    mcp_servers: list[str] = Field(
        default_factory=list,
        description="Команды запуска внешних серверов инструментов (JSON-массив строк)",
    )

    mcp_handshake_timeout_s: float = Field(default=30.0, description="Таймаут рукопожатия внешнего сервера")
    tool_call_timeout_s: float = Field(default=120.0, description="Таймаут вызова инструмента")
    model_timeout_s: float = Field(default=300.0, description="Таймаут вызова модели")
    max_tool_rounds: int = Field(default=25, description="Максимум раундов инструментов за ход")

    @model_validator(mode="after")
    def _validate_limits(self) -> "Settings":
        if self.embedding_dim <= 0:
            raise ValueError("embedding_dim must be positive")
        if self.max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be >= 1")
        if self.thinking_budget < 0:
            raise ValueError("thinking_budget must be >= 0")
        for name in ("mcp_handshake_timeout_s", "tool_call_timeout_s", "model_timeout_s"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        self.mcp_servers = [command.strip() for command in self.mcp_servers if command and command.strip()]
        return self

    @property
    def has_model_credentials(self) -> bool:
        return bool(
            self.gigachat_credentials
            or self.gigachat_access_token
            or (self.gigachat_client_id and self.gigachat_client_secret)
        )

    def external_servers(self) -> list[tuple[str, str]]:
        """Имена и команды внешних серверов: ``mcp-0``, ``mcp-1``, ..."""

        return [(f"mcp-{idx}", command) for idx, command in enumerate(self.mcp_servers)]

    def safe_model_dump(self) -> dict[str, Any]:
        """Дамп настроек без секретов, пригодный для логов."""

        data = self.model_dump()
        for name in _SECRET_FIELDS:
            if data.get(name):
                data[name] = "***"
        return data


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Получить настройки приложения с кешированием."""

    settings = Settings()
    logging.getLogger(__name__).debug("Config loaded: %s", settings.safe_model_dump())
    return settings
