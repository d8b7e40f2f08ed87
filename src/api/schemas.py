"""Pydantic-схемы запросов и ответов для HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from domain.enums import ToolSource


def _to_camel(value: str) -> str:
    """Преобразует snake_case в camelCase для JSON."""

    parts = value.split("_")
    return parts[0] + "".join(word.capitalize() for word in parts[1:])


class ApiBaseModel(BaseModel):
    """Базовая модель для API со стилем camelCase и populate_by_name."""

    model_config = ConfigDict(
        alias_generator=_to_camel, populate_by_name=True, from_attributes=True
    )


class ToolDefinitionDto(ApiBaseModel):
    """Инструмент, доступный модели."""

    name: str = Field(..., description="Имя инструмента")
    description: str = Field(default="", description="Описание для модели")
    parameters: dict[str, Any] = Field(default_factory=dict, description="JSON-схема аргументов")
    source: ToolSource = Field(..., description="Источник: local, hosted или external")


class ToolsListResponse(ApiBaseModel):
    items: list[ToolDefinitionDto] = Field(default_factory=list)
    duplicates: list[str] = Field(
        default_factory=list,
        description="Имена, объявленные несколькими источниками; вызывается первый по приоритету",
    )
