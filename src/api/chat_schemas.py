"""Pydantic-схемы чат-API: сессии, действия, ходы и поиск."""

from __future__ import annotations

from pydantic import Field

from api.schemas import ApiBaseModel
from domain.enums import ActionKind


class ChatSessionCreateRequest(ApiBaseModel):
    session_id: str | None = Field(
        default=None,
        description="Идентификатор сессии; без него возобновляется последняя или создаётся новая",
    )


class ChatSessionDto(ApiBaseModel):
    session_id: str
    title: str | None = None
    created_at: str
    updated_at: str


class ChatSessionsListResponse(ApiBaseModel):
    items: list[ChatSessionDto] = Field(default_factory=list)


class ChatActionDto(ApiBaseModel):
    action_id: str
    session_id: str
    sequence: int
    kind: ActionKind
    role: str | None = None
    content: str
    tool_name: str | None = None
    tool_input: str | None = None
    tool_call_id: str | None = None
    created_at: str


class ChatActionsResponse(ApiBaseModel):
    session_id: str
    items: list[ChatActionDto] = Field(default_factory=list)


class ChatMessageRequest(ApiBaseModel):
    content: str = Field(..., min_length=1, description="Текст сообщения пользователя")


class ChatTurnResponse(ApiBaseModel):
    session_id: str
    reply: str
    thinking: list[str] = Field(default_factory=list)
    tool_rounds: int = 0
    tool_calls: int = 0
    title: str | None = None


class ChatSearchRequest(ApiBaseModel):
    query: str = Field(..., min_length=1)
    limit: int = Field(default=5, ge=1, le=100)
    session_id: str | None = None


class ChatSearchHitDto(ApiBaseModel):
    action: ChatActionDto
    score: float


class ChatSearchResponse(ApiBaseModel):
    items: list[ChatSearchHitDto] = Field(default_factory=list)
