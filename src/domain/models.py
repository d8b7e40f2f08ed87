"""Domain models for sessions, actions, tools and chat messages."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from .enums import ActionKind, MessageRole


@dataclass
class Session:
    """Conversation container; actions reference it by ``session_id``."""

    session_id: str
    created_at: str
    updated_at: str
    title: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Session":
        return cls(
            session_id=str(payload["session_id"]),
            created_at=str(payload.get("created_at", "")),
            updated_at=str(payload.get("updated_at", payload.get("created_at", ""))),
            title=payload.get("title"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Action:
    """Single persisted event of a session (message, tool call, tool result, thinking)."""

    action_id: str
    session_id: str
    sequence: int
    kind: ActionKind
    content: str
    created_at: str
    role: str | None = None
    tool_name: str | None = None
    tool_input: str | None = None
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.kind, str) and not isinstance(self.kind, ActionKind):
            self.kind = ActionKind(self.kind)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Action":
        return cls(
            action_id=str(payload["action_id"]),
            session_id=str(payload["session_id"]),
            sequence=int(payload["sequence"]),
            kind=ActionKind(payload["kind"]),
            content=str(payload.get("content", "")),
            created_at=str(payload.get("created_at", "")),
            role=payload.get("role"),
            tool_name=payload.get("tool_name"),
            tool_input=payload.get("tool_input"),
            tool_call_id=payload.get("tool_call_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


@dataclass
class SearchResult:
    action: Action
    score: float


@dataclass
class ToolDefinition:
    """Model-facing description of a tool.

    ``parameters`` is a JSON schema object; it is advertised to the model and
    used by the owning adapter for argument validation.
    """

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_function_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolCall:
    """Tool invocation requested by the model; ``arguments`` is raw JSON text."""

    id: str
    name: str
    arguments: str = "{}"


@dataclass
class ChatMessage:
    role: MessageRole
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.ASSISTANT, content=content)

    @classmethod
    def assistant_with_tools(cls, content: str, tool_calls: list[ToolCall]) -> "ChatMessage":
        # Providers reject empty assistant content next to tool calls.
        return cls(
            role=MessageRole.ASSISTANT,
            content=content if content else " ",
            tool_calls=list(tool_calls),
        )

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str, name: str | None = None) -> "ChatMessage":
        return cls(role=MessageRole.TOOL, content=content, tool_call_id=tool_call_id, name=name)


@dataclass
class ChatResponse:
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    thinking: str | None = None
    finish_reason: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class ToolOutcome:
    """Result of one tool execution: produced text or an error message."""

    content: str
    is_error: bool = False

    @classmethod
    def success(cls, content: str) -> "ToolOutcome":
        return cls(content=content, is_error=False)

    @classmethod
    def failure(cls, message: str) -> "ToolOutcome":
        return cls(content=message, is_error=True)

    def as_text(self) -> str:
        return f"Error: {self.content}" if self.is_error else self.content


@dataclass
class TurnResult:
    session_id: str
    reply: str
    thinking: list[str] = field(default_factory=list)
    tool_rounds: int = 0
    tool_calls: int = 0
