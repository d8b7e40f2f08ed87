"""Enumerations shared by the session log, the tool registry and the chat engine."""
from __future__ import annotations

from enum import Enum


class ActionKind(str, Enum):
    """Kinds of events persisted in a session's action log."""

    MESSAGE = "message"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    THINKING = "thinking"


class MessageRole(str, Enum):
    """Roles of model-facing chat messages."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"

    @classmethod
    def from_stored(cls, value: str | None) -> "MessageRole | None":
        """Maps a persisted role string to a replayable role.

        Only conversational roles are replayed; tool results are not stored as
        ``message`` actions, so ``tool`` is treated as unrecognized here.
        """

        normalized = str(value or "").strip().lower()
        if normalized in {cls.SYSTEM.value, cls.USER.value, cls.ASSISTANT.value}:
            return cls(normalized)
        return None


class ToolSource(str, Enum):
    """Adapter that owns a tool name."""

    LOCAL = "local"
    HOSTED = "hosted"
    EXTERNAL = "external"
    UNKNOWN = "unknown"


class TurnPhase(str, Enum):
    """States of one chat turn."""

    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
