"""Chat runtime components."""

from chat.bootstrap import ChatRuntime, create_chat_runtime
from chat.runtime import ChatEngine
from chat.session import SessionManager
from chat.state_store import SessionStore
from chat.tool_registry import ToolRegistry

__all__ = [
    "ChatEngine",
    "ChatRuntime",
    "SessionManager",
    "SessionStore",
    "ToolRegistry",
    "create_chat_runtime",
]
