"""Shared runtime-level exceptions."""
from __future__ import annotations


class ChatRuntimeError(RuntimeError):
    """Raised by chat runtime when request-level processing fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(RuntimeError):
    """Raised at startup when the runtime cannot be assembled."""


class SessionStoreError(RuntimeError):
    """Raised when the session log cannot be read or written."""


class EmbeddingDimensionError(SessionStoreError, ValueError):
    """Raised when a vector length differs from the store's configured dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class ToolServerError(RuntimeError):
    """Raised when a hosted or external tool server cannot be started."""
