"""Session store: append-only action log per session with similarity search."""
from __future__ import annotations

import logging
import math
from copy import deepcopy
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Sequence
from uuid import uuid4

from chat.memory_store import ChatMemoryStore
from domain.enums import ActionKind, MessageRole
from domain.models import Action, ChatMessage, SearchResult, Session
from infrastructure.runtime_errors import EmbeddingDimensionError, SessionStoreError

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_DIM = 1024


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    dot = sum(a * b for a, b in zip(left, right))
    left_norm = math.sqrt(sum(a * a for a in left))
    right_norm = math.sqrt(sum(b * b for b in right))
    if left_norm == 0.0 or right_norm == 0.0:
        return 0.0
    return dot / (left_norm * right_norm)


class SessionStore:
    """Thread-safe in-memory session log with filesystem snapshots.

    Every append assigns the next per-session sequence number (starting at 1)
    and is persisted before the call returns. A failed snapshot write rolls
    the in-memory append back and raises :class:`SessionStoreError`.
    """

    def __init__(
        self,
        memory_store: ChatMemoryStore,
        *,
        embedding_dim: int = DEFAULT_EMBEDDING_DIM,
    ) -> None:
        if embedding_dim <= 0:
            raise ValueError("embedding_dim must be positive")
        self._memory_store = memory_store
        self._embedding_dim = embedding_dim
        self._lock = RLock()
        self._sessions: dict[str, dict[str, Any]] = {}
        self._action_index: dict[str, str] = {}
        self._load_sessions()

    @property
    def embedding_dim(self) -> int:
        return self._embedding_dim

    def _load_sessions(self) -> None:
        for session in self._memory_store.load_sessions():
            session_id = str(session.get("session_id", "")).strip()
            if not session_id:
                continue
            session.setdefault("actions", [])
            session.setdefault("embeddings", {})
            session.setdefault("title", None)
            session["actions"].sort(key=lambda item: int(item.get("sequence", 0)))
            stale = [
                action_id
                for action_id, vector in session["embeddings"].items()
                if len(vector) != self._embedding_dim
            ]
            for action_id in stale:
                logger.warning(
                    "Dropping embedding of action %s: stored dimension differs from %s",
                    action_id,
                    self._embedding_dim,
                )
                session["embeddings"].pop(action_id, None)
            self._sessions[session_id] = session
            for action in session["actions"]:
                self._action_index[str(action["action_id"])] = session_id
        logger.debug("Loaded %s sessions from snapshots", len(self._sessions))

    def _persist(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        self._memory_store.save_session(session)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def _new_session_locked(self, session_id: str, title: str | None) -> dict[str, Any]:
        now = _utcnow()
        payload: dict[str, Any] = {
            "session_id": session_id,
            "title": title,
            "created_at": now,
            "updated_at": now,
            "actions": [],
            "embeddings": {},
        }
        self._sessions[session_id] = payload
        try:
            self._persist(session_id)
        except SessionStoreError:
            self._sessions.pop(session_id, None)
            raise
        return payload

    def create_session(self, session_id: str | None = None, title: str | None = None) -> Session:
        with self._lock:
            resolved_id = session_id or str(uuid4())
            if resolved_id in self._sessions:
                raise SessionStoreError(f"Session already exists: {resolved_id}")
            payload = self._new_session_locked(resolved_id, title)
            return Session.from_dict(payload)

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return Session.from_dict(session) if session else None

    def get_or_create_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = self._new_session_locked(session_id, None)
            return Session.from_dict(session)

    def list_sessions(self, limit: int = 10) -> list[Session]:
        with self._lock:
            rows = sorted(
                self._sessions.values(),
                key=lambda item: str(item.get("updated_at", "")),
                reverse=True,
            )
            return [Session.from_dict(row) for row in rows[: max(0, limit)]]

    def update_session_title(self, session_id: str, title: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionStoreError(f"Session not found: {session_id}")
            previous = (session.get("title"), session.get("updated_at"))
            session["title"] = title
            session["updated_at"] = _utcnow()
            try:
                self._persist(session_id)
            except SessionStoreError:
                session["title"], session["updated_at"] = previous
                raise

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def _append_action(
        self,
        session_id: str,
        kind: ActionKind,
        content: str,
        **fields: str | None,
    ) -> str:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = self._new_session_locked(session_id, None)
            actions = session["actions"]
            sequence = max((int(item["sequence"]) for item in actions), default=0) + 1
            action = Action(
                action_id=str(uuid4()),
                session_id=session_id,
                sequence=sequence,
                kind=kind,
                content=content,
                created_at=_utcnow(),
                **fields,
            )
            previous_updated_at = session.get("updated_at")
            actions.append(action.to_dict())
            session["updated_at"] = action.created_at
            try:
                self._persist(session_id)
            except SessionStoreError:
                actions.pop()
                session["updated_at"] = previous_updated_at
                raise
            self._action_index[action.action_id] = session_id
            return action.action_id

    def add_message(self, session_id: str, role: str, content: str) -> str:
        role_value = role.value if isinstance(role, MessageRole) else str(role)
        return self._append_action(session_id, ActionKind.MESSAGE, content, role=role_value)

    def add_tool_call(self, session_id: str, tool_call_id: str, tool_name: str, tool_input: str) -> str:
        return self._append_action(
            session_id,
            ActionKind.TOOL_CALL,
            f"{tool_name}({tool_input})",
            tool_name=tool_name,
            tool_input=tool_input,
            tool_call_id=tool_call_id,
        )

    def add_tool_result(self, session_id: str, tool_call_id: str, content: str) -> str:
        return self._append_action(
            session_id,
            ActionKind.TOOL_RESULT,
            content,
            tool_call_id=tool_call_id,
        )

    def add_thinking(self, session_id: str, content: str) -> str:
        return self._append_action(session_id, ActionKind.THINKING, content)

    def get_actions(self, session_id: str) -> list[Action]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return []
            return [Action.from_dict(item) for item in session["actions"]]

    def get_actions_by_type(self, session_id: str, kind: ActionKind) -> list[Action]:
        return [action for action in self.get_actions(session_id) if action.kind is kind]

    def get_messages(self, session_id: str) -> list[Action]:
        return self.get_actions_by_type(session_id, ActionKind.MESSAGE)

    def get_tool_calls(self, session_id: str) -> list[Action]:
        return self.get_actions_by_type(session_id, ActionKind.TOOL_CALL)

    def action_count(self, session_id: str) -> int:
        with self._lock:
            session = self._sessions.get(session_id)
            return len(session["actions"]) if session else 0

    def load_history(self, session_id: str) -> list[ChatMessage]:
        """Replays persisted ``message`` actions as model-facing messages."""

        history: list[ChatMessage] = []
        for action in self.get_messages(session_id):
            role = MessageRole.from_stored(action.role)
            if role is None:
                logger.debug(
                    "Skipping action %s with unrecognized role %r", action.action_id, action.role
                )
                continue
            history.append(ChatMessage(role=role, content=action.content))
        return history

    def search_text(self, query: str, *, limit: int = 20) -> list[Action]:
        """Case-insensitive substring search over all sessions, newest first."""

        needle = query.strip().casefold()
        if not needle:
            return []
        with self._lock:
            matches = [
                item
                for session in self._sessions.values()
                for item in session["actions"]
                if needle in str(item.get("content", "")).casefold()
            ]
        # Later appends win timestamp ties.
        matches.reverse()
        matches.sort(key=lambda item: str(item.get("created_at", "")), reverse=True)
        return [Action.from_dict(item) for item in matches[: max(0, limit)]]

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------
    def add_embedding(self, action_id: str, vector: Sequence[float]) -> None:
        if len(vector) != self._embedding_dim:
            raise EmbeddingDimensionError(self._embedding_dim, len(vector))
        with self._lock:
            session_id = self._action_index.get(action_id)
            if session_id is None:
                raise SessionStoreError(f"Action not found: {action_id}")
            session = self._sessions[session_id]
            kind = next(
                (item.get("kind") for item in session["actions"] if item["action_id"] == action_id),
                None,
            )
            if kind != ActionKind.MESSAGE.value:
                raise SessionStoreError(f"Embeddings attach to message actions only, got {kind}: {action_id}")
            embeddings = session["embeddings"]
            previous = embeddings.get(action_id)
            embeddings[action_id] = [float(value) for value in vector]
            try:
                self._persist(session_id)
            except SessionStoreError:
                if previous is None:
                    embeddings.pop(action_id, None)
                else:
                    embeddings[action_id] = previous
                raise

    def get_embedding(self, action_id: str) -> list[float] | None:
        with self._lock:
            session_id = self._action_index.get(action_id)
            if session_id is None:
                return None
            vector = self._sessions[session_id]["embeddings"].get(action_id)
            return deepcopy(vector) if vector is not None else None

    def search_similar(
        self,
        query_vector: Sequence[float],
        limit: int = 5,
        *,
        session_id: str | None = None,
    ) -> list[SearchResult]:
        if len(query_vector) != self._embedding_dim:
            raise EmbeddingDimensionError(self._embedding_dim, len(query_vector))
        with self._lock:
            if session_id is not None:
                sessions = [self._sessions[session_id]] if session_id in self._sessions else []
            else:
                sessions = list(self._sessions.values())
            scored: list[tuple[float, dict[str, Any]]] = []
            for session in sessions:
                embeddings = session["embeddings"]
                for item in session["actions"]:
                    if item.get("kind") != ActionKind.MESSAGE.value:
                        continue
                    vector = embeddings.get(item["action_id"])
                    if vector is None:
                        continue
                    scored.append((_cosine_similarity(query_vector, vector), item))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [
            SearchResult(action=Action.from_dict(item), score=score)
            for score, item in scored[: max(0, limit)]
        ]
