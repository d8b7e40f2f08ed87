"""Active session resolution and auto-titling."""
from __future__ import annotations

import logging
from uuid import uuid4

from chat.state_store import SessionStore
from domain.models import Session

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50


class SessionManager:
    def __init__(self, store: SessionStore) -> None:
        self._store = store

    def resolve(self, session_id: str | None = None) -> Session:
        """Explicit id -> get or create; no id -> most recent session or a new one."""

        if session_id:
            session = self._store.get_or_create_session(session_id)
            logger.info("Session: %s (%s)", session.session_id, session.title or "Untitled")
            return session

        recent = self._store.list_sessions(limit=1)
        if recent:
            session = recent[0]
            logger.info("Resuming session: %s (%s)", session.session_id, session.title or "Untitled")
            return session

        session = self._store.create_session(str(uuid4()))
        logger.info("New session: %s", session.session_id)
        return session

    def update_title_if_needed(self, session_id: str) -> str | None:
        # Only right after the first exchange: one user message and one reply.
        if self._store.action_count(session_id) != 2:
            return None
        messages = self._store.get_messages(session_id)
        if not messages:
            return None
        title = messages[0].content[:TITLE_MAX_CHARS]
        self._store.update_session_title(session_id, title)
        return title
