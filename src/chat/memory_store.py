"""File-backed snapshots of session action logs."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from infrastructure.runtime_errors import SessionStoreError

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatMemoryStore:
    """Stores one JSON document per session: header, actions and embeddings."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)
        self._sessions_dir = self._base_dir / "sessions"
        self._sessions_dir.mkdir(parents=True, exist_ok=True)

    @property
    def sessions_dir(self) -> Path:
        return self._sessions_dir

    def load_sessions(self) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = []
        for path in sorted(self._sessions_dir.glob("*.json")):
            try:
                payload = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Skipping unreadable session snapshot %s: %s", path.name, exc)
                continue
            if isinstance(payload, dict) and payload.get("session_id"):
                result.append(payload)
        return result

    def save_session(self, session: dict[str, Any]) -> None:
        session_id = str(session.get("session_id", "")).strip()
        if not session_id:
            raise SessionStoreError("Cannot persist a session without session_id")
        payload = dict(session)
        payload["persisted_at"] = _utcnow()
        target = self._sessions_dir / f"{session_id}.json"
        tmp_target = target.with_suffix(".json.tmp")
        try:
            tmp_target.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_target, target)
        except OSError as exc:
            raise SessionStoreError(f"Failed to persist session {session_id}: {exc}") from exc
