from __future__ import annotations

from chat.memory_store import ChatMemoryStore
from chat.session import SessionManager
from chat.state_store import SessionStore


def _manager(tmp_path) -> tuple[SessionManager, SessionStore]:
    store = SessionStore(ChatMemoryStore(tmp_path), embedding_dim=3)
    return SessionManager(store), store


def test_explicit_id_is_created_or_reused(tmp_path) -> None:
    manager, store = _manager(tmp_path)

    first = manager.resolve("work")
    again = manager.resolve("work")

    assert first.session_id == again.session_id == "work"
    assert len(store.list_sessions()) == 1


def test_without_id_resumes_most_recent_session(tmp_path) -> None:
    manager, store = _manager(tmp_path)
    store.create_session("older")
    store.create_session("newer")
    store.add_message("newer", "user", "latest activity")

    assert manager.resolve().session_id == "newer"


def test_without_id_and_no_sessions_creates_one(tmp_path) -> None:
    manager, store = _manager(tmp_path)

    session = manager.resolve()

    assert len(session.session_id) == 36
    assert store.get_session(session.session_id) is not None


def test_title_is_set_after_first_exchange(tmp_path) -> None:
    manager, store = _manager(tmp_path)
    long_message = "Plan the quarterly offsite for the platform team in Lisbon, May"
    store.add_message("s1", "user", long_message)

    assert manager.update_title_if_needed("s1") is None

    store.add_message("s1", "assistant", "Sure")
    title = manager.update_title_if_needed("s1")

    assert title == long_message[:50]
    assert store.get_session("s1").title == long_message[:50]

    store.add_message("s1", "user", "Another question")
    assert manager.update_title_if_needed("s1") is None
    assert store.get_session("s1").title == long_message[:50]
