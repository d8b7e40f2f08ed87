from __future__ import annotations

import json

import pytest

from chat.memory_store import ChatMemoryStore
from chat.state_store import SessionStore
from domain.enums import ActionKind, MessageRole
from infrastructure.runtime_errors import EmbeddingDimensionError, SessionStoreError


def _store(tmp_path, dim: int = 3) -> SessionStore:
    return SessionStore(ChatMemoryStore(tmp_path), embedding_dim=dim)


def test_sequences_start_at_one_and_are_gap_free(tmp_path) -> None:
    store = _store(tmp_path)

    store.add_message("s1", "user", "hello")
    store.add_tool_call("s1", "call-1", "read_file", '{"path": "a.txt"}')
    store.add_tool_result("s1", "call-1", "contents")
    store.add_thinking("s1", "hmm")
    store.add_message("s2", "user", "other session")

    actions = store.get_actions("s1")
    assert [action.sequence for action in actions] == [1, 2, 3, 4]
    assert [action.kind for action in actions] == [
        ActionKind.MESSAGE,
        ActionKind.TOOL_CALL,
        ActionKind.TOOL_RESULT,
        ActionKind.THINKING,
    ]
    assert store.get_actions("s2")[0].sequence == 1


def test_tool_call_action_records_name_input_and_call_id(tmp_path) -> None:
    store = _store(tmp_path)

    store.add_tool_call("s1", "call-7", "search_files", '{"pattern": "*.py"}')

    call = store.get_tool_calls("s1")[0]
    assert call.content == 'search_files({"pattern": "*.py"})'
    assert call.tool_name == "search_files"
    assert call.tool_input == '{"pattern": "*.py"}'
    assert call.tool_call_id == "call-7"


def test_add_creates_session_implicitly(tmp_path) -> None:
    store = _store(tmp_path)
    assert store.get_session("fresh") is None

    store.add_message("fresh", "user", "hi")

    session = store.get_session("fresh")
    assert session is not None
    assert session.title is None


def test_history_round_trip_preserves_roles_and_order(tmp_path) -> None:
    store = _store(tmp_path)
    store.add_message("s1", "user", "first")
    store.add_message("s1", "assistant", "second")
    store.add_tool_call("s1", "c1", "read_file", "{}")
    store.add_tool_result("s1", "c1", "ignored in history")
    store.add_message("s1", "system", "third")
    store.add_message("s1", "user", "fourth")

    history = store.load_history("s1")

    assert [(message.role, message.content) for message in history] == [
        (MessageRole.USER, "first"),
        (MessageRole.ASSISTANT, "second"),
        (MessageRole.SYSTEM, "third"),
        (MessageRole.USER, "fourth"),
    ]


def test_history_skips_unknown_roles(tmp_path) -> None:
    store = _store(tmp_path)
    store.add_message("s1", "user", "kept")
    store.add_message("s1", "narrator", "dropped")
    store.add_message("s1", "assistant", "kept too")

    history = store.load_history("s1")

    assert [message.content for message in history] == ["kept", "kept too"]


def test_wrong_dimension_embedding_is_rejected_without_mutation(tmp_path) -> None:
    store = _store(tmp_path, dim=3)
    action_id = store.add_message("s1", "user", "hello")
    store.add_embedding(action_id, [1.0, 0.0, 0.0])
    snapshot_before = (tmp_path / "sessions" / "s1.json").read_text(encoding="utf-8")

    with pytest.raises(EmbeddingDimensionError, match="expected 3, got 2"):
        store.add_embedding(action_id, [0.5, 0.5])

    assert store.get_embedding(action_id) == [1.0, 0.0, 0.0]
    assert (tmp_path / "sessions" / "s1.json").read_text(encoding="utf-8") == snapshot_before


def test_embedding_for_unknown_action_fails(tmp_path) -> None:
    store = _store(tmp_path)

    with pytest.raises(SessionStoreError, match="Action not found"):
        store.add_embedding("missing", [1.0, 1.0, 1.0])


def test_embeddings_attach_to_message_actions_only(tmp_path) -> None:
    store = _store(tmp_path)
    call_id = store.add_tool_call("s1", "c1", "read_file", "{}")
    thinking_id = store.add_thinking("s1", "considering")

    with pytest.raises(SessionStoreError, match="message actions only"):
        store.add_embedding(call_id, [1.0, 0.0, 0.0])
    with pytest.raises(SessionStoreError, match="message actions only"):
        store.add_embedding(thinking_id, [1.0, 0.0, 0.0])

    assert store.get_embedding(call_id) is None
    assert store.search_similar([1.0, 0.0, 0.0]) == []


def test_search_similar_ignores_vectors_of_non_message_actions(tmp_path) -> None:
    store = _store(tmp_path)
    message_id = store.add_message("s1", "user", "hello")
    call_id = store.add_tool_call("s1", "c1", "read_file", "{}")
    store.add_embedding(message_id, [0.0, 1.0, 0.0])
    snapshot_path = tmp_path / "sessions" / "s1.json"
    payload = json.loads(snapshot_path.read_text(encoding="utf-8"))
    payload["embeddings"][call_id] = [1.0, 0.0, 0.0]
    snapshot_path.write_text(json.dumps(payload), encoding="utf-8")

    reloaded = _store(tmp_path)
    results = reloaded.search_similar([1.0, 0.0, 0.0], limit=5)

    assert [result.action.kind for result in results] == [ActionKind.MESSAGE]
    assert results[0].action.action_id == message_id


def test_search_similar_orders_by_cosine_similarity(tmp_path) -> None:
    store = _store(tmp_path)
    close = store.add_message("s1", "user", "close")
    far = store.add_message("s1", "assistant", "far")
    middle = store.add_message("s2", "user", "middle")
    store.add_message("s2", "user", "no embedding")
    store.add_embedding(close, [1.0, 0.1, 0.0])
    store.add_embedding(far, [-1.0, 0.0, 0.0])
    store.add_embedding(middle, [1.0, 1.0, 0.0])

    results = store.search_similar([1.0, 0.0, 0.0], limit=2)

    assert [result.action.content for result in results] == ["close", "middle"]
    assert results[0].score > results[1].score

    scoped = store.search_similar([1.0, 0.0, 0.0], limit=5, session_id="s1")
    assert [result.action.content for result in scoped] == ["close", "far"]


def test_search_similar_rejects_wrong_query_dimension(tmp_path) -> None:
    store = _store(tmp_path)

    with pytest.raises(EmbeddingDimensionError):
        store.search_similar([1.0], limit=5)


def test_zero_vector_scores_zero(tmp_path) -> None:
    store = _store(tmp_path)
    action_id = store.add_message("s1", "user", "zero")
    store.add_embedding(action_id, [0.0, 0.0, 0.0])

    results = store.search_similar([1.0, 0.0, 0.0])

    assert results[0].score == 0.0


def test_state_survives_reload_from_disk(tmp_path) -> None:
    store = _store(tmp_path)
    action_id = store.add_message("s1", "user", "persisted")
    store.add_embedding(action_id, [0.0, 1.0, 0.0])
    store.update_session_title("s1", "Persisted title")

    reloaded = _store(tmp_path)

    assert reloaded.get_session("s1").title == "Persisted title"
    assert [action.content for action in reloaded.get_actions("s1")] == ["persisted"]
    assert reloaded.get_embedding(action_id) == [0.0, 1.0, 0.0]
    assert reloaded.add_message("s1", "assistant", "next") is not None
    assert reloaded.get_actions("s1")[-1].sequence == 2


def test_reload_drops_embeddings_of_other_dimension(tmp_path) -> None:
    store = _store(tmp_path, dim=3)
    action_id = store.add_message("s1", "user", "hello")
    store.add_embedding(action_id, [1.0, 2.0, 3.0])

    reloaded = _store(tmp_path, dim=4)

    assert reloaded.get_embedding(action_id) is None


def test_unreadable_snapshot_is_skipped(tmp_path) -> None:
    sessions_dir = tmp_path / "sessions"
    sessions_dir.mkdir()
    (sessions_dir / "broken.json").write_text("{not json", encoding="utf-8")
    (sessions_dir / "ok.json").write_text(
        json.dumps({"session_id": "ok", "created_at": "2024-01-01T00:00:00+00:00", "actions": []}),
        encoding="utf-8",
    )

    store = _store(tmp_path)

    assert [session.session_id for session in store.list_sessions()] == ["ok"]


def test_list_sessions_most_recent_first(tmp_path) -> None:
    store = _store(tmp_path)
    store.create_session("old")
    store.create_session("new")
    store.add_message("old", "user", "bump")

    assert [session.session_id for session in store.list_sessions(limit=2)] == ["old", "new"]
    assert len(store.list_sessions(limit=1)) == 1


def test_create_session_rejects_existing_id(tmp_path) -> None:
    store = _store(tmp_path)
    store.create_session("dup")

    with pytest.raises(SessionStoreError, match="already exists"):
        store.create_session("dup")


def test_write_failure_rolls_back_append(tmp_path, monkeypatch) -> None:
    memory_store = ChatMemoryStore(tmp_path)
    store = SessionStore(memory_store, embedding_dim=3)
    store.add_message("s1", "user", "kept")

    def _fail(_session):
        raise SessionStoreError("disk full")

    monkeypatch.setattr(memory_store, "save_session", _fail)

    with pytest.raises(SessionStoreError, match="disk full"):
        store.add_message("s1", "assistant", "lost")

    assert [action.content for action in store.get_actions("s1")] == ["kept"]


def test_search_text_is_case_insensitive_and_newest_first(tmp_path) -> None:
    store = _store(tmp_path)
    store.add_message("s1", "user", "Deploy the API")
    store.add_message("s2", "assistant", "api deployed")
    store.add_message("s2", "user", "unrelated")

    matches = store.search_text("API")

    assert [action.content for action in matches] == ["api deployed", "Deploy the API"]
    assert store.search_text("api", limit=1)[0].content == "api deployed"
    assert store.search_text("   ") == []
