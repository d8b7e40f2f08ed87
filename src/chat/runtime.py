"""Chat runtime: one turn of conversation as a LangGraph state machine."""
from __future__ import annotations

import asyncio
import logging
from threading import RLock
from typing import Any, TypedDict

from langgraph.graph import END, StateGraph

from app.observability import metrics, traced_span
from chat.state_store import SessionStore
from chat.tool_registry import ToolRegistry
from domain.enums import MessageRole, TurnPhase
from domain.models import ChatMessage, ChatResponse, SearchResult, ToolDefinition, TurnResult
from infrastructure.llm_client import LLMClient
from infrastructure.runtime_errors import ChatRuntimeError, EmbeddingDimensionError

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are Secretary, a helpful assistant."
TOOL_SYSTEM_PROMPT = (
    "You are Secretary, a helpful assistant with access to tools. "
    "Use tools when appropriate to help the user."
)
DEFAULT_MAX_TOOL_ROUNDS = 25


class _TurnState(TypedDict, total=False):
    session_id: str
    messages: list[ChatMessage]
    tools: list[ToolDefinition]
    response: ChatResponse
    thinking: list[str]
    tool_rounds: int
    tool_calls: int
    reply: str


class ChatEngine:
    """Runs chat turns against the model, the tool registry and the session store.

    A turn is ``call_model`` followed by any number of ``execute_tools`` ->
    ``call_model`` rounds and ends in ``finalize`` once the model answers
    without tool calls. Turns of one session are serialised.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        llm_client: LLMClient,
        registry: ToolRegistry,
        system_prompt: str | None = None,
        thinking_budget: int | None = None,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        model_timeout_s: float | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self._llm = llm_client
        self._system_prompt = system_prompt
        self._thinking_budget = thinking_budget or None
        self._max_tool_rounds = max(1, max_tool_rounds)
        self._model_timeout_s = model_timeout_s
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._locks_guard = RLock()
        self._phases: dict[str, TurnPhase] = {}
        self._graph = self._build_graph()

    @property
    def system_prompt(self) -> str:
        if self._system_prompt:
            return self._system_prompt
        return TOOL_SYSTEM_PROMPT if self.registry.has_tools() else DEFAULT_SYSTEM_PROMPT

    def phase(self, session_id: str) -> TurnPhase:
        return self._phases.get(session_id, TurnPhase.IDLE)

    def _set_phase(self, session_id: str, phase: TurnPhase) -> None:
        if phase is TurnPhase.IDLE:
            self._phases.pop(session_id, None)
        else:
            self._phases[session_id] = phase
        logger.debug("Session %s turn phase -> %s", session_id, phase.value)

    def _session_lock(self, session_id: str) -> asyncio.Lock:
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[session_id] = lock
            self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
            return lock

    def _release_session_lock(self, session_id: str) -> None:
        # The lock is dropped once no turn holds or awaits it.
        with self._locks_guard:
            users = self._lock_users.get(session_id, 0) - 1
            if users > 0:
                self._lock_users[session_id] = users
            else:
                self._lock_users.pop(session_id, None)
                self._locks.pop(session_id, None)

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------
    def _build_graph(self):
        graph = StateGraph(_TurnState)
        graph.add_node("call_model", self._call_model_node)
        graph.add_node("execute_tools", self._execute_tools_node)
        graph.add_node("finalize", self._finalize_node)
        graph.set_entry_point("call_model")
        graph.add_conditional_edges(
            "call_model",
            self._route_after_model,
            {"execute_tools": "execute_tools", "finalize": "finalize"},
        )
        graph.add_edge("execute_tools", "call_model")
        graph.add_edge("finalize", END)
        return graph.compile()

    @staticmethod
    def _route_after_model(state: _TurnState) -> str:
        response = state.get("response")
        return "execute_tools" if response is not None and response.has_tool_calls else "finalize"

    async def _call_model_node(self, state: _TurnState) -> dict[str, Any]:
        session_id = state["session_id"]
        self._set_phase(session_id, TurnPhase.AWAITING_MODEL)
        tools = state.get("tools") or None
        try:
            with traced_span("chat.model_call"):
                response = await asyncio.wait_for(
                    self._llm.chat(state["messages"], tools, self._thinking_budget),
                    timeout=self._model_timeout_s,
                )
        except asyncio.TimeoutError as exc:
            metrics.inc("chat.model_call.failed")
            raise ChatRuntimeError(
                f"Model call timed out after {self._model_timeout_s}s", status_code=502
            ) from exc
        except ChatRuntimeError:
            raise
        except Exception as exc:
            metrics.inc("chat.model_call.failed")
            logger.error("Model call failed for session %s: %s", session_id, exc)
            raise ChatRuntimeError(f"Model call failed: {exc}", status_code=502) from exc

        thinking = list(state.get("thinking", []))
        if response.thinking:
            self.store.add_thinking(session_id, response.thinking)
            thinking.append(response.thinking)
        if response.has_tool_calls:
            self._set_phase(session_id, TurnPhase.TOOL_CALLS_PENDING)
        return {"response": response, "thinking": thinking}

    async def _execute_tools_node(self, state: _TurnState) -> dict[str, Any]:
        session_id = state["session_id"]
        rounds = int(state.get("tool_rounds", 0))
        if rounds >= self._max_tool_rounds:
            raise ChatRuntimeError(
                f"Turn exceeded {self._max_tool_rounds} tool rounds without a final answer",
                status_code=508,
            )
        self._set_phase(session_id, TurnPhase.EXECUTING_TOOLS)
        response = state["response"]
        assistant = ChatMessage.assistant_with_tools(response.content or "", response.tool_calls)
        self.store.add_message(session_id, MessageRole.ASSISTANT, assistant.content)
        messages = [*state["messages"], assistant]

        # One call at a time, in request order.
        for call in response.tool_calls:
            source = self.registry.source_of(call.name)
            logger.info("[%s] %s: %s", source.value, call.name, call.arguments)
            self.store.add_tool_call(session_id, call.id, call.name, call.arguments)
            with traced_span("chat.tool_call"):
                outcome = await self.registry.execute(call.name, call.arguments)
            if outcome.is_error:
                metrics.inc("chat.tool_call.failed")
                logger.warning("Tool %s failed: %s", call.name, outcome.content)
            result_text = outcome.as_text()
            self.store.add_tool_result(session_id, call.id, result_text)
            messages.append(ChatMessage.tool_result(call.id, result_text, name=call.name))

        return {
            "messages": messages,
            "tool_rounds": rounds + 1,
            "tool_calls": int(state.get("tool_calls", 0)) + len(response.tool_calls),
        }

    async def _finalize_node(self, state: _TurnState) -> dict[str, Any]:
        session_id = state["session_id"]
        reply = state["response"].content or ""
        action_id = self.store.add_message(session_id, MessageRole.ASSISTANT, reply)
        await self._embed_best_effort(action_id, reply)
        self._set_phase(session_id, TurnPhase.DONE)
        return {
            "reply": reply,
            "messages": [*state["messages"], ChatMessage.assistant(reply)],
        }

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------
    async def _embed_best_effort(self, action_id: str, text: str) -> None:
        if not text.strip():
            return
        try:
            vector = await self._llm.embed(text)
        except Exception as exc:
            metrics.inc("chat.embedding.failed")
            logger.warning("Embedding generation failed for action %s: %s", action_id, exc)
            return
        if vector is None:
            return
        try:
            self.store.add_embedding(action_id, vector)
        except EmbeddingDimensionError as exc:
            metrics.inc("chat.embedding.failed")
            logger.warning("Embedding for action %s rejected: %s", action_id, exc)

    async def search_messages(
        self,
        query: str,
        limit: int = 5,
        *,
        session_id: str | None = None,
    ) -> list[SearchResult]:
        """Embeds ``query`` and ranks stored messages by similarity.

        An empty list means embeddings are unavailable. Embedding failures
        raise ``ChatRuntimeError`` (502); a query vector of the wrong size
        raises ``EmbeddingDimensionError``.
        """

        try:
            vector = await self._llm.embed(query)
        except Exception as exc:
            metrics.inc("chat.embedding.failed")
            raise ChatRuntimeError(f"Embedding failed: {exc}", status_code=502) from exc
        if vector is None:
            return []
        return self.store.search_similar(vector, limit, session_id=session_id)

    async def search_context(self, query: str, limit: int = 5, *, session_id: str | None = None) -> list[str]:
        """Returns contents of stored messages most similar to ``query``."""

        try:
            results = await self.search_messages(query, limit, session_id=session_id)
        except (ChatRuntimeError, EmbeddingDimensionError) as exc:
            logger.warning("Context search skipped: %s", exc)
            return []
        return [result.action.content for result in results]

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------
    async def process_turn(self, session_id: str, content: str) -> TurnResult:
        if not content or not content.strip():
            raise ChatRuntimeError("Message content must not be empty", status_code=400)

        lock = self._session_lock(session_id)
        try:
            async with lock:
                try:
                    with traced_span("chat.turn"):
                        return await self._run_turn(session_id, content)
                finally:
                    self._set_phase(session_id, TurnPhase.IDLE)
        finally:
            self._release_session_lock(session_id)

    async def _run_turn(self, session_id: str, content: str) -> TurnResult:
        history = self.store.load_history(session_id)
        action_id = self.store.add_message(session_id, MessageRole.USER, content)
        await self._embed_best_effort(action_id, content)

        messages = [ChatMessage.system(self.system_prompt), *history, ChatMessage.user(content)]
        state: _TurnState = {
            "session_id": session_id,
            "messages": messages,
            "tools": self.registry.list_definitions(),
            "thinking": [],
            "tool_rounds": 0,
            "tool_calls": 0,
        }
        # Each tool round visits two nodes; leave headroom for the round guard to fire first.
        recursion_limit = self._max_tool_rounds * 2 + 10
        final_state = await self._graph.ainvoke(state, config={"recursion_limit": recursion_limit})

        result = TurnResult(
            session_id=session_id,
            reply=str(final_state.get("reply", "")),
            thinking=list(final_state.get("thinking", [])),
            tool_rounds=int(final_state.get("tool_rounds", 0)),
            tool_calls=int(final_state.get("tool_calls", 0)),
        )
        logger.info(
            "Turn completed for session %s: tool_rounds=%s tool_calls=%s",
            session_id,
            result.tool_rounds,
            result.tool_calls,
        )
        return result
