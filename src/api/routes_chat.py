"""Chat API routes: session lifecycle, turns and similarity search."""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request, status

from api.chat_schemas import (
    ChatActionDto,
    ChatActionsResponse,
    ChatMessageRequest,
    ChatSearchHitDto,
    ChatSearchRequest,
    ChatSearchResponse,
    ChatSessionCreateRequest,
    ChatSessionDto,
    ChatSessionsListResponse,
    ChatTurnResponse,
)
from infrastructure.runtime_errors import ChatRuntimeError, EmbeddingDimensionError, SessionStoreError

router = APIRouter(prefix="/chat", tags=["chat"])
logger = logging.getLogger(__name__)


def _get_runtime(request: Request):
    runtime = getattr(request.app.state, "chat_runtime", None)
    if not runtime:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat runtime is not initialized",
        )
    return runtime


def _runtime_to_http_error(exc: ChatRuntimeError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code or status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(exc),
    )


@router.post("/sessions", response_model=ChatSessionDto, status_code=status.HTTP_201_CREATED)
async def create_session(payload: ChatSessionCreateRequest, request: Request) -> ChatSessionDto:
    runtime = _get_runtime(request)
    try:
        session = runtime.sessions.resolve(payload.session_id)
    except SessionStoreError as exc:
        logger.exception("Failed to resolve session")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return ChatSessionDto.model_validate(session)


@router.get("/sessions", response_model=ChatSessionsListResponse)
async def list_sessions(
    request: Request,
    limit: int = Query(default=10, ge=1, le=200),
) -> ChatSessionsListResponse:
    runtime = _get_runtime(request)
    sessions = runtime.store.list_sessions(limit=limit)
    return ChatSessionsListResponse(items=[ChatSessionDto.model_validate(item) for item in sessions])


@router.get("/sessions/{session_id}/actions", response_model=ChatActionsResponse)
async def get_actions(session_id: str, request: Request) -> ChatActionsResponse:
    runtime = _get_runtime(request)
    if runtime.store.get_session(session_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Session not found: {session_id}")
    actions = runtime.store.get_actions(session_id)
    return ChatActionsResponse(
        session_id=session_id,
        items=[ChatActionDto.model_validate(action) for action in actions],
    )


@router.post("/sessions/{session_id}/messages", response_model=ChatTurnResponse)
async def send_message(session_id: str, payload: ChatMessageRequest, request: Request) -> ChatTurnResponse:
    runtime = _get_runtime(request)
    try:
        result = await runtime.engine.process_turn(session_id, payload.content)
        title = runtime.sessions.update_title_if_needed(session_id)
    except ChatRuntimeError as exc:
        logger.warning("Chat turn failed for session %s: %s", session_id, exc)
        raise _runtime_to_http_error(exc) from exc
    except SessionStoreError as exc:
        logger.exception("Session log write failed for session %s", session_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return ChatTurnResponse(
        session_id=result.session_id,
        reply=result.reply,
        thinking=result.thinking,
        tool_rounds=result.tool_rounds,
        tool_calls=result.tool_calls,
        title=title,
    )


@router.post("/search", response_model=ChatSearchResponse)
async def search(payload: ChatSearchRequest, request: Request) -> ChatSearchResponse:
    runtime = _get_runtime(request)
    try:
        results = await runtime.engine.search_messages(
            payload.query,
            payload.limit,
            session_id=payload.session_id,
        )
    except ChatRuntimeError as exc:
        logger.warning("Similarity search failed: %s", exc)
        raise _runtime_to_http_error(exc) from exc
    except EmbeddingDimensionError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return ChatSearchResponse(
        items=[
            ChatSearchHitDto(action=ChatActionDto.model_validate(result.action), score=result.score)
            for result in results
        ]
    )
