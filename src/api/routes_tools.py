"""Listing of tools advertised to the model."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, status

from api.schemas import ToolDefinitionDto, ToolsListResponse

router = APIRouter(prefix="/tools", tags=["tools"])


def _get_registry(request: Request):
    runtime = getattr(request.app.state, "chat_runtime", None)
    if not runtime:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat runtime is not initialized",
        )
    return runtime.registry


@router.get("", response_model=ToolsListResponse)
async def list_tools(request: Request) -> ToolsListResponse:
    registry = _get_registry(request)
    items: list[ToolDefinitionDto] = []
    for adapter in registry.adapters:
        for definition in adapter.definitions():
            items.append(
                ToolDefinitionDto(
                    name=definition.name,
                    description=definition.description,
                    parameters=definition.parameters,
                    source=adapter.source,
                )
            )
    return ToolsListResponse(items=items, duplicates=sorted(registry.duplicate_names()))
