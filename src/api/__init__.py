"""Маршруты HTTP API."""
from fastapi import APIRouter

from .routes_chat import router as chat_router
from .routes_tools import router as tools_router

router = APIRouter()
router.include_router(chat_router)
router.include_router(tools_router)

__all__ = ["router"]
