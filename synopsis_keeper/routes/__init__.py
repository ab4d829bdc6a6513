from __future__ import annotations

from fastapi import APIRouter

from .conversations import router as conversations_router
from .meta import router as meta_router
from .synopsis import router as synopsis_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(meta_router)
api_router.include_router(conversations_router)
api_router.include_router(synopsis_router)

__all__ = ["api_router"]
