"""API routes for LiveRelay"""

from fastapi import APIRouter

from .health import router as health_router
from .streams import router as streams_router

api_router = APIRouter(prefix="/api")

api_router.include_router(health_router)
api_router.include_router(streams_router)

__all__ = ["api_router"]
