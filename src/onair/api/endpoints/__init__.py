"""API endpoint routers."""

from .ratings import router as ratings_router
from .system import router as system_router

__all__ = ["ratings_router", "system_router"]
