"""HTTP API for the OnAir service."""

from .endpoints import ratings_router, system_router

__all__ = ["ratings_router", "system_router"]
