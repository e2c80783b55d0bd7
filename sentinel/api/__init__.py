"""API endpoints."""

from sentinel.api.routes import router

__all__ = [
    "router",
]
