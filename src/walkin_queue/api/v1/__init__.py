# src/walkin_queue/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import notifications_router, queue_router, reference_router

__all__ = [
    "notifications_router",
    "queue_router",
    "reference_router",
]
