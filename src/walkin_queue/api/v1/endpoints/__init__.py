# src/walkin_queue/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .notifications import router as notifications_router
from .queue import router as queue_router
from .reference import router as reference_router

__all__ = [
    "notifications_router",
    "queue_router",
    "reference_router",
]
