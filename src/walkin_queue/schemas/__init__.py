# src/walkin_queue/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .notification import (
    ClearNotificationsRequest,
    Notification,
    NotificationFeed,
    ReconcilerSnapshot,
)
from .queue import (
    CallNextRequest,
    ClaimResponse,
    ReferenceResponse,
    SequenceResponse,
    TicketCreate,
    TransferRequest,
    TransitionResponse,
)

__all__ = [
    "CallNextRequest", "ClaimResponse",
    "ClearNotificationsRequest",
    "Notification", "NotificationFeed",
    "ReconcilerSnapshot", "ReferenceResponse",
    "SequenceResponse", "TicketCreate",
    "TransferRequest", "TransitionResponse",
]
