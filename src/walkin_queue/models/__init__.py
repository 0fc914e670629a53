# src/walkin_queue/models/__init__.py
"""SQLAlchemy models for the walk-in queue."""

from .account import AccountMetadata
from .office import Office, ServiceWindow
from .reference import PriorityType, StatusType
from .ticket import Sequence, Ticket

__all__ = [
    "AccountMetadata",
    "Office", "ServiceWindow",
    "PriorityType", "StatusType",
    "Sequence", "Ticket",
]
