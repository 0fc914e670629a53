# src/walkin_queue/services/__init__.py
"""Queue scheduling and notification services."""

from .announcer import AnnouncementSequencer
from .change_feed import ChangeFeed
from .claim import ClaimCoordinator
from .lifecycle import TicketLifecycle
from .monitor import NotificationHub, QueueMonitor
from .reconciler import EventReconciler
from .ticket_store import TicketStore

__all__ = [
    "AnnouncementSequencer",
    "ChangeFeed",
    "ClaimCoordinator",
    "EventReconciler",
    "NotificationHub",
    "QueueMonitor",
    "TicketLifecycle",
    "TicketStore",
]
