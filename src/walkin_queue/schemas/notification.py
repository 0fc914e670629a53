# src/walkin_queue/schemas/notification.py
"""Notification feed schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Notification(BaseModel):
    """One arrival in the notification feed.

    ``ticket_id`` is the dedup key: every later row for the same ticket is a
    staff action on that arrival and never produces another entry.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str
    sequence_id: int
    ticket_id: int
    office_id: int
    office_name: str
    ticket_code: str
    priority_label: str
    timestamp: datetime
    read: bool = False


class NotificationFeed(BaseModel):
    """Response body for the notification feed of one account."""

    account_id: str
    unread: int
    cleared_at: datetime | None = None
    notifications: list[Notification] = Field(default_factory=list)


class ClearNotificationsRequest(BaseModel):
    """Schema for clearing an account's notification feed."""

    account_id: str = Field(..., min_length=1, description="Account whose feed is cleared")


class ReconcilerSnapshot(BaseModel):
    """Persisted reconciler state.

    Sets are stored as sorted lists so the payload stays stable and JSON
    friendly; they are turned back into sets only in memory.
    """

    notifications: list[Notification] = Field(default_factory=list)
    seen_sequence_ids: list[int] = Field(default_factory=list)
    seen_ticket_ids: list[int] = Field(default_factory=list)
    cleared_at_by_account: dict[str, datetime] = Field(default_factory=dict)
