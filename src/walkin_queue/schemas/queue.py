# src/walkin_queue/schemas/queue.py
"""Queue-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class TicketCreate(BaseModel):
    """Schema for checking a customer in."""

    office_id: int | None = Field(None, description="Office the customer queues for")
    priority_id: int | None = Field(None, description="Priority type of the customer")


class CallNextRequest(BaseModel):
    """Schema for calling the next ticket to a window."""

    office_id: int | None = Field(None, description="Office whose queue is served")
    window_id: int | None = Field(None, description="Window that receives the ticket")
    serving_status_id: int | None = Field(
        None,
        description="Status to assign; resolved from the status labels when omitted",
    )


class TransferRequest(BaseModel):
    """Schema for moving a ticket to another office."""

    target_office_id: int | None = Field(None, description="Office the ticket moves to")


class SequenceResponse(BaseModel):
    """Schema for a sequence row returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    office_id: int
    office_name: str | None = None
    ticket_id: int
    ticket_code: str
    priority_id: int
    priority_label: str | None
    status_id: int
    status_label: str | None
    window_id: int | None = None
    window_name: str | None = None
    is_active: bool


class ClaimResponse(BaseModel):
    """Result of call-next. ``claimed`` is null when nobody was waiting."""

    office_id: int
    window_id: int
    claimed: SequenceResponse | None = None


class TransitionResponse(BaseModel):
    """Result of a lifecycle command. ``applied`` is false when it lost a race."""

    sequence_id: int
    applied: bool
    sequence: SequenceResponse | None = None


class ReferenceResponse(BaseModel):
    """Priority or status reference row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    label: str | None
    is_active: bool
