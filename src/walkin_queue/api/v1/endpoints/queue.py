"""Queue endpoints: check-in, call-next and staff transitions."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from walkin_queue.api.v1.dependencies import LifecycleDep, StoreDep
from walkin_queue.schemas import (
    CallNextRequest,
    ClaimResponse,
    SequenceResponse,
    TicketCreate,
    TransferRequest,
    TransitionResponse,
)
from walkin_queue.services.claim import ClaimCoordinator
from walkin_queue.services.lifecycle import TransitionResult
from walkin_queue.services.projection import QueueSnapshot, serving_entry, waiting_list

router = APIRouter(prefix="/queue", tags=["queue"])


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        sequence_id=result.sequence_id,
        applied=result.applied,
        sequence=(
            SequenceResponse.model_validate(result.sequence)
            if result.sequence is not None
            else None
        ),
    )


@router.post("/tickets", response_model=SequenceResponse, status_code=status.HTTP_201_CREATED)
async def generate_ticket(payload: TicketCreate, lifecycle: LifecycleDep) -> SequenceResponse:
    """Check a customer in and return the new pending row."""
    view = await lifecycle.generate_ticket(payload.office_id, payload.priority_id)
    return SequenceResponse.model_validate(view)


@router.get("/offices/{office_id}/waiting", response_model=list[SequenceResponse])
async def list_waiting(
    office_id: int,
    store: StoreDep,
    window_id: int | None = Query(None, description="Keep only rows unassigned or bound here"),
) -> list[SequenceResponse]:
    """Return the pending tickets of an office in call order."""
    views = store.load_views([office_id])
    return [
        SequenceResponse.model_validate(view) for view in waiting_list(views, office_id, window_id)
    ]


@router.get("/offices/{office_id}/serving", response_model=SequenceResponse)
async def get_serving(
    office_id: int,
    store: StoreDep,
    window_id: int | None = Query(None, description="Restrict to one window"),
) -> SequenceResponse:
    """Return the ticket currently serving or arrived at the office (or window)."""
    entry = serving_entry(store.load_views([office_id]), office_id, window_id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No one is being served")
    return SequenceResponse.model_validate(entry)


@router.post("/call-next", response_model=ClaimResponse)
async def call_next(payload: CallNextRequest, store: StoreDep) -> ClaimResponse:
    """Bind the best pending ticket to the window; ``claimed`` is null if nobody was waiting."""
    snapshot = None
    if payload.office_id is not None and payload.window_id is not None:
        snapshot = QueueSnapshot(store.load_views([payload.office_id]))
    coordinator = ClaimCoordinator(store, snapshot)
    result = await coordinator.call_next(
        payload.office_id,
        payload.window_id,
        payload.serving_status_id,
    )
    return ClaimResponse(
        office_id=result.office_id,
        window_id=result.window_id,
        claimed=(
            SequenceResponse.model_validate(result.claimed) if result.claimed is not None else None
        ),
    )


@router.post("/sequences/{sequence_id}/arrive", response_model=TransitionResponse)
async def mark_arrived(sequence_id: int, lifecycle: LifecycleDep) -> TransitionResponse:
    return _transition_response(await lifecycle.mark_arrived(sequence_id))


@router.post("/sequences/{sequence_id}/complete", response_model=TransitionResponse)
async def complete(sequence_id: int, lifecycle: LifecycleDep) -> TransitionResponse:
    return _transition_response(await lifecycle.complete(sequence_id))


@router.post("/sequences/{sequence_id}/transfer", response_model=TransitionResponse)
async def transfer(
    sequence_id: int,
    payload: TransferRequest,
    lifecycle: LifecycleDep,
) -> TransitionResponse:
    """Re-queue a ticket in another office; its window binding is dropped."""
    return _transition_response(await lifecycle.transfer(sequence_id, payload.target_office_id))
