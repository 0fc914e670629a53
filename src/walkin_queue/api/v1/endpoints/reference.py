"""Reference data endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Query

from walkin_queue.api.v1.dependencies import StoreDep
from walkin_queue.schemas import ReferenceResponse

router = APIRouter(prefix="/reference", tags=["reference"])


@router.get("/priorities", response_model=list[ReferenceResponse])
async def list_priorities(
    store: StoreDep,
    include_inactive: bool = Query(False, description="Also return disabled priorities"),
) -> list[ReferenceResponse]:
    return [
        ReferenceResponse.model_validate(priority)
        for priority in store.list_priorities(active_only=not include_inactive)
    ]


@router.get("/statuses", response_model=list[ReferenceResponse])
async def list_statuses(store: StoreDep) -> list[ReferenceResponse]:
    return [ReferenceResponse.model_validate(entry) for entry in store.list_statuses()]
