"""Calling the next ticket to a service window."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from walkin_queue.services.errors import NotFoundError, PreconditionError, WindowBusyError
from walkin_queue.services.projection import QueueSnapshot, SequenceView
from walkin_queue.services.status import (
    OCCUPYING_BUCKETS,
    StatusBucket,
    find_status_id,
    status_ids_for,
)
from walkin_queue.services.ticket_store import TicketStore

# Configure logger for this module
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimResult:
    """Outcome of a call-next attempt. ``claimed`` is None when nothing was bound."""

    office_id: int
    window_id: int
    claimed: SequenceView | None = None

    @property
    def empty(self) -> bool:
        return self.claimed is None


class ClaimCoordinator:
    """Binds the highest-ranked pending ticket of an office to a window.

    The local snapshot only short-circuits obviously invalid requests (a
    window already serving someone). The decision itself is made by the
    store inside one transaction, so two windows racing on the same stale
    snapshot never receive the same ticket.
    """

    def __init__(self, store: TicketStore, snapshot: QueueSnapshot | None = None) -> None:
        self.store = store
        self.snapshot = snapshot

    def _resolve_statuses(self, serving_status_id: int | None) -> tuple[int, set[int], set[int]]:
        labels = self.store.status_labels()
        pending_ids = status_ids_for(labels, [StatusBucket.PENDING])
        if not pending_ids and labels:
            # Deployments with no "pending" label treat the oldest status as the queue state.
            pending_ids = {min(labels)}
        occupying_ids = status_ids_for(labels, OCCUPYING_BUCKETS)

        if serving_status_id is None:
            serving_status_id = find_status_id(labels, StatusBucket.SERVING)
        if serving_status_id is None:
            raise PreconditionError("No serving status is configured")
        if serving_status_id not in labels:
            raise NotFoundError(f"Status {serving_status_id} does not exist")
        return serving_status_id, pending_ids, occupying_ids | {serving_status_id}

    def _check_request(self, office_id: int | None, window_id: int | None) -> None:
        """Reject a missing selection or a window the snapshot shows as serving."""
        if office_id is None or window_id is None:
            raise PreconditionError("Both an office and a window must be selected")
        if self.snapshot is None:
            return
        current = self.snapshot.serving_entry(office_id, window_id)
        if current is not None:
            raise WindowBusyError(window_id, current.id)

    def _claim(
        self,
        office_id: int,
        window_id: int,
        serving_status_id: int | None,
    ) -> ClaimResult:
        serving_id, pending_ids, occupying_ids = self._resolve_statuses(serving_status_id)
        claimed = self.store.claim_next(
            office_id=office_id,
            window_id=window_id,
            serving_status_id=serving_id,
            pending_status_ids=pending_ids,
            occupying_status_ids=occupying_ids,
        )
        if claimed is None:
            logger.info("No ticket bound to window %s in office %s", window_id, office_id)
        elif self.snapshot is not None:
            self.snapshot.apply(claimed)
        return ClaimResult(office_id=office_id, window_id=window_id, claimed=claimed)

    def claim(
        self,
        office_id: int | None,
        window_id: int | None,
        serving_status_id: int | None = None,
    ) -> ClaimResult:
        """Synchronous call-next; see :meth:`call_next`."""
        self._check_request(office_id, window_id)
        return self._claim(office_id, window_id, serving_status_id)

    async def call_next(
        self,
        office_id: int | None,
        window_id: int | None,
        serving_status_id: int | None = None,
    ) -> ClaimResult:
        """Bind the best pending ticket of ``office_id`` to ``window_id``.

        Raises :class:`PreconditionError` when either selection is missing and
        :class:`WindowBusyError` when the local snapshot already shows the
        window serving someone; neither case touches the store. An empty
        queue, a busy window detected by the store or a lost race all return
        an empty :class:`ClaimResult`.
        """
        self._check_request(office_id, window_id)
        return await asyncio.to_thread(self._claim, office_id, window_id, serving_status_id)
