"""Ticket lifecycle: issuing tickets and moving them between states."""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass

from walkin_queue.core.settings import settings
from walkin_queue.services.errors import (
    InvalidTransitionError,
    NotFoundError,
    PreconditionError,
)
from walkin_queue.services.priority import code_prefix
from walkin_queue.services.projection import SequenceView
from walkin_queue.services.status import StatusBucket, find_status_id
from walkin_queue.services.ticket_store import TicketStore

# Configure logger for this module
logger = logging.getLogger(__name__)

TRANSFERRED = "transferred"

_ALLOWED: dict[StatusBucket, frozenset[str]] = {
    StatusBucket.PENDING: frozenset({StatusBucket.SERVING.value, TRANSFERRED}),
    StatusBucket.SERVING: frozenset({StatusBucket.ARRIVED.value, TRANSFERRED}),
    StatusBucket.ARRIVED: frozenset({StatusBucket.COMPLETED.value, TRANSFERRED}),
    StatusBucket.COMPLETED: frozenset(),
    StatusBucket.UNKNOWN: frozenset(),
}


def validate_transition(
    current: StatusBucket,
    target: StatusBucket | str,
    *,
    window_id: int | None = None,
) -> None:
    """Raise :class:`InvalidTransitionError` unless ``current -> target`` is legal.

    ``target`` is a status bucket or ``"transferred"``. Moving to serving is
    only legal through call-next, and arriving requires a bound window.
    """
    target_name = target.value if isinstance(target, StatusBucket) else target
    if target_name not in _ALLOWED.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target_name)
    if target_name == StatusBucket.ARRIVED.value and window_id is None:
        raise InvalidTransitionError(current.value, target_name, "no window is bound")


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a lifecycle command; ``applied`` is False when it lost a race."""

    sequence_id: int
    applied: bool
    sequence: SequenceView | None = None


class TicketLifecycle:
    """Staff-facing commands that advance a ticket through its states."""

    def __init__(
        self,
        store: TicketStore,
        *,
        code_digits: int | None = None,
        max_code_attempts: int | None = None,
    ) -> None:
        self.store = store
        if code_digits is None:
            code_digits = settings.ticket_code_digits
        if max_code_attempts is None:
            max_code_attempts = settings.ticket_code_max_attempts
        self.code_digits = code_digits
        self.max_code_attempts = max_code_attempts

    def _status_id(self, bucket: StatusBucket) -> int:
        labels = self.store.status_labels()
        status_id = find_status_id(labels, bucket)
        if status_id is None and bucket == StatusBucket.PENDING and labels:
            status_id = min(labels)
        if status_id is None:
            raise PreconditionError(f"No {bucket.value} status is configured")
        return status_id

    def _load(self, sequence_id: int) -> SequenceView:
        current = self.store.get_view(sequence_id)
        if current is None:
            raise NotFoundError(f"Sequence {sequence_id} does not exist")
        return current

    def _new_code(self, priority_label: str | None) -> str:
        digits = "".join(secrets.choice("0123456789") for _ in range(self.code_digits))
        return f"{code_prefix(priority_label)}{digits}"

    # --- Synchronous commands --------------------------------------------------------

    def issue(self, office_id: int | None, priority_id: int | None) -> SequenceView:
        """Check a customer in: issue a fresh ticket code and queue it as pending."""
        if office_id is None or priority_id is None:
            raise PreconditionError("Both an office and a priority must be selected")
        priorities = self.store.priority_labels()
        if priority_id not in priorities:
            raise NotFoundError(f"Priority {priority_id} does not exist")
        pending_id = self._status_id(StatusBucket.PENDING)

        for _attempt in range(self.max_code_attempts):
            code = self._new_code(priorities[priority_id])
            issued = self.store.create_ticket(
                office_id=office_id,
                priority_id=priority_id,
                pending_status_id=pending_id,
                code=code,
            )
            if issued is not None:
                return issued
            logger.debug("Ticket code %s already active; drawing another", code)
        raise PreconditionError(
            f"Could not find a free ticket code after {self.max_code_attempts} attempts"
        )

    def arrive(self, sequence_id: int) -> TransitionResult:
        current = self._load(sequence_id)
        validate_transition(current.bucket, StatusBucket.ARRIVED, window_id=current.window_id)
        successor = self.store.advance(
            sequence_id,
            expected_status_ids=[current.status_id],
            status_id=self._status_id(StatusBucket.ARRIVED),
        )
        return self._result(sequence_id, successor, "arrived")

    def finish(self, sequence_id: int) -> TransitionResult:
        current = self._load(sequence_id)
        validate_transition(current.bucket, StatusBucket.COMPLETED, window_id=current.window_id)
        successor = self.store.advance(
            sequence_id,
            expected_status_ids=[current.status_id],
            status_id=self._status_id(StatusBucket.COMPLETED),
            successor_active=False,
            deactivate_ticket=True,
        )
        return self._result(sequence_id, successor, "completed")

    def move(self, sequence_id: int, target_office_id: int | None) -> TransitionResult:
        if target_office_id is None:
            raise PreconditionError("A target office must be selected")
        current = self._load(sequence_id)
        validate_transition(current.bucket, TRANSFERRED)
        if current.office_id == target_office_id:
            raise InvalidTransitionError(
                current.bucket.value, TRANSFERRED, "ticket is already in that office"
            )
        successor = self.store.advance(
            sequence_id,
            expected_status_ids=[current.status_id],
            status_id=self._status_id(StatusBucket.PENDING),
            office_id=target_office_id,
            window_id=None,
        )
        return self._result(sequence_id, successor, f"transferred to office {target_office_id}")

    @staticmethod
    def _result(sequence_id: int, successor: SequenceView | None, action: str) -> TransitionResult:
        if successor is None:
            return TransitionResult(sequence_id=sequence_id, applied=False)
        logger.info(
            "Ticket %s %s (sequence %s -> %s)",
            successor.ticket_code,
            action,
            sequence_id,
            successor.id,
        )
        return TransitionResult(sequence_id=sequence_id, applied=True, sequence=successor)

    # --- Async entry points ----------------------------------------------------------

    async def generate_ticket(self, office_id: int | None, priority_id: int | None) -> SequenceView:
        return await asyncio.to_thread(self.issue, office_id, priority_id)

    async def mark_arrived(self, sequence_id: int) -> TransitionResult:
        """Serving -> arrived. Requires the ticket to be bound to a window."""
        return await asyncio.to_thread(self.arrive, sequence_id)

    async def complete(self, sequence_id: int) -> TransitionResult:
        """Arrived -> completed. The successor row is inactive and the code is released."""
        return await asyncio.to_thread(self.finish, sequence_id)

    async def transfer(self, sequence_id: int, target_office_id: int | None) -> TransitionResult:
        """Re-queue a non-completed ticket as pending in another office, window cleared."""
        return await asyncio.to_thread(self.move, sequence_id, target_office_id)
