"""Error taxonomy for queue operations.

Contention ("someone else got there first", "nobody waiting") is never an
exception: claims and transitions report it through their result objects.
Exceptions are reserved for bad input detected before the store is contacted
and for store or transport failures.
"""

from __future__ import annotations


class QueueError(RuntimeError):
    """Base exception for every failure raised by the queue engine."""


class PreconditionError(QueueError):
    """Raised when a command is rejected locally, before any store call."""


class WindowBusyError(PreconditionError):
    """Raised when a window that is already serving someone asks for the next ticket."""

    def __init__(self, window_id: int, sequence_id: int) -> None:
        super().__init__(f"Window {window_id} is already serving sequence {sequence_id}")
        self.window_id = window_id
        self.sequence_id = sequence_id


class InvalidTransitionError(PreconditionError):
    """Raised when a lifecycle transition is not allowed from the current state."""

    def __init__(self, current: str, target: str, reason: str | None = None) -> None:
        message = f"Cannot move a ticket from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.current = current
        self.target = target


class NotFoundError(QueueError):
    """Raised when a referenced office, window, priority or sequence does not exist."""


class StoreUnavailableError(QueueError):
    """Raised when the ticket store cannot be reached; the caller may retry.

    Claims are never retried automatically to avoid double assignment.
    """

    def __init__(
        self,
        message: str,
        *,
        office_id: int | None = None,
        window_id: int | None = None,
        sequence_id: int | None = None,
    ) -> None:
        context = ", ".join(
            f"{name}={value}"
            for name, value in (
                ("office", office_id),
                ("window", window_id),
                ("sequence", sequence_id),
            )
            if value is not None
        )
        super().__init__(f"{message} ({context})" if context else message)
        self.office_id = office_id
        self.window_id = window_id
        self.sequence_id = sequence_id
        self.retryable = True


class PagingError(QueueError):
    """Raised by a pager when an utterance cannot be delivered."""
