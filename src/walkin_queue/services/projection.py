"""Read-side queue projection.

Everything here is derived from the sequence rows handed in: the waiting list
and the serving entry are recomputed on every call and nothing is cached
between calls. ``QueueSnapshot`` is only a container keyed by row id so that
change events can be applied idempotently.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from walkin_queue.services.priority import rank
from walkin_queue.services.status import OCCUPYING_BUCKETS, StatusBucket, bucket_for


@dataclass(frozen=True)
class SequenceView:
    """A sequence row joined with the labels needed to order and display it."""

    id: int
    created_at: datetime
    office_id: int
    ticket_id: int
    ticket_code: str
    priority_id: int
    priority_label: str | None
    status_id: int
    status_label: str | None
    window_id: int | None = None
    is_active: bool = True
    office_name: str | None = None
    window_name: str | None = None

    @property
    def bucket(self) -> StatusBucket:
        return bucket_for(self.status_label)

    @property
    def rank(self) -> int:
        return rank(self.priority_label)


def ordering_key(view: SequenceView) -> tuple[int, datetime, int]:
    """Priority first, FIFO within a tier, row id as the final tie-break."""
    return (view.rank, view.created_at, view.id)


def waiting_list(
    rows: Iterable[SequenceView],
    office_id: int,
    window_id: int | None = None,
) -> list[SequenceView]:
    """Return the pending tickets of an office in the order they will be called.

    When ``window_id`` is given, only rows that are unassigned or already
    assigned to that window are kept.
    """
    pending = [
        row
        for row in rows
        if row.is_active
        and row.office_id == office_id
        and row.bucket == StatusBucket.PENDING
        and (window_id is None or row.window_id in (None, window_id))
    ]
    return sorted(pending, key=ordering_key)


def serving_entry(
    rows: Iterable[SequenceView],
    office_id: int,
    window_id: int | None = None,
) -> SequenceView | None:
    """Return the active serving/arrived row for the office (and window)."""
    candidates = [
        row
        for row in rows
        if row.is_active
        and row.office_id == office_id
        and row.bucket in OCCUPYING_BUCKETS
        and (window_id is None or row.window_id == window_id)
    ]
    if not candidates:
        return None
    # Most recent claim wins if the store ever reports more than one.
    return max(candidates, key=lambda row: (row.created_at, row.id))


def serving_by_window(rows: Iterable[SequenceView], office_id: int) -> dict[int, SequenceView]:
    """Return the serving/arrived row for every busy window of an office."""
    busy: dict[int, SequenceView] = {}
    for row in rows:
        if (
            row.is_active
            and row.office_id == office_id
            and row.window_id is not None
            and row.bucket in OCCUPYING_BUCKETS
        ):
            current = busy.get(row.window_id)
            if current is None or (row.created_at, row.id) > (current.created_at, current.id):
                busy[row.window_id] = row
    return busy


class QueueSnapshot:
    """Latest known sequence rows, updated from the change stream.

    Applying the same row twice, or an update after the row was already
    replaced, leaves the snapshot unchanged.
    """

    def __init__(self, rows: Iterable[SequenceView] = ()) -> None:
        self._rows: dict[int, SequenceView] = {}
        self.replace_all(rows)

    def replace_all(self, rows: Iterable[SequenceView]) -> None:
        self._rows = {row.id: row for row in rows}

    def apply(self, row: SequenceView) -> bool:
        """Insert or overwrite a row; inactive rows are dropped. Returns True on change."""
        if not row.is_active:
            return self._rows.pop(row.id, None) is not None
        if self._rows.get(row.id) == row:
            return False
        self._rows[row.id] = row
        return True

    def discard(self, sequence_id: int) -> bool:
        return self._rows.pop(sequence_id, None) is not None

    def get(self, sequence_id: int) -> SequenceView | None:
        return self._rows.get(sequence_id)

    @property
    def rows(self) -> list[SequenceView]:
        return list(self._rows.values())

    def __len__(self) -> int:
        return len(self._rows)

    def waiting_list(self, office_id: int, window_id: int | None = None) -> list[SequenceView]:
        return waiting_list(self._rows.values(), office_id, window_id)

    def serving_entry(self, office_id: int, window_id: int | None = None) -> SequenceView | None:
        return serving_entry(self._rows.values(), office_id, window_id)
