"""Lifecycle buckets resolved from free-text status labels."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum


class StatusBucket(str, Enum):
    """Semantic lifecycle states a status label maps onto."""

    PENDING = "pending"
    SERVING = "serving"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    UNKNOWN = "unknown"


# "arrived" is a sub-state of serving, so it is checked before "serving".
_KEYWORDS: tuple[tuple[StatusBucket, str], ...] = (
    (StatusBucket.COMPLETED, "completed"),
    (StatusBucket.ARRIVED, "arrived"),
    (StatusBucket.SERVING, "serving"),
    (StatusBucket.PENDING, "pending"),
)

OCCUPYING_BUCKETS = frozenset({StatusBucket.SERVING, StatusBucket.ARRIVED})


def bucket_for(label: str | None) -> StatusBucket:
    """Classify a status label by case-insensitive keyword containment."""
    text = (label or "").lower()
    for bucket, keyword in _KEYWORDS:
        if keyword in text:
            return bucket
    return StatusBucket.UNKNOWN


def find_status_id(
    labels: Mapping[int, str | None],
    bucket: StatusBucket,
) -> int | None:
    """Return the lowest status id whose label falls into ``bucket``."""
    matches = sorted(
        status_id for status_id, label in labels.items() if bucket_for(label) == bucket
    )
    return matches[0] if matches else None


def status_ids_for(
    labels: Mapping[int, str | None],
    buckets: Iterable[StatusBucket],
) -> set[int]:
    """Return every status id whose label falls into one of ``buckets``."""
    wanted = set(buckets)
    return {status_id for status_id, label in labels.items() if bucket_for(label) in wanted}
