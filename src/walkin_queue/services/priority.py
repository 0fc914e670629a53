"""Priority ranking by keyword containment.

Priority labels are free text maintained by administrators, so ordering is
derived from the keywords a label contains rather than from fixed ids.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import ColumnElement, String, case, func, or_


class PriorityClass(str, Enum):
    """Buckets a priority label can fall into, in precedence order."""

    URGENT = "urgent"
    VIP = "vip"
    PRIORITY = "priority"
    DISABILITY = "disability"
    SENIOR = "senior"
    REGULAR = "regular"


# Checked top to bottom; the first match wins when a label holds several keywords.
_PRECEDENCE: tuple[tuple[PriorityClass, tuple[str, ...], int], ...] = (
    (PriorityClass.URGENT, ("urgent",), 1),
    (PriorityClass.VIP, ("vip",), 2),
    (PriorityClass.PRIORITY, ("priority",), 3),
    (PriorityClass.DISABILITY, ("disab", "pwd"), 4),
    (PriorityClass.SENIOR, ("senior",), 5),
)

DEFAULT_RANK = 10

_CODE_PREFIXES: dict[PriorityClass, str] = {
    PriorityClass.URGENT: "U",
    PriorityClass.VIP: "V",
    PriorityClass.PRIORITY: "P",
    PriorityClass.DISABILITY: "D",
    PriorityClass.SENIOR: "S",
    PriorityClass.REGULAR: "R",
}


def classify(label: str | None) -> PriorityClass:
    """Return the bucket for a priority label; unmatched labels are regular."""
    text = (label or "").lower()
    for priority_class, keywords, _weight in _PRECEDENCE:
        if any(keyword in text for keyword in keywords):
            return priority_class
    return PriorityClass.REGULAR


def rank(label: str | None) -> int:
    """Return the ordering weight of a label. Lower is served first."""
    text = (label or "").lower()
    for _priority_class, keywords, weight in _PRECEDENCE:
        if any(keyword in text for keyword in keywords):
            return weight
    return DEFAULT_RANK


def code_prefix(label: str | None) -> str:
    """Return the single-letter ticket code prefix for a priority label."""
    return _CODE_PREFIXES[classify(label)]


def rank_expression(label_column: ColumnElement[str | None]) -> ColumnElement[int]:
    """Build the SQL equivalent of :func:`rank` for ordering inside the store."""
    lowered = func.lower(func.coalesce(label_column, ""), type_=String)
    whens = [
        (or_(*(lowered.like(f"%{keyword}%") for keyword in keywords)), weight)
        for _priority_class, keywords, weight in _PRECEDENCE
    ]
    return case(*whens, else_=DEFAULT_RANK)
