# tests/test_priority.py
import pytest

from walkin_queue.services.priority import (
    DEFAULT_RANK,
    PriorityClass,
    classify,
    code_prefix,
    rank,
)
from walkin_queue.services.status import (
    StatusBucket,
    bucket_for,
    find_status_id,
    status_ids_for,
)


@pytest.mark.parametrize(
    ("label", "expected"),
    [
        ("Urgent", 1),
        ("VIP Guest", 2),
        ("Priority Lane", 3),
        ("PWD", 4),
        ("Person with Disability", 4),
        ("Senior Citizen", 5),
        ("Regular", DEFAULT_RANK),
        ("Walk-in", DEFAULT_RANK),
        ("", DEFAULT_RANK),
        (None, DEFAULT_RANK),
    ],
)
def test_rank_by_keyword(label: str | None, expected: int) -> None:
    assert rank(label) == expected


def test_rank_uses_fixed_precedence_for_labels_with_several_keywords() -> None:
    assert rank("Senior Citizen - Urgent") == 1
    assert rank("vip priority") == 2
    assert classify("PWD / Senior") is PriorityClass.DISABILITY


def test_rank_is_case_insensitive() -> None:
    assert rank("URGENT") == rank("urgent") == rank("UrGeNt")


def test_code_prefix_follows_classification() -> None:
    assert code_prefix("Urgent") == "U"
    assert code_prefix("Senior Citizen") == "S"
    assert code_prefix("something else") == "R"


def test_status_buckets_resolve_by_substring() -> None:
    assert bucket_for("Pending") is StatusBucket.PENDING
    assert bucket_for("Now Serving") is StatusBucket.SERVING
    assert bucket_for("Arrived at window") is StatusBucket.ARRIVED
    assert bucket_for("COMPLETED") is StatusBucket.COMPLETED
    assert bucket_for("On hold") is StatusBucket.UNKNOWN
    assert bucket_for(None) is StatusBucket.UNKNOWN


def test_find_status_id_picks_lowest_matching_id() -> None:
    labels = {7: "Serving (express)", 3: "Serving", 1: "Pending"}
    assert find_status_id(labels, StatusBucket.SERVING) == 3
    assert find_status_id(labels, StatusBucket.COMPLETED) is None
    assert status_ids_for(labels, [StatusBucket.SERVING, StatusBucket.PENDING]) == {1, 3, 7}
