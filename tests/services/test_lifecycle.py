# tests/services/test_lifecycle.py
import re

import pytest
from pytest_mock import MockerFixture
from sqlalchemy.exc import IntegrityError

from walkin_queue.models import Sequence, Ticket
from walkin_queue.services.claim import ClaimCoordinator
from walkin_queue.services.errors import (
    InvalidTransitionError,
    NotFoundError,
    PreconditionError,
)
from walkin_queue.services.lifecycle import TRANSFERRED, TicketLifecycle, validate_transition
from walkin_queue.services.status import StatusBucket
from walkin_queue.services.ticket_store import TicketStore


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (StatusBucket.PENDING, StatusBucket.SERVING),
        (StatusBucket.SERVING, StatusBucket.ARRIVED),
        (StatusBucket.ARRIVED, StatusBucket.COMPLETED),
        (StatusBucket.PENDING, TRANSFERRED),
        (StatusBucket.SERVING, TRANSFERRED),
        (StatusBucket.ARRIVED, TRANSFERRED),
    ],
)
def test_legal_transitions(current: StatusBucket, target) -> None:
    validate_transition(current, target, window_id=1)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (StatusBucket.PENDING, StatusBucket.ARRIVED),
        (StatusBucket.PENDING, StatusBucket.COMPLETED),
        (StatusBucket.SERVING, StatusBucket.COMPLETED),
        (StatusBucket.COMPLETED, TRANSFERRED),
        (StatusBucket.COMPLETED, StatusBucket.PENDING),
        (StatusBucket.UNKNOWN, StatusBucket.SERVING),
    ],
)
def test_illegal_transitions(current: StatusBucket, target) -> None:
    with pytest.raises(InvalidTransitionError):
        validate_transition(current, target, window_id=1)


def test_arrive_requires_a_bound_window() -> None:
    with pytest.raises(InvalidTransitionError, match="no window"):
        validate_transition(StatusBucket.SERVING, StatusBucket.ARRIVED, window_id=None)


def test_issue_creates_prefixed_code_and_pending_row(
    lifecycle: TicketLifecycle,
    reference,
) -> None:
    view = lifecycle.issue(reference.office_1, reference.senior)
    assert re.fullmatch(r"S\d{3}", view.ticket_code)
    assert view.status_id == reference.pending
    assert view.window_id is None
    assert view.office_name == "Registration"


def test_issue_retries_when_code_is_already_active(
    lifecycle: TicketLifecycle,
    reference,
    mocker: MockerFixture,
) -> None:
    mocker.patch.object(lifecycle, "_new_code", side_effect=["R001", "R001", "R002"])
    first = lifecycle.issue(reference.office_1, reference.regular)
    second = lifecycle.issue(reference.office_1, reference.regular)
    assert first.ticket_code == "R001"
    assert second.ticket_code == "R002"


def test_issue_gives_up_after_max_attempts(store: TicketStore, reference, mocker) -> None:
    lifecycle = TicketLifecycle(store, max_code_attempts=2)
    mocker.patch.object(lifecycle, "_new_code", return_value="R001")
    lifecycle.issue(reference.office_1, reference.regular)
    with pytest.raises(PreconditionError):
        lifecycle.issue(reference.office_1, reference.regular)


def test_zero_code_attempts_is_not_replaced_by_the_default(
    store: TicketStore,
    reference,
    session_factory,
) -> None:
    lifecycle = TicketLifecycle(store, max_code_attempts=0)
    assert lifecycle.max_code_attempts == 0
    with pytest.raises(PreconditionError, match="after 0 attempts"):
        lifecycle.issue(reference.office_1, reference.regular)
    with session_factory() as db:
        assert db.query(Ticket).count() == 0


def test_schema_allows_one_active_ticket_per_code(session_factory, reference) -> None:
    with session_factory() as db, db.begin():
        db.add_all([Ticket(code="R001", is_active=False), Ticket(code="R001", is_active=False)])
        db.add(Ticket(code="R001", is_active=True))

    with pytest.raises(IntegrityError):
        with session_factory() as db, db.begin():
            db.add(Ticket(code="R001", is_active=True))


def test_create_ticket_with_taken_code_rolls_back_without_publishing(
    store: TicketStore,
    reference,
    session_factory,
    mocker: MockerFixture,
) -> None:
    kwargs = {
        "office_id": reference.office_1,
        "priority_id": reference.regular,
        "pending_status_id": reference.pending,
        "code": "R001",
    }
    assert store.create_ticket(**kwargs) is not None

    publish_spy = mocker.spy(store.feed, "publish_all")
    assert store.create_ticket(**kwargs) is None

    publish_spy.assert_not_called()
    with session_factory() as db:
        assert db.query(Ticket).count() == 1
        assert db.query(Sequence).count() == 1


def test_issue_validates_selection(lifecycle: TicketLifecycle, reference) -> None:
    with pytest.raises(PreconditionError):
        lifecycle.issue(None, reference.regular)
    with pytest.raises(NotFoundError):
        lifecycle.issue(reference.office_1, 9999)
    with pytest.raises(NotFoundError):
        lifecycle.issue(9999, reference.regular)


@pytest.mark.asyncio
async def test_full_lifecycle_releases_the_code(
    store: TicketStore,
    lifecycle: TicketLifecycle,
    reference,
    session_factory,
) -> None:
    issued = await lifecycle.generate_ticket(reference.office_1, reference.regular)
    result = await ClaimCoordinator(store).call_next(reference.office_1, reference.window_1)
    claimed = result.claimed
    assert claimed is not None

    arrived = await lifecycle.mark_arrived(claimed.id)
    assert arrived.applied
    assert arrived.sequence.status_id == reference.arrived
    assert arrived.sequence.window_id == reference.window_1

    completed = await lifecycle.complete(arrived.sequence.id)
    assert completed.applied
    assert completed.sequence.status_id == reference.completed
    assert completed.sequence.is_active is False

    with session_factory() as db:
        assert db.get(Ticket, issued.ticket_id).is_active is False
        rows = db.query(Sequence).filter(Sequence.ticket_id == issued.ticket_id).all()
        assert len(rows) == 4
        assert not any(row.is_active for row in rows)


def test_complete_requires_arrived(
    store: TicketStore,
    lifecycle: TicketLifecycle,
    reference,
) -> None:
    lifecycle.issue(reference.office_1, reference.regular)
    claimed = ClaimCoordinator(store).claim(reference.office_1, reference.window_1).claimed
    with pytest.raises(InvalidTransitionError):
        lifecycle.finish(claimed.id)


def test_transition_on_a_row_advanced_elsewhere_is_a_no_op(
    store: TicketStore,
    lifecycle: TicketLifecycle,
    reference,
) -> None:
    lifecycle.issue(reference.office_1, reference.regular)
    claimed = ClaimCoordinator(store).claim(reference.office_1, reference.window_1).claimed

    first = lifecycle.arrive(claimed.id)
    second = lifecycle.arrive(claimed.id)

    assert first.applied is True
    assert second.applied is False
    assert second.sequence is None


def test_transfer_requeues_in_other_office_without_window(
    store: TicketStore,
    lifecycle: TicketLifecycle,
    reference,
) -> None:
    lifecycle.issue(reference.office_1, reference.urgent)
    claimed = ClaimCoordinator(store).claim(reference.office_1, reference.window_1).claimed

    result = lifecycle.move(claimed.id, reference.office_2)

    assert result.applied
    moved = result.sequence
    assert moved.office_id == reference.office_2
    assert moved.window_id is None
    assert moved.status_id == reference.pending
    assert moved.priority_id == reference.urgent
    assert moved.ticket_id == claimed.ticket_id
    assert store.load_views([reference.office_1]) == []
    # The window is free again and the ticket waits in the new office.
    follow_up = ClaimCoordinator(store).claim(reference.office_2, reference.window_3)
    assert follow_up.claimed is not None
    assert follow_up.claimed.ticket_id == claimed.ticket_id


def test_transfer_to_same_office_or_unknown_office_is_rejected(
    lifecycle: TicketLifecycle,
    reference,
) -> None:
    pending = lifecycle.issue(reference.office_1, reference.regular)
    with pytest.raises(InvalidTransitionError):
        lifecycle.move(pending.id, reference.office_1)
    with pytest.raises(NotFoundError):
        lifecycle.move(pending.id, 9999)
    with pytest.raises(PreconditionError):
        lifecycle.move(pending.id, None)


def test_unknown_sequence_is_not_found(lifecycle: TicketLifecycle, reference) -> None:
    with pytest.raises(NotFoundError):
        lifecycle.arrive(12345)
