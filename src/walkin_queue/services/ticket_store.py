"""SQLAlchemy-backed ticket store.

Every write runs in its own transaction and publishes the resulting row
changes to the change feed only after commit. Writes that depend on a row
still being in a given state are conditional updates: when the condition no
longer holds the transaction is rolled back and the caller gets ``None``
instead of an exception.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from walkin_queue.db.session import SessionLocal
from walkin_queue.db.time import as_utc, utcnow
from walkin_queue.models import (
    AccountMetadata,
    Office,
    PriorityType,
    Sequence,
    ServiceWindow,
    StatusType,
    Ticket,
)
from walkin_queue.services.change_feed import (
    SEQUENCE_TABLE,
    ChangeEvent,
    ChangeFeed,
    ChangeKind,
    SequenceRow,
)
from walkin_queue.services.errors import NotFoundError, PreconditionError, StoreUnavailableError
from walkin_queue.services.priority import rank_expression
from walkin_queue.services.projection import SequenceView

# Configure logger for this module
logger = logging.getLogger(__name__)

UNKNOWN_OFFICE = "Unknown Office"
UNKNOWN_CODE = "Unknown"
DEFAULT_PRIORITY_LABEL = "Regular"


class _Unchanged:
    """Marker type for "leave the window binding as it is"."""


KEEP_WINDOW = _Unchanged()


class _ConditionFailed(Exception):
    """Internal signal that a conditional write matched no row."""


@dataclass(frozen=True)
class TicketDetails:
    """Display fields used to describe a sequence row in a notification."""

    office_name: str
    ticket_code: str
    priority_label: str
    first_sequence_id: int | None = None


def _to_row(sequence: Sequence) -> SequenceRow:
    return SequenceRow(
        id=sequence.id,
        created_at=as_utc(sequence.created_at),
        office_id=sequence.office_id,
        ticket_id=sequence.ticket_id,
        priority_id=sequence.priority_id,
        status_id=sequence.status_id,
        window_id=sequence.window_id,
        is_active=sequence.is_active,
    )


class TicketStore:
    """Data access for offices, tickets and their sequence rows."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        feed: ChangeFeed | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    @contextmanager
    def _session(
        self,
        action: str,
        *,
        office_id: int | None = None,
        window_id: int | None = None,
        sequence_id: int | None = None,
    ) -> Iterator[Session]:
        try:
            with self._session_factory() as db:
                yield db
        except SQLAlchemyError as exc:
            logger.warning("Ticket store failed to %s: %s", action, exc)
            raise StoreUnavailableError(
                f"Ticket store failed to {action}",
                office_id=office_id,
                window_id=window_id,
                sequence_id=sequence_id,
            ) from exc

    def _publish(self, events: Iterable[ChangeEvent]) -> None:
        self.feed.publish_all(events)

    # --- Reference data --------------------------------------------------------------

    def priority_labels(self) -> dict[int, str | None]:
        with self._session("read priorities") as db:
            return dict(db.execute(select(PriorityType.id, PriorityType.label)).all())

    def status_labels(self) -> dict[int, str | None]:
        with self._session("read statuses") as db:
            stmt = select(StatusType.id, StatusType.label).order_by(StatusType.id)
            return dict(db.execute(stmt).all())

    def list_priorities(self, *, active_only: bool = True) -> list[PriorityType]:
        with self._session("list priorities") as db:
            stmt = select(PriorityType).order_by(PriorityType.created_at, PriorityType.id)
            if active_only:
                stmt = stmt.where(PriorityType.is_active.is_(True))
            return list(db.scalars(stmt))

    def list_statuses(self) -> list[StatusType]:
        with self._session("list statuses") as db:
            stmt = select(StatusType).order_by(StatusType.created_at, StatusType.id)
            return list(db.scalars(stmt))

    # --- Sequence reads --------------------------------------------------------------

    def _view_query(self) -> Select:
        return (
            select(
                Sequence,
                Ticket.code,
                PriorityType.label,
                StatusType.label,
                Office.description,
                ServiceWindow.description,
            )
            .join(Ticket, Ticket.id == Sequence.ticket_id)
            .join(PriorityType, PriorityType.id == Sequence.priority_id)
            .join(StatusType, StatusType.id == Sequence.status_id)
            .join(Office, Office.id == Sequence.office_id)
            .outerjoin(ServiceWindow, ServiceWindow.id == Sequence.window_id)
        )

    @staticmethod
    def _to_view(result: Row) -> SequenceView:
        sequence, code, priority_label, status_label, office_name, window_name = result
        return SequenceView(
            id=sequence.id,
            created_at=as_utc(sequence.created_at),
            office_id=sequence.office_id,
            ticket_id=sequence.ticket_id,
            ticket_code=code,
            priority_id=sequence.priority_id,
            priority_label=priority_label,
            status_id=sequence.status_id,
            status_label=status_label,
            window_id=sequence.window_id,
            is_active=sequence.is_active,
            office_name=office_name,
            window_name=window_name,
        )

    def load_views(
        self,
        office_ids: Iterable[int] | None = None,
        *,
        active_only: bool = True,
    ) -> list[SequenceView]:
        """Return sequence rows joined with their labels, oldest first."""
        stmt = self._view_query().order_by(Sequence.created_at, Sequence.id)
        if active_only:
            stmt = stmt.where(Sequence.is_active.is_(True))
        if office_ids is not None:
            stmt = stmt.where(Sequence.office_id.in_(list(office_ids)))
        with self._session("load sequences") as db:
            return [self._to_view(result) for result in db.execute(stmt)]

    def get_view(self, sequence_id: int) -> SequenceView | None:
        stmt = self._view_query().where(Sequence.id == sequence_id)
        with self._session("load sequence", sequence_id=sequence_id) as db:
            result = db.execute(stmt).first()
            return self._to_view(result) if result is not None else None

    def recent_rows(self, office_ids: Iterable[int], since: datetime) -> list[SequenceRow]:
        """Return every row (active or not) of the offices created at or after ``since``."""
        ids = list(office_ids)
        if not ids:
            return []
        stmt = (
            select(Sequence)
            .where(Sequence.office_id.in_(ids), Sequence.created_at >= since)
            .order_by(Sequence.created_at, Sequence.id)
        )
        with self._session("load recent sequences") as db:
            return [_to_row(sequence) for sequence in db.scalars(stmt)]

    def recent_ticket_ids(self, since: datetime) -> set[int]:
        """Return the tickets with any row, in any office, created at or after ``since``."""
        stmt = select(Sequence.ticket_id).where(Sequence.created_at >= since).distinct()
        with self._session("load recent tickets") as db:
            return set(db.scalars(stmt))

    def ticket_details(self, row: SequenceRow) -> TicketDetails:
        """Resolve display fields for a row, with placeholders for missing references."""
        with self._session("describe sequence", sequence_id=row.id) as db:
            office_name = db.scalar(select(Office.description).where(Office.id == row.office_id))
            code = db.scalar(select(Ticket.code).where(Ticket.id == row.ticket_id))
            priority_label = db.scalar(
                select(PriorityType.label).where(PriorityType.id == row.priority_id)
            )
            first_sequence_id = db.scalar(
                select(func.min(Sequence.id)).where(Sequence.ticket_id == row.ticket_id)
            )
        return TicketDetails(
            office_name=office_name or UNKNOWN_OFFICE,
            ticket_code=code or UNKNOWN_CODE,
            priority_label=priority_label or DEFAULT_PRIORITY_LABEL,
            first_sequence_id=first_sequence_id,
        )

    def describe_rows(self, rows: Iterable[SequenceRow]) -> dict[int, TicketDetails]:
        """Batch version of :meth:`ticket_details`, keyed by sequence id."""
        rows = list(rows)
        if not rows:
            return {}
        office_ids = {row.office_id for row in rows}
        ticket_ids = {row.ticket_id for row in rows}
        priority_ids = {row.priority_id for row in rows}
        with self._session("describe sequences") as db:
            offices = dict(
                db.execute(
                    select(Office.id, Office.description).where(Office.id.in_(office_ids))
                ).all()
            )
            codes = dict(
                db.execute(select(Ticket.id, Ticket.code).where(Ticket.id.in_(ticket_ids))).all()
            )
            priorities = dict(
                db.execute(
                    select(PriorityType.id, PriorityType.label).where(
                        PriorityType.id.in_(priority_ids)
                    )
                ).all()
            )
            firsts = dict(
                db.execute(
                    select(Sequence.ticket_id, func.min(Sequence.id))
                    .where(Sequence.ticket_id.in_(ticket_ids))
                    .group_by(Sequence.ticket_id)
                ).all()
            )
        return {
            row.id: TicketDetails(
                office_name=offices.get(row.office_id) or UNKNOWN_OFFICE,
                ticket_code=codes.get(row.ticket_id) or UNKNOWN_CODE,
                priority_label=priorities.get(row.priority_id) or DEFAULT_PRIORITY_LABEL,
                first_sequence_id=firsts.get(row.ticket_id),
            )
            for row in rows
        }

    # --- Writes ----------------------------------------------------------------------

    def create_ticket(
        self,
        *,
        office_id: int,
        priority_id: int,
        pending_status_id: int,
        code: str,
    ) -> SequenceView | None:
        """Issue ``code`` and insert the check-in row.

        Returns None when ``code`` is already held by an active ticket. The
        partial unique index on active codes decides, so two concurrent
        check-ins drawing the same code cannot both commit.
        """
        now = self.now()
        try:
            with self._session("create ticket", office_id=office_id) as db, db.begin():
                office = db.get(Office, office_id)
                if office is None or not office.is_active:
                    raise NotFoundError(f"Office {office_id} does not exist or is disabled")
                if db.get(PriorityType, priority_id) is None:
                    raise NotFoundError(f"Priority {priority_id} does not exist")
                ticket = Ticket(code=code, is_active=True, created_at=now)
                db.add(ticket)
                try:
                    db.flush()
                except IntegrityError:
                    raise _ConditionFailed from None
                sequence = Sequence(
                    created_at=now,
                    office_id=office_id,
                    ticket_id=ticket.id,
                    priority_id=priority_id,
                    status_id=pending_status_id,
                    window_id=None,
                    is_active=True,
                )
                db.add(sequence)
                db.flush()
                inserted = _to_row(sequence)
        except _ConditionFailed:
            return None

        self._publish([ChangeEvent(SEQUENCE_TABLE, ChangeKind.INSERT, inserted)])
        logger.info("Issued ticket %s in office %s (sequence %s)", code, office_id, inserted.id)
        return self.get_view(inserted.id)

    def claim_next(
        self,
        *,
        office_id: int,
        window_id: int,
        serving_status_id: int,
        pending_status_ids: Iterable[int],
        occupying_status_ids: Iterable[int],
    ) -> SequenceView | None:
        """Atomically bind the best pending ticket of an office to a window.

        Runs as one transaction: the window row is locked and its
        ``claim_version`` compared-and-swapped, and the chosen pending row is
        deactivated only if it is still active and pending. Any lost race,
        a busy window or an empty queue all return None.
        """
        pending_ids = list(pending_status_ids)
        occupying_ids = list(occupying_status_ids)
        now = self.now()
        try:
            with (
                self._session("claim next ticket", office_id=office_id, window_id=window_id) as db,
                db.begin(),
            ):
                window = db.execute(
                    select(ServiceWindow).where(ServiceWindow.id == window_id).with_for_update()
                ).scalar_one_or_none()
                if window is None:
                    raise NotFoundError(f"Window {window_id} does not exist")
                if window.office_id != office_id:
                    raise PreconditionError(
                        f"Window {window_id} does not belong to office {office_id}"
                    )

                busy = db.scalar(
                    select(Sequence.id)
                    .where(
                        Sequence.window_id == window_id,
                        Sequence.is_active.is_(True),
                        Sequence.status_id.in_(occupying_ids),
                    )
                    .limit(1)
                )
                if busy is not None:
                    raise _ConditionFailed

                candidate = db.scalars(
                    select(Sequence)
                    .join(PriorityType, PriorityType.id == Sequence.priority_id)
                    .where(
                        Sequence.office_id == office_id,
                        Sequence.is_active.is_(True),
                        Sequence.status_id.in_(pending_ids),
                        or_(Sequence.window_id.is_(None), Sequence.window_id == window_id),
                    )
                    .order_by(
                        rank_expression(PriorityType.label),
                        Sequence.created_at,
                        Sequence.id,
                    )
                    .limit(1)
                    .with_for_update(of=Sequence, skip_locked=True)
                ).first()
                if candidate is None:
                    raise _ConditionFailed
                claimed = _to_row(candidate)

                seen_version = window.claim_version
                bumped = db.execute(
                    update(ServiceWindow)
                    .where(
                        ServiceWindow.id == window_id,
                        ServiceWindow.claim_version == seen_version,
                    )
                    .values(claim_version=seen_version + 1)
                    .execution_options(synchronize_session=False)
                )
                if bumped.rowcount != 1:
                    raise _ConditionFailed

                self._deactivate(db, claimed)
                successor = self._insert_successor(
                    db,
                    claimed,
                    now=now,
                    status_id=serving_status_id,
                    office_id=office_id,
                    window_id=window_id,
                    is_active=True,
                )
        except _ConditionFailed:
            logger.debug("Nothing claimed for office %s window %s", office_id, window_id)
            return None

        self._publish(
            [
                ChangeEvent(SEQUENCE_TABLE, ChangeKind.UPDATE, replace(claimed, is_active=False)),
                ChangeEvent(SEQUENCE_TABLE, ChangeKind.INSERT, successor),
            ]
        )
        logger.info(
            "Window %s claimed sequence %s (ticket %s) in office %s",
            window_id,
            successor.id,
            successor.ticket_id,
            office_id,
        )
        return self.get_view(successor.id)

    def advance(
        self,
        sequence_id: int,
        *,
        expected_status_ids: Iterable[int],
        status_id: int,
        office_id: int | None = None,
        window_id: int | None | _Unchanged = KEEP_WINDOW,
        successor_active: bool = True,
        deactivate_ticket: bool = False,
    ) -> SequenceView | None:
        """Replace an active row with a successor in a new status.

        The current row is deactivated only if it is still active and in one
        of ``expected_status_ids``; otherwise nothing is written and None is
        returned so the caller can re-read the projection.
        """
        expected = list(expected_status_ids)
        now = self.now()
        try:
            with self._session("advance sequence", sequence_id=sequence_id) as db, db.begin():
                current = db.get(Sequence, sequence_id)
                if current is None:
                    raise NotFoundError(f"Sequence {sequence_id} does not exist")
                if office_id is not None and office_id != current.office_id:
                    target = db.get(Office, office_id)
                    if target is None or not target.is_active:
                        raise NotFoundError(f"Office {office_id} does not exist or is disabled")
                previous = _to_row(current)
                if not previous.is_active or previous.status_id not in expected:
                    raise _ConditionFailed
                self._deactivate(db, previous)
                successor = self._insert_successor(
                    db,
                    previous,
                    now=now,
                    status_id=status_id,
                    office_id=office_id if office_id is not None else previous.office_id,
                    window_id=(
                        previous.window_id if isinstance(window_id, _Unchanged) else window_id
                    ),
                    is_active=successor_active,
                )
                if deactivate_ticket:
                    db.execute(
                        update(Ticket)
                        .where(Ticket.id == previous.ticket_id)
                        .values(is_active=False)
                        .execution_options(synchronize_session=False)
                    )
        except _ConditionFailed:
            logger.info("Sequence %s already advanced elsewhere; nothing changed", sequence_id)
            return None

        self._publish(
            [
                ChangeEvent(SEQUENCE_TABLE, ChangeKind.UPDATE, replace(previous, is_active=False)),
                ChangeEvent(SEQUENCE_TABLE, ChangeKind.INSERT, successor),
            ]
        )
        return self.get_view(successor.id)

    @staticmethod
    def _deactivate(db: Session, row: SequenceRow) -> None:
        result = db.execute(
            update(Sequence)
            .where(
                and_(
                    Sequence.id == row.id,
                    Sequence.is_active.is_(True),
                    Sequence.status_id == row.status_id,
                )
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise _ConditionFailed

    @staticmethod
    def _insert_successor(
        db: Session,
        previous: SequenceRow,
        *,
        now: datetime,
        status_id: int,
        office_id: int,
        window_id: int | None,
        is_active: bool,
    ) -> SequenceRow:
        successor = Sequence(
            created_at=now,
            office_id=office_id,
            ticket_id=previous.ticket_id,
            priority_id=previous.priority_id,
            status_id=status_id,
            window_id=window_id,
            is_active=is_active,
        )
        db.add(successor)
        db.flush()
        return _to_row(successor)

    # --- Account metadata ------------------------------------------------------------

    def get_account_value(self, account_id: str, key: str) -> str | None:
        with self._session("read account metadata") as db:
            entry = db.get(AccountMetadata, (account_id, key))
            return entry.value if entry is not None else None

    def set_account_value(self, account_id: str, key: str, value: str) -> None:
        with self._session("write account metadata") as db, db.begin():
            db.merge(AccountMetadata(account_id=account_id, key=key, value=value))


class _TicketStoreSingleton:
    """Singleton wrapper for the application-wide TicketStore."""

    _instance: TicketStore | None = None

    @classmethod
    def get_instance(cls) -> TicketStore:
        """Get or create the singleton TicketStore bound to the configured database."""
        if cls._instance is None:
            cls._instance = TicketStore(SessionLocal)
        return cls._instance


def get_ticket_store() -> TicketStore:
    """Return the application-wide ticket store."""
    return _TicketStoreSingleton.get_instance()
