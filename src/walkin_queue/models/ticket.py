# src/walkin_queue/models/ticket.py
"""Models for ticket codes and their sequence rows."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from walkin_queue.db.session import Base
from walkin_queue.db.time import utcnow


class Ticket(Base):
    """Short display code handed to a customer at check-in.

    A code is unique among active tickets only; completed tickets release it.
    """

    __tablename__ = "ticket"
    __table_args__ = (
        Index(
            "uq_ticket_active_code",
            "code",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )


class Sequence(Base):
    """One state of a ticket's journey through the offices.

    Check-in inserts the first row. Every staff action deactivates the current
    row and inserts a successor, so the table doubles as the audit trail and
    each ticket has at most one active row.
    """

    __tablename__ = "sequence"
    __table_args__ = (
        Index("ix_sequence_office_created", "office_id", "created_at"),
        Index("ix_sequence_window_active", "window_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    office_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("office.id"), nullable=False)
    ticket_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("ticket.id"),
        nullable=False,
        index=True,
    )
    priority_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("priority_type.id"),
        nullable=False,
    )
    status_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("status_type.id"),
        nullable=False,
    )
    # Only bound while serving/arrived; cleared by transfer.
    window_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("service_window.id"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
