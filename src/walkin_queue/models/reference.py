# src/walkin_queue/models/reference.py
"""Administrator-managed label tables for priorities and statuses."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from walkin_queue.db.session import Base
from walkin_queue.db.time import utcnow


class PriorityType(Base):
    """Free-text priority label, ranked by keyword containment."""

    __tablename__ = "priority_type"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )


class StatusType(Base):
    """Free-text status label, resolved to a lifecycle bucket by substring."""

    __tablename__ = "status_type"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
