# src/walkin_queue/models/office.py
"""SQLAlchemy models for offices and their service windows."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from walkin_queue.db.session import Base
from walkin_queue.db.time import utcnow


class Office(Base):
    """A service location (registration, billing, laboratory...) holding one queue.

    Offices are soft-disabled through ``is_active`` and never hard-deleted while
    sequences still reference them.
    """

    __tablename__ = "office"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    windows: Mapped[list["ServiceWindow"]] = relationship(
        back_populates="office",
        order_by="ServiceWindow.id",
    )


class ServiceWindow(Base):
    """One physical service point inside an office."""

    __tablename__ = "service_window"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    office_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("office.id"),
        nullable=False,
        index=True,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Bumped by every successful claim; claims compare-and-swap on it.
    claim_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    office: Mapped[Office] = relationship(back_populates="windows")
