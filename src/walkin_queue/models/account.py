# src/walkin_queue/models/account.py
"""Per-account key-value metadata shared across devices."""


from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from walkin_queue.db.session import Base

NOTIFICATION_CLEARED_AT_KEY = "notification_cleared_at"


class AccountMetadata(Base):
    """Small account-level slot (e.g. the notification clear checkpoint)."""

    __tablename__ = "account_metadata"

    account_id: Mapped[str] = mapped_column(Text, primary_key=True)
    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
