"""initial queue schema

Revision ID: 3c1f0a7d9b21
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3c1f0a7d9b21"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create offices, windows, reference labels, tickets and sequences."""
    op.create_table(
        "office",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "service_window",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("office_id", sa.BigInteger(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("claim_version", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["office_id"], ["office.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_service_window_office_id", "service_window", ["office_id"])

    for table in ("priority_type", "status_type"):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("label", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    op.create_table(
        "ticket",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ticket_code", "ticket", ["code"])
    op.create_index(
        "uq_ticket_active_code",
        "ticket",
        ["code"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active"),
    )

    op.create_table(
        "sequence",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("office_id", sa.BigInteger(), nullable=False),
        sa.Column("ticket_id", sa.BigInteger(), nullable=False),
        sa.Column("priority_id", sa.BigInteger(), nullable=False),
        sa.Column("status_id", sa.BigInteger(), nullable=False),
        sa.Column("window_id", sa.BigInteger(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["office_id"], ["office.id"]),
        sa.ForeignKeyConstraint(["ticket_id"], ["ticket.id"]),
        sa.ForeignKeyConstraint(["priority_id"], ["priority_type.id"]),
        sa.ForeignKeyConstraint(["status_id"], ["status_type.id"]),
        sa.ForeignKeyConstraint(["window_id"], ["service_window.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sequence_ticket_id", "sequence", ["ticket_id"])
    op.create_index("ix_sequence_office_created", "sequence", ["office_id", "created_at"])
    op.create_index("ix_sequence_window_active", "sequence", ["window_id", "is_active"])

    op.create_table(
        "account_metadata",
        sa.Column("account_id", sa.Text(), nullable=False),
        sa.Column("key", sa.Text(), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("account_id", "key"),
    )


def downgrade() -> None:
    """Drop every queue table."""
    op.drop_table("account_metadata")
    op.drop_index("ix_sequence_window_active", table_name="sequence")
    op.drop_index("ix_sequence_office_created", table_name="sequence")
    op.drop_index("ix_sequence_ticket_id", table_name="sequence")
    op.drop_table("sequence")
    op.drop_index("uq_ticket_active_code", table_name="ticket")
    op.drop_index("ix_ticket_code", table_name="ticket")
    op.drop_table("ticket")
    op.drop_table("status_type")
    op.drop_table("priority_type")
    op.drop_index("ix_service_window_office_id", table_name="service_window")
    op.drop_table("service_window")
    op.drop_table("office")
