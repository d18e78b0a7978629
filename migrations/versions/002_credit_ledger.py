"""Create the append-only ledger tables.

Revision ID: 002_credit_ledger
Revises: 001_users
Create Date: 2026-10-05

- credit_ledger_entries: signed deltas; a user's balance is their SUM(delta).
  source_ref is the idempotency key and is unique across all entries.
- usage_events: what each spend paid for, keyed by the spend's key, with an
  optional cached result for replay.

User foreign keys are RESTRICT: ledger history is never deleted.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "002_credit_ledger"
down_revision: str | None = "001_users"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # =========================================================================
    # Ledger entries
    # =========================================================================
    op.create_table(
        "credit_ledger_entries",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("delta", sa.BigInteger(), nullable=False),
        sa.Column(
            "currency", sa.String(20), nullable=False, server_default="credits"
        ),
        sa.Column("reason", sa.String(120), nullable=True),
        sa.Column("source", sa.String(20), nullable=True),
        sa.Column("source_ref", sa.String(255), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=True),
        sa.Column("metadata", JSONB(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("delta <> 0", name="ck_ledger_delta_nonzero"),
        sa.UniqueConstraint(
            "source_ref", name="credit_ledger_entries_source_ref_key"
        ),
    )
    op.create_index(
        "ix_ledger_entries_user_created",
        "credit_ledger_entries",
        ["user_id", "created_at"],
    )

    # =========================================================================
    # Usage events
    # =========================================================================
    op.create_table(
        "usage_events",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("meter_code", sa.String(100), nullable=False),
        sa.Column("quantity", sa.BigInteger(), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("result_json", JSONB(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("quantity > 0", name="ck_usage_event_quantity_positive"),
        sa.UniqueConstraint(
            "idempotency_key", name="usage_events_idempotency_key_key"
        ),
    )
    op.create_index(
        "ix_usage_events_user_created",
        "usage_events",
        ["user_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_usage_events_user_created", table_name="usage_events")
    op.drop_table("usage_events")

    op.drop_index(
        "ix_ledger_entries_user_created", table_name="credit_ledger_entries"
    )
    op.drop_table("credit_ledger_entries")
