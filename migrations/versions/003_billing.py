"""Create payment-provider collaborator tables.

Revision ID: 003_billing
Revises: 002_credit_ledger
Create Date: 2026-10-05

- customers: maps a provider customer id to the user it belongs to.
- subscriptions: mirrored subscription state for entitlement reads.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "003_billing"
down_revision: str | None = "002_credit_ledger"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("provider_customer_id", sa.String(255), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "provider",
            "provider_customer_id",
            name="uq_customers_provider_customer",
        ),
    )
    op.create_index("ix_customers_user_id", "customers", ["user_id"])

    op.create_table(
        "subscriptions",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("provider_subscription_id", sa.String(255), nullable=False),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("plan_code", sa.String(100), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.UniqueConstraint(
            "provider_subscription_id",
            name="subscriptions_provider_subscription_id_key",
        ),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_subscriptions_user_id", table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_index("ix_customers_user_id", table_name="customers")
    op.drop_table("customers")
