"""Credit ledger ORM models. Append-only, no TimestampMixin.

LedgerEntry is the single source of truth for balances: a user's balance is
the sum of their entries' deltas. UsageEvent records what a spend paid for
and shares its idempotency key with the debit it belongs to.

Neither table is ever updated or deleted from, with one exception:
UsageEvent.result_json may be filled in after the fact to cache the output
of the metered work for idempotent replay.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from credit_ledger.models.base import Base

_DEFAULT_UUID = text("gen_random_uuid()")

CREDITS_CURRENCY = "credits"

# Upper bound for a single spend or grant.
MAX_CREDIT_AMOUNT = 1_000_000_000


class LedgerEntry(Base):
    """One signed balance delta attributable to a user.

    Positive deltas are grants (checkout, subscription renewal, admin).
    Negative deltas are spends. Zero is rejected by a CHECK constraint.

    Attributes:
        id: UUID primary key.
        user_id: FK to users table; all aggregation is partitioned by it.
        delta: Signed number of credits.
        currency: Unit tag, always "credits".
        reason: Free-form classification ("checkout_topup", "spend:parse:page").
        source: Origin system tag (stripe, usage, test, admin) or None.
        source_ref: Idempotency key. Unique across all entries.
        balance_after: Advisory snapshot of the balance right after this entry.
        entry_metadata: Opaque audit payload, stored in the "metadata" column.
        created_at: Immutable creation timestamp.
    """

    __tablename__ = "credit_ledger_entries"
    __table_args__ = (
        CheckConstraint("delta <> 0", name="ck_ledger_delta_nonzero"),
        Index("ix_ledger_entries_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    delta: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CREDITS_CURRENCY,
        server_default=CREDITS_CURRENCY,
    )
    reason: Mapped[str | None] = mapped_column(
        String(120),
        nullable=True,
    )
    source: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )
    source_ref: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )
    balance_after: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )
    entry_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class UsageEvent(Base):
    """What a spend consumed, keyed by the spend's idempotency key.

    Attributes:
        id: UUID primary key.
        user_id: FK to users table.
        meter_code: Metered feature/action (e.g., "parse:page").
        quantity: Credits consumed; equals the magnitude of the paired debit.
        idempotency_key: Unique; same value as the debit's source_ref.
        result_json: Optional cached output of the metered operation.
        created_at: Immutable creation timestamp.
    """

    __tablename__ = "usage_events"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_usage_event_quantity_positive"),
        Index("ix_usage_events_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    meter_code: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    idempotency_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )
    result_json: Mapped[Any | None] = mapped_column(
        JSONB,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
