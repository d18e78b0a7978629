"""Payment-provider collaborator models.

Customer maps a provider's customer id to an internal user. Every credit
grant that originates at the payment provider is routed through this
mapping; an unmapped customer is never guessed.

Subscription mirrors the provider's subscription state for entitlement
reads. Neither table represents a balance.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from credit_ledger.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from credit_ledger.models.user import User

_DEFAULT_UUID = text("gen_random_uuid()")

ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")


class Customer(Base, TimestampMixin):
    """Payment-provider customer owned by a user.

    Attributes:
        id: UUID primary key.
        user_id: FK to users table.
        provider: Provider name ("stripe").
        provider_customer_id: Provider's customer id (e.g., "cus_...").
        created_at: Record creation timestamp.
        updated_at: Last modification timestamp.
    """

    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint(
            "provider",
            "provider_customer_id",
            name="uq_customers_provider_customer",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_customer_id: Mapped[str] = mapped_column(String(255), nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="customers")


class Subscription(Base, TimestampMixin):
    """Provider subscription state, upserted from subscription events.

    Attributes:
        id: UUID primary key.
        user_id: FK to users table.
        provider: Provider name ("stripe").
        provider_subscription_id: Provider's subscription id (unique).
        status: Provider status ("active", "trialing", "canceled", ...).
        current_period_end: End of the paid period, if known.
        plan_code: Plan identifier (price nickname), if known.
        quantity: Seat/unit count of the first subscription item.
    """

    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_subscription_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    plan_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        server_default=text("1"),
    )

    user: Mapped["User"] = relationship("User", back_populates="subscriptions")
