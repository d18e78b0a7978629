"""Repository for subscription state.

Provides database access for the subscriptions table: an upsert keyed on
the provider subscription id (events may arrive in any order and more than
once) and the active-plan read used by entitlements.
"""

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.models.billing import ACTIVE_SUBSCRIPTION_STATUSES, Subscription


class SubscriptionRepository:
    """Stateless repository for Subscription table operations.

    All methods are static. Pass an AsyncSession for every call so the
    caller controls transaction boundaries.
    """

    @staticmethod
    async def upsert(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        provider_subscription_id: str,
        status: str,
        current_period_end: datetime | None = None,
        plan_code: str | None = None,
        quantity: int = 1,
        provider: str = "stripe",
    ) -> Subscription:
        """Insert or update a subscription by provider subscription id.

        Args:
            db: Async database session.
            user_id: Internal owner.
            provider_subscription_id: Provider's subscription id.
            status: Provider status.
            current_period_end: End of the current period.
            plan_code: Plan identifier.
            quantity: Item quantity.
            provider: Provider name.

        Returns:
            The stored Subscription.
        """
        values = {
            "user_id": user_id,
            "provider": provider,
            "provider_subscription_id": provider_subscription_id,
            "status": status,
            "current_period_end": current_period_end,
            "plan_code": plan_code,
            "quantity": quantity,
        }
        stmt = (
            pg_insert(Subscription)
            .values(**values)
            .on_conflict_do_update(
                index_elements=["provider_subscription_id"],
                set_={
                    "user_id": user_id,
                    "status": status,
                    "current_period_end": current_period_end,
                    "plan_code": plan_code,
                    "quantity": quantity,
                    "updated_at": func.now(),
                },
            )
            .returning(Subscription)
        )
        result = await db.execute(
            stmt, execution_options={"populate_existing": True}
        )
        return result.scalar_one()

    @staticmethod
    async def list_active(
        db: AsyncSession,
        user_id: uuid.UUID,
    ) -> list[Subscription]:
        """List the user's subscriptions in an active or trialing state.

        Args:
            db: Async database session.
            user_id: Internal user.

        Returns:
            Subscriptions ordered by creation time.
        """
        stmt = (
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status.in_(ACTIVE_SUBSCRIPTION_STATUSES),
            )
            .order_by(Subscription.created_at)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())
