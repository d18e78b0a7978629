"""Repository for payment-provider customer mappings.

Provides database access for the customers table, which links a
provider customer id to the internal user that owns it.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.models.billing import Customer


class CustomerRepository:
    """Stateless repository for Customer table operations.

    All methods are static. Pass an AsyncSession for every call so the
    caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        provider_customer_id: str,
        provider: str = "stripe",
    ) -> Customer:
        """Link a provider customer to a user.

        Args:
            db: Async database session.
            user_id: Internal owner.
            provider_customer_id: Provider's customer id.
            provider: Provider name.

        Returns:
            Created Customer with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If the provider customer is
                already linked.
        """
        customer = Customer(
            user_id=user_id,
            provider=provider,
            provider_customer_id=provider_customer_id,
        )
        db.add(customer)
        await db.flush()
        await db.refresh(customer)
        return customer

    @staticmethod
    async def get_by_provider_customer_id(
        db: AsyncSession,
        provider_customer_id: str,
        provider: str = "stripe",
    ) -> Customer | None:
        """Resolve a provider customer id to its mapping.

        Args:
            db: Async database session.
            provider_customer_id: Provider's customer id.
            provider: Provider name.

        Returns:
            Customer if mapped, None otherwise.
        """
        stmt = select(Customer).where(
            Customer.provider == provider,
            Customer.provider_customer_id == provider_customer_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_for_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        provider: str = "stripe",
    ) -> Customer | None:
        """Find the user's customer record for a provider.

        Args:
            db: Async database session.
            user_id: Internal user.
            provider: Provider name.

        Returns:
            The oldest mapping for that provider, or None.
        """
        stmt = (
            select(Customer)
            .where(Customer.user_id == user_id, Customer.provider == provider)
            .order_by(Customer.created_at)
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()
