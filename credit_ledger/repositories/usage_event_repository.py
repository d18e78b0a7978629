"""Repository for usage event operations.

Provides database access for the usage_events table. Usage events are
append-only except for result_json, which caches the output of the
metered operation for idempotent replay.
"""

import uuid
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.models.ledger import UsageEvent


class UsageEventRepository:
    """Stateless repository for UsageEvent table operations.

    All methods are static. No instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_idempotency_key(
        db: AsyncSession, idempotency_key: str
    ) -> UsageEvent | None:
        """Find the usage event recorded under an idempotency key.

        Args:
            db: Async database session.
            idempotency_key: Spend idempotency key.

        Returns:
            UsageEvent if found, None otherwise.
        """
        stmt = select(UsageEvent).where(UsageEvent.idempotency_key == idempotency_key)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        meter_code: str,
        quantity: int,
        idempotency_key: str,
    ) -> UsageEvent:
        """Create a new usage event.

        Args:
            db: Async database session.
            user_id: Account owner.
            meter_code: Metered feature/action.
            quantity: Credits consumed (positive).
            idempotency_key: Same key as the paired debit's source_ref.

        Returns:
            Created UsageEvent with database-generated fields.
        """
        event = UsageEvent(
            user_id=user_id,
            meter_code=meter_code,
            quantity=quantity,
            idempotency_key=idempotency_key,
        )
        db.add(event)
        await db.flush()
        await db.refresh(event)
        return event

    @staticmethod
    async def attach_result(
        db: AsyncSession,
        *,
        idempotency_key: str,
        result: Any,
    ) -> bool:
        """Write result_json for an existing usage event.

        Args:
            db: Async database session.
            idempotency_key: Key of the usage event.
            result: JSON-serializable result payload.

        Returns:
            True if a row was updated, False if no event has that key.
        """
        stmt = (
            update(UsageEvent)
            .where(UsageEvent.idempotency_key == idempotency_key)
            .values(result_json=result)
            .returning(UsageEvent.id)
        )
        updated = await db.execute(stmt)
        return updated.scalar_one_or_none() is not None

    @staticmethod
    async def list_by_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 50,
        meter_code: str | None = None,
    ) -> tuple[list[UsageEvent], int]:
        """List usage events for a user, newest first.

        Args:
            db: Async database session.
            user_id: User to query events for.
            offset: Number of records to skip.
            limit: Maximum records to return.
            meter_code: Optional filter.

        Returns:
            Tuple of (events list, total count).
        """
        conditions = [UsageEvent.user_id == user_id]
        if meter_code is not None:
            conditions.append(UsageEvent.meter_code == meter_code)

        count_stmt = select(func.count()).select_from(UsageEvent).where(*conditions)
        total_result = await db.execute(count_stmt)
        total = total_result.scalar_one()

        data_stmt = (
            select(UsageEvent)
            .where(*conditions)
            .order_by(UsageEvent.created_at.desc(), UsageEvent.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        events = list(result.scalars().all())

        return events, total
