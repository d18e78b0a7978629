"""Repository for credit ledger entry operations.

Provides database access for the credit_ledger_entries table: the
authoritative balance aggregate, the advisory display balance, the per-user
row lock that serializes mutations, and append/list operations.
"""

import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.models.ledger import CREDITS_CURRENCY, LedgerEntry
from credit_ledger.models.user import User


class LedgerRepository:
    """Stateless repository for LedgerEntry table operations.

    All methods are static. No instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
        """Sum every delta recorded for the user.

        This is the authoritative balance. When used for a check-then-write
        decision it must run in the same transaction as the write, after
        lock_user().

        Args:
            db: Async database session.
            user_id: User to aggregate.

        Returns:
            Current balance in credits; 0 when the user has no entries.
        """
        stmt = select(func.coalesce(func.sum(LedgerEntry.delta), 0)).where(
            LedgerEntry.user_id == user_id
        )
        result = await db.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    async def get_display_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
        """Read balance_after of the user's most recent entry.

        Cheap but advisory: may lag the aggregate and must never gate a
        spend.

        Args:
            db: Async database session.
            user_id: User to query.

        Returns:
            Snapshot balance; 0 when there are no entries.
        """
        stmt = (
            select(LedgerEntry.balance_after)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        snapshot = result.scalar_one_or_none()
        return snapshot if snapshot is not None else 0

    @staticmethod
    async def lock_user(db: AsyncSession, user_id: uuid.UUID) -> bool:
        """Take a row lock on the user for the rest of the transaction.

        Concurrent spends and grants for the same user serialize here, so
        each one aggregates over every previously committed delta.

        Args:
            db: Async database session.
            user_id: User to lock.

        Returns:
            True if the user row exists, False otherwise.
        """
        stmt = select(User.id).where(User.id == user_id).with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def get_by_source_ref(
        db: AsyncSession, source_ref: str
    ) -> LedgerEntry | None:
        """Find the ledger entry recorded under an idempotency key.

        Args:
            db: Async database session.
            source_ref: Idempotency key.

        Returns:
            LedgerEntry if found, None otherwise.
        """
        stmt = select(LedgerEntry).where(LedgerEntry.source_ref == source_ref)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        delta: int,
        source_ref: str,
        reason: str | None = None,
        source: str | None = None,
        balance_after: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Append a ledger entry.

        Raises IntegrityError (at flush) when source_ref already exists;
        callers wrap this in a savepoint and treat that as already applied.

        Args:
            db: Async database session.
            user_id: Account owner.
            delta: Signed credits (+grant, -spend). Never zero.
            source_ref: Idempotency key.
            reason: Classification (e.g., "checkout_topup").
            source: Origin system tag.
            balance_after: Balance immediately after this entry.
            metadata: Opaque audit payload.

        Returns:
            Created LedgerEntry with database-generated fields.

        Raises:
            ValueError: If delta is zero.
        """
        if delta == 0:
            raise ValueError("Ledger delta must be non-zero")
        entry = LedgerEntry(
            user_id=user_id,
            delta=delta,
            currency=CREDITS_CURRENCY,
            reason=reason,
            source=source,
            source_ref=source_ref,
            balance_after=balance_after,
            entry_metadata=metadata,
        )
        db.add(entry)
        await db.flush()
        await db.refresh(entry)
        return entry

    @staticmethod
    async def list_by_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 50,
        source: str | None = None,
    ) -> tuple[list[LedgerEntry], int]:
        """List ledger entries for a user, newest first.

        Args:
            db: Async database session.
            user_id: User to query entries for.
            offset: Number of records to skip.
            limit: Maximum records to return.
            source: Optional filter (stripe, usage, test, admin).

        Returns:
            Tuple of (entries list, total count).
        """
        conditions = [LedgerEntry.user_id == user_id]
        if source is not None:
            conditions.append(LedgerEntry.source == source)

        count_stmt = select(func.count()).select_from(LedgerEntry).where(*conditions)
        total_result = await db.execute(count_stmt)
        total = total_result.scalar_one()

        data_stmt = (
            select(LedgerEntry)
            .where(*conditions)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(data_stmt)
        entries = list(result.scalars().all())

        return entries, total
