"""Grant engine: credit a user's balance at most once per key.

All top-up paths (checkout, subscription invoices, operator grants,
simulated renewals) end here. Same transaction shape as a spend without the
balance check: pre-check the key, lock the user row, aggregate, append one
credit entry, commit.

A key is only "already applied" when it names a credit to the same user. A
key held by a debit or by another user's entry is rejected, so a grant is
never silently dropped.
"""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.database import transient_store_errors
from credit_ledger.core.errors import NotFoundError, ValidationError
from credit_ledger.models.ledger import MAX_CREDIT_AMOUNT, LedgerEntry
from credit_ledger.repositories.ledger_repository import LedgerRepository
from credit_ledger.services.idempotency import find_applied_grant, validate_client_key

logger = logging.getLogger(__name__)

ADMIN_SOURCE = "admin"
DEFAULT_ADMIN_REASON = "grant"


class GrantOutcome(Enum):
    """How a grant request was resolved."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"


@dataclass(frozen=True)
class GrantResult:
    """Result of a grant request.

    Attributes:
        outcome: Applied or already applied.
        balance: Balance after the grant, or the current balance when the
            key had already been used.
        balance_before: Balance the grant was applied on top of (None when
            already applied).
    """

    outcome: GrantOutcome
    balance: int
    balance_before: int | None = None

    @property
    def idempotent(self) -> bool:
        """True when the key had already been granted."""
        return self.outcome is GrantOutcome.ALREADY_APPLIED


class GrantService:
    """Credits user balances.

    The service commits (or rolls back) the session it is given.

    Args:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def grant(
        self,
        user_id: uuid.UUID,
        *,
        amount: int,
        reason: str,
        source: str | None,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
    ) -> GrantResult:
        """Credit ``amount`` to the user exactly once per key.

        Args:
            user_id: User being credited.
            amount: Credits to add. Must be positive.
            reason: Classification stored on the entry.
            source: Origin tag (stripe, test, admin).
            idempotency_key: Key for this grant, at least 8 characters.
            metadata: Opaque audit payload stored with the entry.

        Returns:
            GrantResult.

        Raises:
            ValidationError: If amount or key is invalid, or the key is
                held by a debit or by another user's entry.
            NotFoundError: If the user does not exist.
            TransientStoreError: If the store failed; nothing was applied.
        """
        if amount <= 0 or amount > MAX_CREDIT_AMOUNT:
            raise ValidationError(
                f"amount must be between 1 and {MAX_CREDIT_AMOUNT}",
                details=[{"field": "amount", "value": amount}],
            )
        key = validate_client_key(idempotency_key)

        async with transient_store_errors(self._db, "grant"):
            existing = await find_applied_grant(self._db, key)
            if existing is not None:
                return await self._already_applied(existing, user_id, key)

            if not await LedgerRepository.lock_user(self._db, user_id):
                await self._db.rollback()
                raise NotFoundError("User", str(user_id))

            balance = await LedgerRepository.get_balance(self._db, user_id)
            new_balance = balance + amount
            try:
                async with self._db.begin_nested():
                    await LedgerRepository.create(
                        self._db,
                        user_id=user_id,
                        delta=amount,
                        reason=reason,
                        source=source,
                        source_ref=key,
                        balance_after=new_balance,
                        metadata=metadata,
                    )
            except IntegrityError:
                # Savepoint was rolled back; a concurrent grant holds the key.
                await self._db.rollback()
                existing = await find_applied_grant(self._db, key)
                if existing is None:
                    raise
                return await self._already_applied(existing, user_id, key)

            await self._db.commit()

        logger.info(
            "Granted %d credits to user %s (%s, key=%s), balance=%d",
            amount,
            user_id,
            reason,
            key,
            new_balance,
        )
        return GrantResult(GrantOutcome.APPLIED, new_balance, balance_before=balance)

    async def _already_applied(
        self, existing: LedgerEntry, user_id: uuid.UUID, key: str
    ) -> GrantResult:
        if existing.delta < 0 or existing.user_id != user_id:
            entry_id = existing.id
            await self._db.rollback()
            logger.warning(
                "Grant key %s for user %s collides with entry %s", key, user_id, entry_id
            )
            raise ValidationError(
                "idempotency_key is already used by another ledger entry",
                details=[{"field": "idempotency_key"}],
            )
        balance = await LedgerRepository.get_balance(self._db, user_id)
        await self._db.commit()
        logger.info("Grant %s already applied for user %s", key, user_id)
        return GrantResult(GrantOutcome.ALREADY_APPLIED, balance)

    async def admin_grant(
        self,
        user_id: uuid.UUID,
        *,
        amount: int,
        idempotency_key: str,
        reason: str | None = None,
    ) -> GrantResult:
        """Operator grant (credential checked by the caller).

        Args:
            user_id: User being credited.
            amount: Credits to add.
            idempotency_key: Operator-supplied key.
            reason: Optional reason; defaults to "grant".

        Returns:
            GrantResult.
        """
        return await self.grant(
            user_id,
            amount=amount,
            reason=(reason or "").strip() or DEFAULT_ADMIN_REASON,
            source=ADMIN_SOURCE,
            idempotency_key=idempotency_key,
        )
