"""Spend engine: debit credits for a metered action, at most once per key.

One transaction per spend:
1. Pre-check the usage event by idempotency key (replay short-circuit).
2. Lock the user's row so concurrent mutations for that user serialize,
   then repeat the pre-check: a same-key request that held the lock may
   have committed while this one waited.
3. Aggregate the balance over all committed entries.
4. Reject with no writes when the balance is below the amount.
5. Append the debit entry and its usage event under the same key, commit.

A unique-key violation at step 5 means a concurrent request with the same
key won; that is reported as already applied, not as an error.

Keys are global. A key already spent by another user is rejected rather
than reported as applied, so it cannot be used to skip a charge.
"""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.database import transient_store_errors
from credit_ledger.core.errors import NotFoundError, ValidationError
from credit_ledger.models.ledger import MAX_CREDIT_AMOUNT, UsageEvent
from credit_ledger.repositories.ledger_repository import LedgerRepository
from credit_ledger.repositories.usage_event_repository import UsageEventRepository
from credit_ledger.services.idempotency import (
    find_applied_grant,
    find_applied_spend,
    validate_spend_key,
)

logger = logging.getLogger(__name__)

SPEND_SOURCE = "usage"
SPEND_REASON_PREFIX = "spend:"


class SpendOutcome(Enum):
    """How a spend request was resolved."""

    APPLIED = "applied"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ALREADY_APPLIED = "already_applied"


@dataclass(frozen=True)
class SpendResult:
    """Result of a spend request.

    Attributes:
        outcome: Applied, insufficient, or already applied.
        balance: Balance after the spend (applied), the balance that was too
            low (insufficient), or the current balance (already applied).
    """

    outcome: SpendOutcome
    balance: int

    @property
    def ok(self) -> bool:
        """True unless the spend was rejected for insufficient balance."""
        return self.outcome is not SpendOutcome.INSUFFICIENT_BALANCE

    @property
    def idempotent(self) -> bool:
        """True when the key had already been spent."""
        return self.outcome is SpendOutcome.ALREADY_APPLIED


class SpendService:
    """Debits user balances for metered usage.

    The service commits (or rolls back) the session it is given; callers
    must not hold unrelated pending work on it.

    Args:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def spend(
        self,
        user_id: uuid.UUID,
        *,
        amount: int,
        meter_code: str,
        idempotency_key: str,
    ) -> SpendResult:
        """Debit ``amount`` credits for ``meter_code`` exactly once per key.

        Args:
            user_id: Authenticated user being charged.
            amount: Credits to debit. Must be positive.
            meter_code: Metered feature/action (e.g., "parse:page").
            idempotency_key: Client key, at least 8 characters.

        Returns:
            SpendResult. Insufficient balance is a result, not an exception.

        Raises:
            ValidationError: If amount, meter_code, or key is invalid, or
                the key is already used by a grant or by another user.
            NotFoundError: If the user does not exist.
            TransientStoreError: If the store failed; nothing was applied.
        """
        if amount <= 0 or amount > MAX_CREDIT_AMOUNT:
            raise ValidationError(
                f"amount must be between 1 and {MAX_CREDIT_AMOUNT}",
                details=[{"field": "amount", "value": amount}],
            )
        meter_code = meter_code.strip()
        if not meter_code:
            raise ValidationError(
                "meter_code must not be empty",
                details=[{"field": "meter_code"}],
            )
        key = validate_spend_key(idempotency_key)

        async with transient_store_errors(self._db, "spend"):
            existing = await find_applied_spend(self._db, key)
            if existing is not None:
                return await self._already_applied(existing, user_id, key)

            if not await LedgerRepository.lock_user(self._db, user_id):
                await self._db.rollback()
                raise NotFoundError("User", str(user_id))

            existing = await find_applied_spend(self._db, key)
            if existing is not None:
                return await self._already_applied(existing, user_id, key)

            balance = await LedgerRepository.get_balance(self._db, user_id)
            if balance < amount:
                await self._db.rollback()
                logger.info(
                    "Insufficient balance for user %s: balance=%d required=%d",
                    user_id,
                    balance,
                    amount,
                )
                return SpendResult(SpendOutcome.INSUFFICIENT_BALANCE, balance)

            new_balance = balance - amount
            try:
                async with self._db.begin_nested():
                    await LedgerRepository.create(
                        self._db,
                        user_id=user_id,
                        delta=-amount,
                        reason=f"{SPEND_REASON_PREFIX}{meter_code}",
                        source=SPEND_SOURCE,
                        source_ref=key,
                        balance_after=new_balance,
                    )
                    await UsageEventRepository.create(
                        self._db,
                        user_id=user_id,
                        meter_code=meter_code,
                        quantity=amount,
                        idempotency_key=key,
                    )
            except IntegrityError:
                # Savepoint was rolled back; a concurrent request holds the key.
                await self._db.rollback()
                existing = await find_applied_spend(self._db, key)
                if existing is None:
                    if await find_applied_grant(self._db, key) is not None:
                        raise ValidationError(
                            "idempotency_key is already used by a grant",
                            details=[{"field": "idempotency_key"}],
                        ) from None
                    raise
                return await self._already_applied(existing, user_id, key)

            await self._db.commit()

        logger.info(
            "Spent %d credits for user %s (%s), balance=%d",
            amount,
            user_id,
            meter_code,
            new_balance,
        )
        return SpendResult(SpendOutcome.APPLIED, new_balance)

    async def _already_applied(
        self, existing: UsageEvent, user_id: uuid.UUID, key: str
    ) -> SpendResult:
        """Resolve a key that already has a usage event.

        Raises:
            ValidationError: If the event belongs to another user.
        """
        if existing.user_id != user_id:
            await self._db.rollback()
            logger.warning(
                "Spend key %s reused by user %s; owned by another user", key, user_id
            )
            raise ValidationError(
                "idempotency_key is already used by another request",
                details=[{"field": "idempotency_key"}],
            )
        balance = await LedgerRepository.get_balance(self._db, user_id)
        await self._db.commit()
        logger.info("Spend %s already applied for user %s", key, user_id)
        return SpendResult(SpendOutcome.ALREADY_APPLIED, balance)
