"""Usage replay: cache the output of metered work under the spend's key.

A retried metered request with the same idempotency key is neither charged
again nor recomputed when its result was cached. Caching is best-effort: a
failure to attach a result is logged and swallowed, and never undoes the
committed spend.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.errors import InsufficientBalanceError
from credit_ledger.models.ledger import UsageEvent
from credit_ledger.repositories.ledger_repository import LedgerRepository
from credit_ledger.repositories.usage_event_repository import UsageEventRepository
from credit_ledger.services.spend_service import SpendOutcome, SpendResult, SpendService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeteredRun:
    """Outcome of a metered operation.

    Attributes:
        spend: How the spend resolved (applied or already applied).
        result: Output of the operation, fresh or replayed.
        replayed: True when the result came from the cache.
    """

    spend: SpendResult
    result: Any
    replayed: bool


class UsageReplayService:
    """Reads and writes cached results of metered operations.

    Args:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_usage_event(
        self, user_id: uuid.UUID, idempotency_key: str
    ) -> UsageEvent | None:
        """Return the user's usage event for a key, or None.

        Events owned by other users are reported as missing.
        """
        event = await UsageEventRepository.get_by_idempotency_key(
            self._db, idempotency_key
        )
        if event is None or event.user_id != user_id:
            return None
        return event

    async def get_cached_result(
        self, user_id: uuid.UUID, idempotency_key: str
    ) -> Any | None:
        """Return the cached result for a key, or None when nothing is cached."""
        event = await self.get_usage_event(user_id, idempotency_key)
        if event is None:
            return None
        return event.result_json

    async def attach_result(
        self, user_id: uuid.UUID, idempotency_key: str, result: Any
    ) -> bool:
        """Cache a result against the user's usage event. Never raises.

        Args:
            user_id: Owner of the usage event.
            idempotency_key: Spend key.
            result: JSON-serializable payload.

        Returns:
            True if the result was stored.
        """
        try:
            event = await self.get_usage_event(user_id, idempotency_key)
            if event is None:
                logger.warning(
                    "No usage event %s for user %s; result not cached",
                    idempotency_key,
                    user_id,
                )
                return False
            stored = await UsageEventRepository.attach_result(
                self._db, idempotency_key=idempotency_key, result=result
            )
            await self._db.commit()
            return stored
        except Exception:
            # The spend is already committed; losing the cache only costs a
            # recomputation on replay.
            logger.exception(
                "Failed to cache result for usage event %s", idempotency_key
            )
            await self._db.rollback()
            return False

    async def run_metered(
        self,
        user_id: uuid.UUID,
        *,
        meter_code: str,
        amount: int,
        idempotency_key: str,
        operation: Callable[[], Awaitable[Any]],
    ) -> MeteredRun:
        """Charge for and run a metered operation, replaying when possible.

        1. A cached result for the key is returned without charging.
        2. Otherwise the spend runs; insufficient balance raises.
        3. The operation runs (also when the key was already charged but
           nothing was cached, so a crashed attempt can be retried for free).
        4. The result is attached best-effort.

        Args:
            user_id: User being charged.
            meter_code: Metered feature/action.
            amount: Credits to charge.
            idempotency_key: Client key for this action.
            operation: Zero-argument coroutine factory doing the work.

        Returns:
            MeteredRun.

        Raises:
            InsufficientBalanceError: If the balance does not cover amount.
            ValidationError: If the key is invalid or already used by another
                user or by a grant; the operation does not run.
        """
        cached = await self.get_cached_result(user_id, idempotency_key)
        if cached is not None:
            balance = await LedgerRepository.get_balance(self._db, user_id)
            await self._db.commit()
            return MeteredRun(
                spend=SpendResult(SpendOutcome.ALREADY_APPLIED, balance),
                result=cached,
                replayed=True,
            )

        spend = await SpendService(self._db).spend(
            user_id,
            amount=amount,
            meter_code=meter_code,
            idempotency_key=idempotency_key,
        )
        if spend.outcome is SpendOutcome.INSUFFICIENT_BALANCE:
            raise InsufficientBalanceError(balance=spend.balance, required=amount)

        result = await operation()
        await self.attach_result(user_id, idempotency_key, result)
        return MeteredRun(spend=spend, result=result, replayed=False)
