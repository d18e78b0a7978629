"""Entitlements: what a user currently has (credits and active plans)."""

import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.models.billing import Subscription
from credit_ledger.repositories.ledger_repository import LedgerRepository
from credit_ledger.repositories.subscription_repository import SubscriptionRepository


@dataclass(frozen=True)
class Entitlements:
    """A user's authoritative balance and active or trialing subscriptions."""

    credit_balance: int
    plans: list[Subscription]


async def get_entitlements(db: AsyncSession, user_id: uuid.UUID) -> Entitlements:
    """Read the user's entitlements.

    Args:
        db: Async database session.
        user_id: User to read.

    Returns:
        Entitlements with the aggregate balance.
    """
    balance = await LedgerRepository.get_balance(db, user_id)
    plans = await SubscriptionRepository.list_active(db, user_id)
    return Entitlements(credit_balance=balance, plans=plans)
