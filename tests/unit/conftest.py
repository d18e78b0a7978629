"""Shared fixtures for ledger unit tests.

Ledger services commit and roll back the session they are handed, so every
row created here is committed before the test body runs. Names are chosen
to avoid shadowing top-level conftest fixtures (test_user, user_b).
"""

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.models.billing import Customer
from credit_ledger.models.user import User
from credit_ledger.services.grant_service import GrantService


@pytest.fixture
async def ledger_user(db_session: AsyncSession) -> User:
    """Create a user with no ledger history."""
    user = User(email=f"ledger-{uuid.uuid4().hex[:8]}@test.com")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    """Create a second user for cross-tenant tests."""
    user = User(email=f"other-{uuid.uuid4().hex[:8]}@test.com")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def funded_user(db_session: AsyncSession, ledger_user: User) -> User:
    """ledger_user with a 100-credit admin grant."""
    await GrantService(db_session).admin_grant(
        ledger_user.id, amount=100, idempotency_key="seed-grant-100"
    )
    return ledger_user


@pytest.fixture
async def ledger_customer(db_session: AsyncSession, ledger_user: User) -> Customer:
    """Map provider customer cus_ledger to ledger_user."""
    customer = Customer(
        user_id=ledger_user.id,
        provider="stripe",
        provider_customer_id="cus_ledger",
    )
    db_session.add(customer)
    await db_session.commit()
    await db_session.refresh(customer)
    return customer
