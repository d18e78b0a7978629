"""Tests for UsageEventRepository, CustomerRepository and SubscriptionRepository."""

from datetime import UTC, datetime

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.models.user import User
from credit_ledger.repositories.customer_repository import CustomerRepository
from credit_ledger.repositories.subscription_repository import SubscriptionRepository
from credit_ledger.repositories.usage_event_repository import UsageEventRepository

# =============================================================================
# UsageEventRepository
# =============================================================================


class TestUsageEventRepository:
    """Tests for usage event create/lookup/attach/list."""

    async def test_create_and_lookup(
        self, db_session: AsyncSession, ledger_user: User
    ) -> None:
        """A created event is found by its idempotency key."""
        event = await UsageEventRepository.create(
            db_session,
            user_id=ledger_user.id,
            meter_code="parse:page",
            quantity=3,
            idempotency_key="usage-key-1",
        )

        found = await UsageEventRepository.get_by_idempotency_key(
            db_session, "usage-key-1"
        )

        assert found is not None
        assert found.id == event.id
        assert found.quantity == 3
        assert found.result_json is None

    async def test_duplicate_key_rejected(
        self, db_session: AsyncSession, ledger_user: User
    ) -> None:
        """idempotency_key is unique."""
        await UsageEventRepository.create(
            db_session,
            user_id=ledger_user.id,
            meter_code="parse:page",
            quantity=1,
            idempotency_key="usage-dup-1",
        )
        with pytest.raises(IntegrityError):
            async with db_session.begin_nested():
                await UsageEventRepository.create(
                    db_session,
                    user_id=ledger_user.id,
                    meter_code="parse:page",
                    quantity=1,
                    idempotency_key="usage-dup-1",
                )

    async def test_attach_result(
        self, db_session: AsyncSession, ledger_user: User
    ) -> None:
        """attach_result fills result_json and reports whether a row matched."""
        await UsageEventRepository.create(
            db_session,
            user_id=ledger_user.id,
            meter_code="summarize",
            quantity=2,
            idempotency_key="usage-attach-1",
        )

        stored = await UsageEventRepository.attach_result(
            db_session,
            idempotency_key="usage-attach-1",
            result={"summary": "ok", "pages": [1, 2]},
        )
        missing = await UsageEventRepository.attach_result(
            db_session, idempotency_key="usage-none-1", result={"x": 1}
        )

        event = await UsageEventRepository.get_by_idempotency_key(
            db_session, "usage-attach-1"
        )
        await db_session.refresh(event)
        assert stored is True
        assert missing is False
        assert event.result_json == {"summary": "ok", "pages": [1, 2]}

    async def test_list_filters_by_meter_code(
        self, db_session: AsyncSession, ledger_user: User
    ) -> None:
        """meter_code narrows the listing."""
        for i, code in enumerate(["parse:page", "summarize", "parse:page"]):
            await UsageEventRepository.create(
                db_session,
                user_id=ledger_user.id,
                meter_code=code,
                quantity=1,
                idempotency_key=f"usage-list-{i}",
            )

        events, total = await UsageEventRepository.list_by_user(
            db_session, ledger_user.id, meter_code="parse:page"
        )

        assert total == 2
        assert {e.meter_code for e in events} == {"parse:page"}


# =============================================================================
# CustomerRepository
# =============================================================================


class TestCustomerRepository:
    """Tests for provider customer mappings."""

    async def test_resolves_provider_customer(
        self, db_session: AsyncSession, ledger_user: User
    ) -> None:
        """A mapped provider customer resolves to its user."""
        await CustomerRepository.create(
            db_session, user_id=ledger_user.id, provider_customer_id="cus_repo_1"
        )

        found = await CustomerRepository.get_by_provider_customer_id(
            db_session, "cus_repo_1"
        )
        unmapped = await CustomerRepository.get_by_provider_customer_id(
            db_session, "cus_unknown"
        )

        assert found is not None
        assert found.user_id == ledger_user.id
        assert unmapped is None

    async def test_provider_customer_maps_to_one_user(
        self, db_session: AsyncSession, ledger_user: User, other_user: User
    ) -> None:
        """The same provider customer cannot be linked twice."""
        await CustomerRepository.create(
            db_session, user_id=ledger_user.id, provider_customer_id="cus_once"
        )
        with pytest.raises(IntegrityError):
            async with db_session.begin_nested():
                await CustomerRepository.create(
                    db_session, user_id=other_user.id, provider_customer_id="cus_once"
                )

    async def test_get_for_user(
        self, db_session: AsyncSession, ledger_user: User
    ) -> None:
        """A user's mapping is found by user id and provider."""
        await CustomerRepository.create(
            db_session, user_id=ledger_user.id, provider_customer_id="cus_for_user"
        )

        found = await CustomerRepository.get_for_user(db_session, ledger_user.id)

        assert found is not None
        assert found.provider_customer_id == "cus_for_user"


# =============================================================================
# SubscriptionRepository
# =============================================================================


class TestSubscriptionRepository:
    """Tests for subscription upsert and active listing."""

    async def test_upsert_inserts_then_updates(
        self, db_session: AsyncSession, ledger_user: User
    ) -> None:
        """A second upsert for the same provider id updates in place."""
        period_end = datetime(2026, 11, 1, tzinfo=UTC)
        first = await SubscriptionRepository.upsert(
            db_session,
            user_id=ledger_user.id,
            provider_subscription_id="sub_1",
            status="trialing",
            current_period_end=period_end,
            plan_code="pro",
        )
        second = await SubscriptionRepository.upsert(
            db_session,
            user_id=ledger_user.id,
            provider_subscription_id="sub_1",
            status="active",
            current_period_end=period_end,
            plan_code="pro",
            quantity=3,
        )

        assert second.id == first.id
        assert second.status == "active"
        assert second.quantity == 3

    async def test_list_active_excludes_canceled(
        self, db_session: AsyncSession, ledger_user: User
    ) -> None:
        """Only active and trialing subscriptions are entitlements."""
        for sub_id, status in [
            ("sub_a", "active"),
            ("sub_t", "trialing"),
            ("sub_c", "canceled"),
            ("sub_p", "past_due"),
        ]:
            await SubscriptionRepository.upsert(
                db_session,
                user_id=ledger_user.id,
                provider_subscription_id=sub_id,
                status=status,
            )

        active = await SubscriptionRepository.list_active(db_session, ledger_user.id)

        assert {s.provider_subscription_id for s in active} == {"sub_a", "sub_t"}
