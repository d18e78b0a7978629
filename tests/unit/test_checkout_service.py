"""Tests for CheckoutService: customer mapping, checkout creation, pricing.

Uses MockPaymentGateway and a real database for the customer mapping. The
end-to-end cases check that a checkout opened here is credited by the
webhook through the mapping it created.
"""

import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.errors import NotFoundError, ValidationError
from credit_ledger.models.billing import Customer
from credit_ledger.models.user import User
from credit_ledger.providers.payments.base import PriceInfo, WebhookEvent
from credit_ledger.providers.payments.mock_adapter import MockPaymentGateway
from credit_ledger.repositories.ledger_repository import LedgerRepository
from credit_ledger.services.checkout_service import (
    CheckoutService,
    dynamic_credit_price_cents,
)
from credit_ledger.services.payment_events import EventOutcome, PaymentEventService

FRONTEND = "https://app.example.com/"


@pytest.fixture
def gateway() -> MockPaymentGateway:
    return MockPaymentGateway()


def _service(db: AsyncSession, gateway: MockPaymentGateway) -> CheckoutService:
    return CheckoutService(db, gateway, frontend_url=FRONTEND)


async def _customer_count(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count()).select_from(Customer).where(Customer.user_id == user_id)
    )
    return result.scalar_one()


def _completed_event(
    session_id: str,
    customer_id: str,
    user_id: uuid.UUID,
    metadata: dict[str, str] | None = None,
) -> WebhookEvent:
    return WebhookEvent(
        id=f"evt_{session_id}",
        type="checkout.session.completed",
        data_object={
            "id": session_id,
            "customer": customer_id,
            "payment_status": "paid",
            "client_reference_id": str(user_id),
            "metadata": metadata or {},
        },
    )


# =============================================================================
# Pricing
# =============================================================================


@pytest.mark.parametrize(
    ("credits", "cents"),
    [
        (10, 10),
        (499, 499),
        (500, 475),
        (1234, 1172),
        (2000, 1800),
        (5000, 4000),
        (100_000, 80_000),
    ],
)
def test_dynamic_credit_price_tiers(credits: int, cents: int) -> None:
    assert dynamic_credit_price_cents(credits) == cents


# =============================================================================
# Customer mapping
# =============================================================================


class TestGetOrCreateCustomer:
    """Tests for get_or_create_customer()."""

    async def test_creates_once_then_reuses(
        self, db_session: AsyncSession, gateway: MockPaymentGateway, ledger_user: User
    ) -> None:
        """The first call creates and maps a customer; later calls reuse it."""
        service = _service(db_session, gateway)

        first = await service.get_or_create_customer(ledger_user.id)
        second = await service.get_or_create_customer(ledger_user.id)

        assert first == second == "cus_mock_1"
        assert gateway.call_count("create_customer") == 1
        assert gateway.calls[0]["email"] == ledger_user.email
        assert await _customer_count(db_session, ledger_user.id) == 1

    async def test_existing_mapping_is_used(
        self,
        db_session: AsyncSession,
        gateway: MockPaymentGateway,
        ledger_customer: Customer,
    ) -> None:
        customer_id = await _service(db_session, gateway).get_or_create_customer(
            ledger_customer.user_id
        )

        assert customer_id == "cus_ledger"
        assert gateway.call_count("create_customer") == 0

    async def test_unknown_user(
        self, db_session: AsyncSession, gateway: MockPaymentGateway
    ) -> None:
        with pytest.raises(NotFoundError):
            await _service(db_session, gateway).get_or_create_customer(uuid.uuid4())

        assert gateway.call_count("create_customer") == 0


# =============================================================================
# Checkout creation
# =============================================================================


class TestCatalogueCheckout:
    """Tests for create_catalogue_checkout()."""

    async def test_opens_session_for_users_customer(
        self, db_session: AsyncSession, gateway: MockPaymentGateway, ledger_user: User
    ) -> None:
        link = await _service(db_session, gateway).create_catalogue_checkout(
            ledger_user.id, price_id=" price_pack "
        )

        assert link.session_id == "cs_mock_1"
        assert link.url == "https://checkout.mock/pay/cs_mock_1"
        assert link.amount_cents is None
        request = gateway.created_sessions[0]
        assert request["customer_id"] == "cus_mock_1"
        assert request["mode"] == "payment"
        assert request["client_reference_id"] == str(ledger_user.id)
        assert request["line_items"][0].price_id == "price_pack"
        assert request["success_url"] == (
            "https://app.example.com/credits?success=1&session_id={CHECKOUT_SESSION_ID}"
        )
        assert request["cancel_url"] == "https://app.example.com/credits?canceled=1"

    @pytest.mark.parametrize(("price_id", "mode"), [("  ", "payment"), ("price_1", "gift")])
    async def test_rejects_invalid_input(
        self,
        db_session: AsyncSession,
        gateway: MockPaymentGateway,
        ledger_user: User,
        price_id: str,
        mode: str,
    ) -> None:
        with pytest.raises(ValidationError):
            await _service(db_session, gateway).create_catalogue_checkout(
                ledger_user.id, price_id=price_id, mode=mode
            )

        assert gateway.calls == []

    async def test_completed_checkout_is_credited_via_new_mapping(
        self, db_session: AsyncSession, gateway: MockPaymentGateway, ledger_user: User
    ) -> None:
        """A first-time buyer's purchase reaches the ledger."""
        user_id = ledger_user.id
        gateway.add_price(PriceInfo(id="price_pack", metadata={"includedCredits": "250"}))
        link = await _service(db_session, gateway).create_catalogue_checkout(
            user_id, price_id="price_pack"
        )

        outcome = await PaymentEventService(db_session, gateway).handle_event(
            _completed_event(link.session_id, "cus_mock_1", user_id)
        )

        assert outcome is EventOutcome.GRANTED
        assert await LedgerRepository.get_balance(db_session, user_id) == 250


class TestDynamicCheckout:
    """Tests for create_dynamic_checkout()."""

    async def test_one_time_purchase(
        self, db_session: AsyncSession, gateway: MockPaymentGateway, ledger_user: User
    ) -> None:
        link = await _service(db_session, gateway).create_dynamic_checkout(
            ledger_user.id, credits=1500
        )

        assert link.amount_cents == 1425
        request = gateway.created_sessions[0]
        assert request["metadata"] == {
            "credits": "1500",
            "userId": str(ledger_user.id),
            "type": "dynamic_credits",
        }
        line = request["line_items"][0]
        assert line.unit_amount == 1425
        assert line.product_name == "1,500 AI Credits"
        assert line.product_metadata == {"type": "credits", "credits": "1500"}
        assert line.recurring_interval is None

    async def test_subscription_is_monthly(
        self, db_session: AsyncSession, gateway: MockPaymentGateway, ledger_user: User
    ) -> None:
        await _service(db_session, gateway).create_dynamic_checkout(
            ledger_user.id, credits=2000, mode="subscription"
        )

        request = gateway.created_sessions[0]
        assert request["mode"] == "subscription"
        assert request["line_items"][0].recurring_interval == "month"
        assert request["line_items"][0].product_description == (
            "Monthly subscription for 2,000 credits"
        )

    @pytest.mark.parametrize("credits", [0, 9, 100_001])
    async def test_rejects_out_of_range_credits(
        self,
        db_session: AsyncSession,
        gateway: MockPaymentGateway,
        ledger_user: User,
        credits: int,
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await _service(db_session, gateway).create_dynamic_checkout(
                ledger_user.id, credits=credits
            )

        assert exc_info.value.details == [{"field": "credits", "value": credits}]
        assert gateway.calls == []

    async def test_completed_dynamic_checkout_is_credited(
        self, db_session: AsyncSession, gateway: MockPaymentGateway, ledger_user: User
    ) -> None:
        user_id = ledger_user.id
        link = await _service(db_session, gateway).create_dynamic_checkout(
            user_id, credits=1500
        )
        metadata = gateway.created_sessions[0]["metadata"]

        outcome = await PaymentEventService(db_session, gateway).handle_event(
            _completed_event(link.session_id, "cus_mock_1", user_id, metadata)
        )

        assert outcome is EventOutcome.GRANTED
        assert await LedgerRepository.get_balance(db_session, user_id) == 1500
