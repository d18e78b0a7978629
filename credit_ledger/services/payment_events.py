"""Payment events: turn provider notifications into keyed grants.

Handles:
- checkout.session.completed: one-time purchases, keyed ``checkout:<id>``;
  unpaid sessions (delayed payment methods) wait for
  checkout.session.async_payment_succeeded, which grants under the same key
- invoice.payment_succeeded / invoice.paid: subscription renewals, keyed
  ``invoice:<id>``
- customer.subscription.created|updated|deleted: subscription state
- checkout confirmation by the returning user (same key as the webhook)
- simulated subscription renewals for non-production testing

Credits are only ever granted to the user that the provider customer is
mapped to. An unmapped customer defers the grant; a customer mapped to a
different user than the one claimed is refused and logged for review.

Gateway lookups happen before any ledger transaction opens.
"""

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.errors import UpstreamMismatchError, ValidationError
from credit_ledger.models.ledger import MAX_CREDIT_AMOUNT
from credit_ledger.providers.payments.base import (
    CheckoutSessionInfo,
    InvoiceInfo,
    LineItem,
    PaymentGateway,
    PriceInfo,
    SubscriptionInfo,
    WebhookEvent,
)
from credit_ledger.repositories.customer_repository import CustomerRepository
from credit_ledger.repositories.ledger_repository import LedgerRepository
from credit_ledger.repositories.subscription_repository import SubscriptionRepository
from credit_ledger.services.grant_service import GrantResult, GrantService
from credit_ledger.services.idempotency import (
    checkout_key,
    find_applied_grant,
    invoice_key,
    simulated_subscription_key,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

STRIPE_SOURCE = "stripe"
SIMULATED_SOURCE = "test"

REASON_CHECKOUT = "checkout_topup"
REASON_DYNAMIC_CHECKOUT = "dynamic_checkout_topup"
REASON_SUBSCRIPTION_PERIOD = "subscription_period_topup"
REASON_SIMULATED_RENEWAL = "test_subscription_renewal"

DYNAMIC_CREDITS_TYPE = "dynamic_credits"
PAID_STATUS = "paid"
# "no_payment_required" covers fully discounted sessions.
SETTLED_PAYMENT_STATUSES = frozenset({PAID_STATUS, "no_payment_required"})

# Metadata keys carrying credits, in lookup order.
INCLUDED_CREDIT_KEYS = ("includedCredits", "included_credits", "credits")
PRODUCT_CREDIT_KEYS = ("credits", "includedCredits")
DYNAMIC_CREDIT_KEYS = ("credits",)

# Session metadata keys that may name the purchasing user.
_CLAIMED_USER_KEYS = ("userId", "user_id")

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
CHECKOUT_EVENTS = frozenset({CHECKOUT_COMPLETED, CHECKOUT_ASYNC_PAYMENT_SUCCEEDED})
SUBSCRIPTION_EVENTS = frozenset(
    {
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    }
)
INVOICE_PAID_EVENTS = frozenset({"invoice.payment_succeeded", "invoice.paid"})


# =============================================================================
# Credit parsing
# =============================================================================


def parse_included_credits(
    metadata: Mapping[str, Any] | None,
    keys: tuple[str, ...] = INCLUDED_CREDIT_KEYS,
) -> int | None:
    """Read a credit count from provider metadata.

    The first key whose value is present wins, even if that value is
    unusable. Values are decimal strings; non-integral, non-finite, or
    out-of-range values yield None.

    Args:
        metadata: Price, product, or session metadata.
        keys: Keys to consult, in order.

    Returns:
        Credit count (may be zero or negative), or None if absent/invalid.
    """
    if not metadata:
        return None
    raw = next((metadata[k] for k in keys if metadata.get(k) is not None), None)
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite() or value != value.to_integral_value():
        return None
    if abs(value) > MAX_CREDIT_AMOUNT:
        return None
    return int(value)


# =============================================================================
# Result types
# =============================================================================


class EventOutcome(Enum):
    """What handling a payment event did."""

    GRANTED = "granted"
    ALREADY_APPLIED = "already_applied"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SKIPPED_NO_CUSTOMER = "skipped_no_customer"
    SKIPPED_NO_CREDITS = "skipped_no_credits"
    SKIPPED_UNPAID = "skipped_unpaid"
    UPSTREAM_MISMATCH = "upstream_mismatch"
    IGNORED = "ignored"


@dataclass(frozen=True)
class CheckoutCredits:
    """Credits a checkout session is worth, and how they were determined."""

    credits: int
    reason: str
    line_item_count: int | None = None


@dataclass(frozen=True)
class ConfirmResult:
    """Result of confirming a checkout session from the client.

    Attributes:
        ok: False when nothing could be granted (unpaid, no credits).
        reason: Why ok is False (payment status or "no_credits").
        granted: Credits granted by this call (0 when already applied).
        balance: Current balance, when a grant was attempted.
        idempotent: True when the session had already been credited.
    """

    ok: bool
    reason: str | None = None
    granted: int = 0
    balance: int | None = None
    idempotent: bool = False


@dataclass(frozen=True)
class SimulatedTopup:
    """Result of a simulated subscription renewal."""

    credits_before: int
    credits_added: int
    balance_after: int
    source_ref: str


# =============================================================================
# Service
# =============================================================================


class PaymentEventService:
    """Applies payment-provider events to the ledger.

    Args:
        db: Async database session.
        gateway: Payment gateway for lookups.
    """

    def __init__(self, db: AsyncSession, gateway: PaymentGateway) -> None:
        self._db = db
        self._gateway = gateway
        self._grants = GrantService(db)

    async def handle_event(self, event: WebhookEvent) -> EventOutcome:
        """Dispatch a verified webhook event.

        Unhandled event types are ignored.

        Args:
            event: Verified event from the gateway.

        Returns:
            What was done.
        """
        if event.type in CHECKOUT_EVENTS:
            session = CheckoutSessionInfo.from_dict(event.data_object)
            return await self.handle_checkout_completed(session)
        if event.type in SUBSCRIPTION_EVENTS:
            subscription = SubscriptionInfo.from_dict(event.data_object)
            return await self.handle_subscription_changed(subscription)
        if event.type in INVOICE_PAID_EVENTS:
            invoice = InvoiceInfo.from_dict(event.data_object)
            return await self.handle_invoice_paid(invoice)

        logger.debug("Ignoring payment event %s (%s)", event.id, event.type)
        return EventOutcome.IGNORED

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------

    async def handle_checkout_completed(
        self, session: CheckoutSessionInfo
    ) -> EventOutcome:
        """Grant the credits bought in a completed checkout session.

        Sessions whose payment has not settled are skipped; the
        async_payment_succeeded event for the same session grants later.

        Args:
            session: The completed session.

        Returns:
            What was done.
        """
        if not session.customer_id:
            logger.info("Checkout %s has no customer; skipping", session.id)
            return EventOutcome.SKIPPED_NO_CUSTOMER

        if session.payment_status not in SETTLED_PAYMENT_STATUSES:
            logger.info(
                "Checkout %s payment is %s; waiting for settlement",
                session.id,
                session.payment_status,
            )
            return EventOutcome.SKIPPED_UNPAID

        key = checkout_key(session.id)
        if await find_applied_grant(self._db, key) is not None:
            return EventOutcome.ALREADY_APPLIED

        purchase = await self.resolve_checkout_credits(session)
        if purchase.credits <= 0:
            logger.info("Checkout %s carries no credits; skipping", session.id)
            return EventOutcome.SKIPPED_NO_CREDITS

        user_id = await self._resolve_customer(session.customer_id)
        if user_id is None:
            return EventOutcome.SKIPPED_NO_CUSTOMER

        claimed = _claimed_user(session)
        if claimed is not None and not _is_same_user(claimed, user_id):
            logger.warning(
                "Checkout %s customer %s maps to user %s but claims user %s; "
                "refusing grant",
                session.id,
                session.customer_id,
                user_id,
                claimed,
            )
            return EventOutcome.UPSTREAM_MISMATCH

        result = await self._grant_checkout(user_id, session, purchase)
        return _grant_outcome(result)

    async def resolve_checkout_credits(
        self, session: CheckoutSessionInfo
    ) -> CheckoutCredits:
        """Work out how many credits a checkout session bought.

        Dynamic purchases carry the count in session metadata; catalogue
        purchases sum included credits per price times quantity, looking
        each price up once per session.

        Args:
            session: Checkout session.

        Returns:
            CheckoutCredits (credits may be zero).
        """
        if session.metadata.get("type") == DYNAMIC_CREDITS_TYPE:
            credits = parse_included_credits(session.metadata, DYNAMIC_CREDIT_KEYS)
            return CheckoutCredits(
                credits=max(credits or 0, 0),
                reason=REASON_DYNAMIC_CHECKOUT,
            )

        line_items = await self._gateway.list_checkout_line_items(session.id)
        credits_by_price: dict[str, int] = {}
        total = 0
        for item in line_items:
            price_id = item.price.id if item.price is not None else item.price_id
            if not price_id:
                continue
            if price_id not in credits_by_price:
                price = await self._gateway.retrieve_price(price_id)
                credits_by_price[price_id] = parse_included_credits(price.metadata) or 0
            per_unit = credits_by_price[price_id]
            if per_unit > 0:
                total += per_unit * item.quantity

        return CheckoutCredits(
            credits=total,
            reason=REASON_CHECKOUT,
            line_item_count=len(line_items),
        )

    async def _grant_checkout(
        self,
        user_id: uuid.UUID,
        session: CheckoutSessionInfo,
        purchase: CheckoutCredits,
    ) -> GrantResult:
        metadata: dict[str, Any] = {
            "stripe_session_id": session.id,
            "payment_status": session.payment_status,
            "amount_total": session.amount_total,
            "currency": session.currency,
        }
        if purchase.reason == REASON_DYNAMIC_CHECKOUT:
            metadata["type"] = "dynamic_purchase"
        else:
            metadata["line_item_count"] = purchase.line_item_count
        return await self._grants.grant(
            user_id,
            amount=purchase.credits,
            reason=purchase.reason,
            source=STRIPE_SOURCE,
            idempotency_key=checkout_key(session.id),
            metadata=metadata,
        )

    async def confirm_checkout_session(
        self, user_id: uuid.UUID, session_id: str
    ) -> ConfirmResult:
        """Credit a checkout session on behalf of the returning user.

        Races the webhook harmlessly: both use the same key, so exactly one
        of them credits.

        Args:
            user_id: Authenticated caller.
            session_id: Checkout session id.

        Returns:
            ConfirmResult.

        Raises:
            ValidationError: If the session has no customer.
            UpstreamMismatchError: If the session's customer is not mapped
                to the caller.
            PaymentProviderError: If the session lookup fails.
        """
        session = await self._gateway.retrieve_checkout_session(session_id)
        if session.payment_status not in SETTLED_PAYMENT_STATUSES:
            return ConfirmResult(ok=False, reason=session.payment_status or "unpaid")

        if not session.customer_id:
            raise ValidationError("Checkout session has no customer")

        owner = await self._resolve_customer(session.customer_id)
        if owner != user_id:
            logger.warning(
                "Checkout %s customer %s maps to %s, confirmed by user %s",
                session.id,
                session.customer_id,
                owner,
                user_id,
            )
            raise UpstreamMismatchError()

        existing = await find_applied_grant(self._db, checkout_key(session.id))
        if existing is not None:
            balance = await LedgerRepository.get_balance(self._db, user_id)
            return ConfirmResult(ok=True, balance=balance, idempotent=True)

        purchase = await self.resolve_checkout_credits(session)
        if purchase.credits <= 0:
            return ConfirmResult(ok=False, reason="no_credits")

        result = await self._grant_checkout(user_id, session, purchase)
        return ConfirmResult(
            ok=True,
            granted=0 if result.idempotent else purchase.credits,
            balance=result.balance,
            idempotent=result.idempotent,
        )

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def handle_subscription_changed(
        self, subscription: SubscriptionInfo
    ) -> EventOutcome:
        """Upsert subscription state for a mapped customer.

        Args:
            subscription: Subscription snapshot from the event.

        Returns:
            What was done.
        """
        if not subscription.customer_id:
            return EventOutcome.SKIPPED_NO_CUSTOMER
        user_id = await self._resolve_customer(subscription.customer_id)
        if user_id is None:
            return EventOutcome.SKIPPED_NO_CUSTOMER

        await SubscriptionRepository.upsert(
            self._db,
            user_id=user_id,
            provider_subscription_id=subscription.id,
            status=subscription.status,
            current_period_end=subscription.current_period_end,
            plan_code=subscription.plan_code,
            quantity=subscription.quantity,
            provider=self._gateway.provider_name,
        )
        await self._db.commit()
        logger.info(
            "Subscription %s for user %s is now %s",
            subscription.id,
            user_id,
            subscription.status,
        )
        return EventOutcome.SUBSCRIPTION_UPDATED

    async def handle_invoice_paid(self, invoice: InvoiceInfo) -> EventOutcome:
        """Grant the period's credits for a paid subscription invoice.

        Only recurring prices count. A price without credit metadata falls
        back to its product's metadata.

        Args:
            invoice: Paid invoice.

        Returns:
            What was done.
        """
        if not invoice.customer_id:
            return EventOutcome.SKIPPED_NO_CUSTOMER
        user_id = await self._resolve_customer(invoice.customer_id)
        if user_id is None:
            return EventOutcome.SKIPPED_NO_CUSTOMER

        key = invoice_key(invoice.id)
        if await find_applied_grant(self._db, key) is not None:
            return EventOutcome.ALREADY_APPLIED

        credits = await self._invoice_credits(invoice.lines)
        if credits <= 0:
            logger.info("Invoice %s carries no credits; skipping", invoice.id)
            return EventOutcome.SKIPPED_NO_CREDITS

        result = await self._grants.grant(
            user_id,
            amount=credits,
            reason=REASON_SUBSCRIPTION_PERIOD,
            source=STRIPE_SOURCE,
            idempotency_key=key,
            metadata={
                "invoice_id": invoice.id,
                "amount_paid": invoice.amount_paid,
                "currency": invoice.currency,
                "period_start": invoice.period_start,
                "period_end": invoice.period_end,
            },
        )
        return _grant_outcome(result)

    async def _invoice_credits(self, lines: list[LineItem]) -> int:
        prices: dict[str, PriceInfo] = {}
        product_credits: dict[str, int] = {}
        total = 0
        for line in lines:
            price = line.price
            if price is None and line.price_id:
                if line.price_id not in prices:
                    prices[line.price_id] = await self._gateway.retrieve_price(
                        line.price_id
                    )
                price = prices[line.price_id]
            if price is None or not price.recurring:
                continue

            credits = parse_included_credits(price.metadata) or 0
            if not credits and price.product_id:
                if price.product_id not in product_credits:
                    product = await self._gateway.retrieve_product(price.product_id)
                    product_credits[price.product_id] = (
                        parse_included_credits(product.metadata, PRODUCT_CREDIT_KEYS)
                        or 0
                    )
                credits = product_credits[price.product_id]
            if credits > 0:
                total += credits * line.quantity
        return total

    # -------------------------------------------------------------------------
    # Simulated renewal
    # -------------------------------------------------------------------------

    async def simulate_subscription_renewal(
        self, user_id: uuid.UUID, credits: int
    ) -> SimulatedTopup:
        """Grant credits as if a subscription invoice had been paid.

        Every call is a new event with a fresh key.

        Args:
            user_id: User to credit.
            credits: Credits to add.

        Returns:
            Balances before and after, and the key used.
        """
        key = simulated_subscription_key()
        result = await self._grants.grant(
            user_id,
            amount=credits,
            reason=REASON_SIMULATED_RENEWAL,
            source=SIMULATED_SOURCE,
            idempotency_key=key,
            metadata={
                "type": "test_webhook",
                "simulated_event": "invoice.payment_succeeded",
                "test_credits": credits,
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )
        before = result.balance_before if result.balance_before is not None else 0
        return SimulatedTopup(
            credits_before=before,
            credits_added=credits,
            balance_after=result.balance,
            source_ref=key,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _resolve_customer(self, provider_customer_id: str) -> uuid.UUID | None:
        customer = await CustomerRepository.get_by_provider_customer_id(
            self._db,
            provider_customer_id,
            provider=self._gateway.provider_name,
        )
        if customer is None:
            logger.info(
                "No user mapped to customer %s; deferring", provider_customer_id
            )
            return None
        return customer.user_id


def _claimed_user(session: CheckoutSessionInfo) -> str | None:
    for key in _CLAIMED_USER_KEYS:
        value = session.metadata.get(key)
        if value:
            return value
    return session.client_reference_id or None


def _is_same_user(claimed: str, user_id: uuid.UUID) -> bool:
    try:
        return uuid.UUID(claimed) == user_id
    except ValueError:
        return False


def _grant_outcome(result: GrantResult) -> EventOutcome:
    if result.idempotent:
        return EventOutcome.ALREADY_APPLIED
    return EventOutcome.GRANTED
