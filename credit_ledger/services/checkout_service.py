"""Checkout service: provider customers and hosted checkout sessions.

Every checkout is opened for the caller's provider customer, created on
first use. That customer mapping is what later lets checkout and invoice
events be credited to the right user, so no checkout is ever created
without one.

Provider calls never run inside an open ledger transaction: the mapping is
read and that transaction ended before the provider is called.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.database import transient_store_errors
from credit_ledger.core.errors import NotFoundError, ValidationError
from credit_ledger.models.user import User
from credit_ledger.providers.payments.base import CheckoutLineRequest, PaymentGateway
from credit_ledger.repositories.customer_repository import CustomerRepository
from credit_ledger.services.payment_events import DYNAMIC_CREDITS_TYPE

logger = logging.getLogger(__name__)

CHECKOUT_MODES = ("payment", "subscription")
MIN_DYNAMIC_CREDITS = 10
MAX_DYNAMIC_CREDITS = 100_000
DYNAMIC_CURRENCY = "usd"

# (minimum credits, dollars per credit), largest tier first.
_DYNAMIC_PRICE_TIERS = (
    (5000, Decimal("0.008")),
    (2000, Decimal("0.009")),
    (500, Decimal("0.0095")),
    (0, Decimal("0.01")),
)


def dynamic_credit_price_cents(credits: int) -> int:
    """Price of a custom credit amount in cents, with volume discounts.

    Args:
        credits: Number of credits.

    Returns:
        Price in cents, rounded half up.
    """
    for minimum, per_credit in _DYNAMIC_PRICE_TIERS:
        if credits >= minimum:
            cents = Decimal(credits) * per_credit * 100
            return int(cents.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return 0


@dataclass(frozen=True)
class CheckoutLink:
    """A created checkout session the client redirects to.

    Attributes:
        session_id: Provider session id (later passed to confirm-session).
        url: Hosted checkout page.
        amount_cents: Price of a dynamic purchase; None for catalogue prices.
    """

    session_id: str
    url: str | None
    amount_cents: int | None = None


def _check_mode(mode: str) -> None:
    if mode not in CHECKOUT_MODES:
        raise ValidationError(
            "mode must be 'payment' or 'subscription'",
            details=[{"field": "mode", "value": mode}],
        )


class CheckoutService:
    """Opens hosted checkout sessions for users.

    Args:
        db: Async database session. The service commits it.
        gateway: Payment gateway.
        frontend_url: Base URL of the frontend the checkout returns to.
    """

    def __init__(
        self, db: AsyncSession, gateway: PaymentGateway, *, frontend_url: str
    ) -> None:
        self._db = db
        self._gateway = gateway
        base = frontend_url.rstrip("/")
        # {CHECKOUT_SESSION_ID} is substituted by the provider.
        self._success_url = f"{base}/credits?success=1&session_id={{CHECKOUT_SESSION_ID}}"
        self._cancel_url = f"{base}/credits?canceled=1"

    async def get_or_create_customer(self, user_id: uuid.UUID) -> str:
        """Return the user's provider customer id, creating it on first use.

        Two first checkouts racing can each create a provider customer.
        Both mappings point at the same user, so payments from either are
        credited correctly; later checkouts reuse the oldest.

        Args:
            user_id: Internal user.

        Returns:
            Provider customer id.

        Raises:
            NotFoundError: If the user does not exist.
            PaymentProviderError: If the provider call failed.
            TransientStoreError: If the store failed.
        """
        provider = self._gateway.provider_name
        async with transient_store_errors(self._db, "customer_lookup"):
            existing = await CustomerRepository.get_for_user(self._db, user_id, provider)
            if existing is not None:
                customer_id = existing.provider_customer_id
                await self._db.commit()
                return customer_id

            user = await self._db.get(User, user_id)
            if user is None:
                await self._db.rollback()
                raise NotFoundError("User", str(user_id))
            email = user.email
            await self._db.commit()

        customer_id = await self._gateway.create_customer(
            user_id=str(user_id), email=email
        )

        async with transient_store_errors(self._db, "customer_create"):
            await CustomerRepository.create(
                self._db,
                user_id=user_id,
                provider_customer_id=customer_id,
                provider=provider,
            )
            await self._db.commit()

        logger.info("Created %s customer %s for user %s", provider, customer_id, user_id)
        return customer_id

    async def create_catalogue_checkout(
        self,
        user_id: uuid.UUID,
        *,
        price_id: str,
        mode: str = "payment",
    ) -> CheckoutLink:
        """Open a checkout for one unit of a catalogue price.

        Credits come from the price's metadata when the session completes.

        Args:
            user_id: Buyer.
            price_id: Provider price id.
            mode: "payment" (one-time) or "subscription".

        Returns:
            CheckoutLink.

        Raises:
            ValidationError: If price_id is blank or mode is unknown.
        """
        price_id = price_id.strip()
        if not price_id:
            raise ValidationError("price_id is required", details=[{"field": "price_id"}])
        _check_mode(mode)

        customer_id = await self.get_or_create_customer(user_id)
        created = await self._gateway.create_checkout_session(
            customer_id=customer_id,
            mode=mode,
            line_items=[CheckoutLineRequest(price_id=price_id)],
            success_url=self._success_url,
            cancel_url=self._cancel_url,
            client_reference_id=str(user_id),
        )
        logger.info("Opened checkout %s for user %s (%s)", created.id, user_id, price_id)
        return CheckoutLink(session_id=created.id, url=created.url)

    async def create_dynamic_checkout(
        self,
        user_id: uuid.UUID,
        *,
        credits: int,
        mode: str = "payment",
    ) -> CheckoutLink:
        """Open a checkout for a custom number of credits.

        The credit count travels in session metadata (read back by the
        checkout grant) and in product metadata (read back by invoice
        renewals of a dynamic subscription).

        Args:
            user_id: Buyer.
            credits: Credits to buy.
            mode: "payment" (one-time) or "subscription" (monthly).

        Returns:
            CheckoutLink with the computed price.

        Raises:
            ValidationError: If credits is out of range or mode is unknown.
        """
        if not MIN_DYNAMIC_CREDITS <= credits <= MAX_DYNAMIC_CREDITS:
            raise ValidationError(
                f"credits must be between {MIN_DYNAMIC_CREDITS} and {MAX_DYNAMIC_CREDITS}",
                details=[{"field": "credits", "value": credits}],
            )
        _check_mode(mode)

        amount_cents = dynamic_credit_price_cents(credits)
        subscription = mode == "subscription"
        line = CheckoutLineRequest(
            unit_amount=amount_cents,
            currency=DYNAMIC_CURRENCY,
            product_name=f"{credits:,} AI Credits",
            product_description=(
                f"Monthly subscription for {credits:,} credits"
                if subscription
                else f"One-time purchase of {credits:,} credits"
            ),
            product_metadata={"type": "credits", "credits": str(credits)},
            recurring_interval="month" if subscription else None,
        )

        customer_id = await self.get_or_create_customer(user_id)
        created = await self._gateway.create_checkout_session(
            customer_id=customer_id,
            mode=mode,
            line_items=[line],
            success_url=self._success_url,
            cancel_url=self._cancel_url,
            client_reference_id=str(user_id),
            metadata={
                "credits": str(credits),
                "userId": str(user_id),
                "type": DYNAMIC_CREDITS_TYPE,
            },
        )
        logger.info(
            "Opened dynamic checkout %s for user %s (%d credits, %d cents)",
            created.id,
            user_id,
            credits,
            amount_cents,
        )
        return CheckoutLink(session_id=created.id, url=created.url, amount_cents=amount_cents)
