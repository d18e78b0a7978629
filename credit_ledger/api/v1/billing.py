"""Billing API router.

Hosted checkout creation (catalogue prices and custom credit amounts),
checkout confirmation by the returning user (races the webhook harmlessly,
both credit under the same key) and simulated subscription renewals for
non-production testing.
"""

from fastapi import APIRouter, Request

from credit_ledger.api.deps import CurrentUserId, DbSession, PaymentGatewayDep
from credit_ledger.core.config import settings
from credit_ledger.core.errors import ForbiddenError, NotFoundError, PaymentGatewayError
from credit_ledger.core.rate_limiting import limiter
from credit_ledger.core.responses import DataResponse
from credit_ledger.providers.payments import PaymentNotFoundError, PaymentProviderError
from credit_ledger.schemas.billing import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    ConfirmSessionRequest,
    ConfirmSessionResponse,
    DynamicCheckoutRequest,
    SimulatedTopupResponse,
)
from credit_ledger.services.checkout_service import CheckoutService
from credit_ledger.services.payment_events import PaymentEventService

router = APIRouter()


# =============================================================================
# Checkout creation
# =============================================================================


@router.post("/checkout-session")
@limiter.limit(settings.rate_limit_grant)
async def create_checkout_session(
    request: Request,  # noqa: ARG001 - Required by rate limiter
    body: CheckoutSessionRequest,
    user_id: CurrentUserId,
    db: DbSession,
    gateway: PaymentGatewayDep,
) -> DataResponse[CheckoutSessionResponse]:
    """Open a hosted checkout for one unit of a catalogue price.

    Creates the caller's provider customer on first use.

    Raises:
        PaymentGatewayError: If the provider call failed (502).
    """
    service = CheckoutService(db, gateway, frontend_url=settings.frontend_url)
    try:
        link = await service.create_catalogue_checkout(
            user_id, price_id=body.price_id, mode=body.mode
        )
    except PaymentProviderError as e:
        raise PaymentGatewayError() from e

    return DataResponse(data=CheckoutSessionResponse(url=link.url, session_id=link.session_id))


@router.post("/dynamic-checkout")
@limiter.limit(settings.rate_limit_grant)
async def create_dynamic_checkout(
    request: Request,  # noqa: ARG001 - Required by rate limiter
    body: DynamicCheckoutRequest,
    user_id: CurrentUserId,
    db: DbSession,
    gateway: PaymentGatewayDep,
) -> DataResponse[CheckoutSessionResponse]:
    """Open a hosted checkout for a custom number of credits.

    Raises:
        ValidationError: If credits is out of range (400).
        PaymentGatewayError: If the provider call failed (502).
    """
    service = CheckoutService(db, gateway, frontend_url=settings.frontend_url)
    try:
        link = await service.create_dynamic_checkout(
            user_id, credits=body.credits, mode=body.mode
        )
    except PaymentProviderError as e:
        raise PaymentGatewayError() from e

    return DataResponse(
        data=CheckoutSessionResponse(
            url=link.url,
            session_id=link.session_id,
            amount_cents=link.amount_cents,
        )
    )


# =============================================================================
# Checkout confirmation
# =============================================================================


@router.post("/confirm-session")
@limiter.limit(settings.rate_limit_grant)
async def confirm_checkout_session(
    request: Request,  # noqa: ARG001 - Required by rate limiter
    body: ConfirmSessionRequest,
    user_id: CurrentUserId,
    db: DbSession,
    gateway: PaymentGatewayDep,
) -> DataResponse[ConfirmSessionResponse]:
    """Credit a paid checkout session to the authenticated user.

    Args:
        request: HTTP request (required by rate limiter).
        body: Checkout session id.
        user_id: Current user ID from auth.
        db: Database session.
        gateway: Payment gateway for the session lookup.

    Returns:
        Grant outcome. ``ok`` is False for unpaid sessions or sessions
        that carry no credits.

    Raises:
        NotFoundError: If the provider does not know the session (404).
        UpstreamMismatchError: If the session belongs to another user (403).
        PaymentGatewayError: If the provider lookup failed (502).
    """
    service = PaymentEventService(db, gateway)
    try:
        result = await service.confirm_checkout_session(user_id, body.session_id)
    except PaymentNotFoundError as e:
        raise NotFoundError("Checkout session", body.session_id) from e
    except PaymentProviderError as e:
        raise PaymentGatewayError() from e

    return DataResponse(
        data=ConfirmSessionResponse(
            ok=result.ok,
            reason=result.reason,
            granted=result.granted,
            balance=result.balance,
            idempotent=result.idempotent,
        )
    )


# =============================================================================
# Simulated renewal (non-production)
# =============================================================================


@router.post("/test/subscription-topup")
@limiter.limit(settings.rate_limit_grant)
async def simulate_subscription_topup(
    request: Request,  # noqa: ARG001 - Required by rate limiter
    user_id: CurrentUserId,
    db: DbSession,
    gateway: PaymentGatewayDep,
) -> DataResponse[SimulatedTopupResponse]:
    """Grant the configured credits as if a subscription renewal were paid.

    Raises:
        ForbiddenError: If simulated top-ups are disabled (403).
    """
    if not settings.test_topup_enabled or settings.is_production:
        raise ForbiddenError("Simulated top-ups are disabled")

    credits = settings.test_topup_credits
    topup = await PaymentEventService(db, gateway).simulate_subscription_renewal(
        user_id, credits
    )
    return DataResponse(
        data=SimulatedTopupResponse(
            ok=True,
            message=f"Simulated subscription renewal added {credits} credits",
            credits_before=topup.credits_before,
            credits_added=topup.credits_added,
            balance_after=topup.balance_after,
            source_ref=topup.source_ref,
        )
    )
