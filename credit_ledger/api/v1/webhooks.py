"""Payment webhook receiver.

The gateway verifies the signature over the raw body before anything is
parsed. Once verified, every event is acknowledged with 200, including
ignored types and deferred grants, so the provider does not retry them.
Gateway failures while resolving an event answer 502 so the provider
retries delivery; the grant key makes the retry safe.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Header, Request

from credit_ledger.api.deps import DbSession, PaymentGatewayDep
from credit_ledger.core.errors import PaymentGatewayError, ValidationError
from credit_ledger.providers.payments import PaymentProviderError, WebhookSignatureError
from credit_ledger.schemas.billing import WebhookAck
from credit_ledger.services.payment_events import PaymentEventService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/payments")
async def receive_payment_webhook(
    request: Request,
    db: DbSession,
    gateway: PaymentGatewayDep,
    stripe_signature: Annotated[str | None, Header()] = None,
) -> WebhookAck:
    """Verify and apply a payment-provider event.

    Args:
        request: HTTP request (raw body is signed).
        db: Database session.
        gateway: Payment gateway that verifies and resolves the event.
        stripe_signature: Value of the Stripe-Signature header.

    Returns:
        Acknowledgement.

    Raises:
        ValidationError: If the signature is missing or invalid (400).
        PaymentGatewayError: If a gateway lookup failed (502).
    """
    payload = await request.body()
    try:
        event = gateway.construct_event(payload, stripe_signature)
    except WebhookSignatureError as e:
        logger.warning("Rejected payment webhook: %s", e)
        raise ValidationError("Invalid webhook signature") from e

    try:
        outcome = await PaymentEventService(db, gateway).handle_event(event)
    except PaymentProviderError as e:
        raise PaymentGatewayError() from e

    logger.info("Payment event %s (%s): %s", event.id, event.type, outcome.value)
    return WebhookAck()
