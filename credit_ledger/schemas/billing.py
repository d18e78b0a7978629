"""Billing request/response schemas: checkout creation and confirmation,
simulated renewals, entitlements, and the webhook acknowledgement.
"""

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class CheckoutSessionRequest(BaseModel):
    """Body for POST /api/v1/billing/checkout-session.

    Attributes:
        price_id: Catalogue price to buy one unit of.
        mode: "payment" (one-time) or "subscription".
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    price_id: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("price_id", "priceId"),
    )
    mode: Literal["payment", "subscription"] = "payment"


class DynamicCheckoutRequest(BaseModel):
    """Body for POST /api/v1/billing/dynamic-checkout."""

    model_config = ConfigDict(extra="forbid")

    credits: int
    mode: Literal["payment", "subscription"] = "payment"


class CheckoutSessionResponse(BaseModel):
    """A created checkout session.

    Attributes:
        url: Hosted checkout page to redirect to.
        session_id: Session id, later passed to confirm-session.
        amount_cents: Price of a dynamic purchase (None for catalogue prices).
    """

    model_config = ConfigDict(extra="forbid")

    url: str | None
    session_id: str
    amount_cents: int | None = None


class ConfirmSessionRequest(BaseModel):
    """Body for POST /api/v1/billing/confirm-session.

    Attributes:
        session_id: Checkout session id returned by the provider.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    session_id: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("session_id", "sessionId"),
    )


class ConfirmSessionResponse(BaseModel):
    """Response for POST /api/v1/billing/confirm-session.

    Attributes:
        ok: False when the session is unpaid or carries no credits.
        reason: Why ok is False.
        granted: Credits granted by this call.
        balance: Balance after the grant.
        idempotent: True when the session had already been credited.
    """

    model_config = ConfigDict(extra="forbid")

    ok: bool
    reason: str | None = None
    granted: int = 0
    balance: int | None = None
    idempotent: bool = False


class SimulatedTopupResponse(BaseModel):
    """Response for POST /api/v1/billing/test/subscription-topup."""

    model_config = ConfigDict(extra="forbid")

    ok: bool
    message: str
    credits_before: int
    credits_added: int
    balance_after: int
    source_ref: str


class EntitlementPlan(BaseModel):
    """One active or trialing subscription.

    Attributes:
        status: Provider status.
        current_period_end: End of the paid period, if known.
        plan_code: Plan identifier.
        quantity: Item quantity.
    """

    model_config = ConfigDict(extra="forbid")

    status: str
    current_period_end: datetime | None
    plan_code: str | None
    quantity: int


class EntitlementsResponse(BaseModel):
    """Response for GET /api/v1/me/entitlements."""

    model_config = ConfigDict(extra="forbid")

    credit_balance: int
    plans: list[EntitlementPlan]


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment provider."""

    received: bool = True
