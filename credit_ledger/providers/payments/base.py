"""Abstract base class and types for payment gateways.

The gateway is a thin collaborator: it verifies webhook signatures, looks
up checkout sessions, prices, and products, and creates customers and
checkout sessions. Everything it returns is normalized into the plain
dataclasses below so that grant logic never touches provider SDK objects.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# =============================================================================
# Parsing helpers
# =============================================================================


def customer_id_of(value: Any) -> str | None:
    """Extract a customer id from a field that may be an id or expanded object.

    Args:
        value: Customer field from a provider payload.

    Returns:
        Customer id string, or None if absent.
    """
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        customer_id = value.get("id")
        return customer_id if isinstance(customer_id, str) else None
    return None


def _timestamp_to_datetime(value: Any) -> datetime | None:
    if isinstance(value, int | float) and not isinstance(value, bool) and value > 0:
        return datetime.fromtimestamp(value, tz=UTC)
    return None


def _string_metadata(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}


def _quantity(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return 1


# =============================================================================
# Provider types
# =============================================================================


@dataclass
class WebhookEvent:
    """A verified webhook event.

    Attributes:
        id: Provider event id.
        type: Event type (e.g., "checkout.session.completed").
        data_object: The event's payload object as plain JSON data.
    """

    id: str
    type: str
    data_object: dict[str, Any]


@dataclass
class PriceInfo:
    """A catalogue price.

    Attributes:
        id: Provider price id.
        metadata: String metadata (may carry included credits).
        recurring: Whether the price bills on a schedule.
        product_id: Parent product id, if known.
        nickname: Display name, used as the plan code.
    """

    id: str
    metadata: dict[str, str] = field(default_factory=dict)
    recurring: bool = False
    product_id: str | None = None
    nickname: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceInfo":
        """Build from a provider price object."""
        product = data.get("product")
        if isinstance(product, dict):
            product = product.get("id")
        return cls(
            id=str(data.get("id", "")),
            metadata=_string_metadata(data.get("metadata")),
            recurring=bool(data.get("recurring")),
            product_id=product if isinstance(product, str) else None,
            nickname=data.get("nickname"),
        )


@dataclass
class ProductInfo:
    """A catalogue product.

    Attributes:
        id: Provider product id.
        metadata: String metadata (may carry included credits).
    """

    id: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class LineItem:
    """One purchased line of a checkout session or invoice.

    Attributes:
        quantity: Units purchased (defaults to 1).
        price_id: Price id, when the provider only returns a reference.
        price: Expanded price, when the provider includes it.
    """

    quantity: int = 1
    price_id: str | None = None
    price: PriceInfo | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineItem":
        """Build from a checkout or invoice line item.

        Invoice lines on newer API versions reference the price through
        ``pricing.price_details.price`` instead of an expanded ``price``.
        """
        price_data = data.get("price")
        price: PriceInfo | None = None
        price_id: str | None = None
        if isinstance(price_data, dict):
            price = PriceInfo.from_dict(price_data)
            price_id = price.id
        elif isinstance(price_data, str):
            price_id = price_data
        else:
            details = (data.get("pricing") or {}).get("price_details") or {}
            ref = details.get("price")
            if isinstance(ref, str):
                price_id = ref
        return cls(quantity=_quantity(data.get("quantity")), price_id=price_id, price=price)


@dataclass
class CheckoutSessionInfo:
    """A checkout session.

    Attributes:
        id: Provider session id.
        customer_id: Paying customer's provider id, if any.
        payment_status: "paid", "unpaid", or "no_payment_required".
        metadata: Session metadata (dynamic purchases carry type/credits).
        amount_total: Amount charged in minor units.
        currency: ISO currency code.
        client_reference_id: Caller-supplied reference (our user id, if set).
    """

    id: str
    customer_id: str | None
    payment_status: str | None
    metadata: dict[str, str] = field(default_factory=dict)
    amount_total: int | None = None
    currency: str | None = None
    client_reference_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckoutSessionInfo":
        """Build from a provider checkout session object."""
        return cls(
            id=str(data.get("id", "")),
            customer_id=customer_id_of(data.get("customer")),
            payment_status=data.get("payment_status"),
            metadata=_string_metadata(data.get("metadata")),
            amount_total=data.get("amount_total"),
            currency=data.get("currency"),
            client_reference_id=data.get("client_reference_id"),
        )


@dataclass
class InvoiceInfo:
    """A paid invoice.

    Attributes:
        id: Provider invoice id.
        customer_id: Billed customer's provider id.
        amount_paid: Amount paid in minor units.
        currency: ISO currency code.
        period_start: Period start (unix seconds) as sent by the provider.
        period_end: Period end (unix seconds) as sent by the provider.
        lines: Invoice line items.
    """

    id: str
    customer_id: str | None
    amount_paid: int | None = None
    currency: str | None = None
    period_start: int | None = None
    period_end: int | None = None
    lines: list[LineItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InvoiceInfo":
        """Build from a provider invoice object."""
        raw_lines = (data.get("lines") or {}).get("data") or []
        return cls(
            id=str(data.get("id", "")),
            customer_id=customer_id_of(data.get("customer")),
            amount_paid=data.get("amount_paid"),
            currency=data.get("currency"),
            period_start=data.get("period_start"),
            period_end=data.get("period_end"),
            lines=[LineItem.from_dict(line) for line in raw_lines if isinstance(line, dict)],
        )


@dataclass
class SubscriptionInfo:
    """A subscription snapshot from a subscription event.

    Attributes:
        id: Provider subscription id.
        customer_id: Subscriber's provider customer id.
        status: Provider status.
        current_period_end: End of the current period, if known.
        plan_code: First item's price nickname, if any.
        quantity: First item's quantity.
    """

    id: str
    customer_id: str | None
    status: str
    current_period_end: datetime | None = None
    plan_code: str | None = None
    quantity: int = 1

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SubscriptionInfo":
        """Build from a provider subscription object.

        The period end lives on the subscription on older API versions and
        on each item on newer ones; both are accepted.
        """
        items = (data.get("items") or {}).get("data") or []
        first_item = items[0] if items and isinstance(items[0], dict) else {}
        price = first_item.get("price") if isinstance(first_item.get("price"), dict) else {}
        period_end = data.get("current_period_end") or first_item.get("current_period_end")
        return cls(
            id=str(data.get("id", "")),
            customer_id=customer_id_of(data.get("customer")),
            status=str(data.get("status", "")),
            current_period_end=_timestamp_to_datetime(period_end),
            plan_code=price.get("nickname"),
            quantity=_quantity(first_item.get("quantity")),
        )


@dataclass
class CheckoutLineRequest:
    """One line of a checkout session to create.

    Either ``price_id`` names a catalogue price, or ``unit_amount`` and
    ``product_name`` describe an ad-hoc price.

    Attributes:
        quantity: Units to sell.
        price_id: Catalogue price id.
        unit_amount: Ad-hoc price in minor units.
        currency: ISO currency code for an ad-hoc price.
        product_name: Display name for an ad-hoc price.
        product_description: Optional description for an ad-hoc price.
        product_metadata: Metadata stored on the ad-hoc product.
        recurring_interval: Billing interval ("month") for a recurring
            ad-hoc price; None for one-time.
    """

    quantity: int = 1
    price_id: str | None = None
    unit_amount: int | None = None
    currency: str = "usd"
    product_name: str | None = None
    product_description: str | None = None
    product_metadata: dict[str, str] = field(default_factory=dict)
    recurring_interval: str | None = None


@dataclass
class CreatedCheckout:
    """A checkout session that was just created.

    Attributes:
        id: Provider session id.
        url: Hosted checkout page the user is redirected to.
    """

    id: str
    url: str | None


# =============================================================================
# Gateway interface
# =============================================================================


class PaymentGateway(ABC):
    """Abstract base class for payment gateways.

    Implementations must normalize provider errors into
    ``credit_ledger.providers.payments.errors``.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider name stored on customer mappings (e.g., "stripe")."""

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str | None) -> WebhookEvent:
        """Verify a webhook signature and parse the event.

        Args:
            payload: Raw request body, exactly as received.
            signature: Signature header value.

        Returns:
            The verified event.

        Raises:
            WebhookSignatureError: If the signature or payload is invalid.
        """

    @abstractmethod
    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionInfo:
        """Fetch a checkout session by id.

        Raises:
            PaymentNotFoundError: If the session does not exist.
            PaymentProviderError: On any other provider failure.
        """

    @abstractmethod
    async def list_checkout_line_items(self, session_id: str) -> list[LineItem]:
        """List the line items of a checkout session."""

    @abstractmethod
    async def retrieve_price(self, price_id: str) -> PriceInfo:
        """Fetch a price by id."""

    @abstractmethod
    async def retrieve_product(self, product_id: str) -> ProductInfo:
        """Fetch a product by id."""

    @abstractmethod
    async def create_customer(self, *, user_id: str, email: str | None) -> str:
        """Create a provider customer for a user.

        Args:
            user_id: Internal user id, stored in the customer's metadata.
            email: Billing email, if known.

        Returns:
            The new provider customer id.
        """

    @abstractmethod
    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        mode: str,
        line_items: list[CheckoutLineRequest],
        success_url: str,
        cancel_url: str,
        client_reference_id: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> CreatedCheckout:
        """Create a hosted checkout session.

        Args:
            customer_id: Paying provider customer.
            mode: "payment" or "subscription".
            line_items: Lines to sell.
            success_url: Redirect after payment; may contain the provider's
                session id placeholder.
            cancel_url: Redirect when the user abandons checkout.
            client_reference_id: Our user id, echoed back on the session.
            metadata: Session metadata (dynamic purchases carry credits).

        Returns:
            The created session's id and URL.
        """
