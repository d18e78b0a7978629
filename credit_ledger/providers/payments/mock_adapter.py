"""Mock payment gateway for testing.

MockPaymentGateway serves sessions, prices, and products from in-memory
fixtures, accepts a single configured webhook signature, and records the
customers and checkout sessions it is asked to create.
"""

import json
from typing import Any

from credit_ledger.providers.payments.base import (
    CheckoutLineRequest,
    CheckoutSessionInfo,
    CreatedCheckout,
    LineItem,
    PaymentGateway,
    PriceInfo,
    ProductInfo,
    WebhookEvent,
)
from credit_ledger.providers.payments.errors import (
    PaymentNotFoundError,
    WebhookSignatureError,
)

MOCK_VALID_SIGNATURE = "mock-valid-signature"


class MockPaymentGateway(PaymentGateway):
    """Mock gateway for testing.

    Attributes:
        sessions: Checkout sessions keyed by id.
        line_items: Checkout line items keyed by session id.
        prices: Prices keyed by id.
        products: Products keyed by id.
        created_customers: Customer ids created, in order.
        created_sessions: Keyword arguments of each created session.
        calls: Record of all method invocations for test assertions.
    """

    def __init__(self, valid_signature: str = MOCK_VALID_SIGNATURE) -> None:
        self.valid_signature = valid_signature
        self.sessions: dict[str, CheckoutSessionInfo] = {}
        self.line_items: dict[str, list[LineItem]] = {}
        self.prices: dict[str, PriceInfo] = {}
        self.products: dict[str, ProductInfo] = {}
        self.created_customers: list[str] = []
        self.created_sessions: list[dict[str, Any]] = []
        self.calls: list[dict[str, Any]] = []

    @property
    def provider_name(self) -> str:
        """Return 'stripe' so mappings created in tests look real."""
        return "stripe"

    def add_session(
        self,
        session: CheckoutSessionInfo,
        line_items: list[LineItem] | None = None,
    ) -> None:
        """Register a checkout session and its line items."""
        self.sessions[session.id] = session
        self.line_items[session.id] = list(line_items or [])

    def add_price(self, price: PriceInfo) -> None:
        """Register a price."""
        self.prices[price.id] = price

    def add_product(self, product: ProductInfo) -> None:
        """Register a product."""
        self.products[product.id] = product

    def construct_event(self, payload: bytes, signature: str | None) -> WebhookEvent:
        """Accept the configured signature and parse the JSON payload."""
        self.calls.append({"method": "construct_event", "signature": signature})
        if signature != self.valid_signature:
            raise WebhookSignatureError("Invalid webhook signature")
        try:
            raw = json.loads(payload)
        except ValueError as e:
            raise WebhookSignatureError("Invalid webhook payload") from e
        return WebhookEvent(
            id=str(raw.get("id", "")),
            type=str(raw.get("type", "")),
            data_object=raw.get("data", {}).get("object", {}),
        )

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionInfo:
        """Return a registered session."""
        self.calls.append({"method": "retrieve_checkout_session", "id": session_id})
        if session_id not in self.sessions:
            raise PaymentNotFoundError(f"No such checkout session: {session_id}")
        return self.sessions[session_id]

    async def list_checkout_line_items(self, session_id: str) -> list[LineItem]:
        """Return a registered session's line items."""
        self.calls.append({"method": "list_checkout_line_items", "id": session_id})
        return list(self.line_items.get(session_id, []))

    async def retrieve_price(self, price_id: str) -> PriceInfo:
        """Return a registered price."""
        self.calls.append({"method": "retrieve_price", "id": price_id})
        if price_id not in self.prices:
            raise PaymentNotFoundError(f"No such price: {price_id}")
        return self.prices[price_id]

    async def retrieve_product(self, product_id: str) -> ProductInfo:
        """Return a registered product."""
        self.calls.append({"method": "retrieve_product", "id": product_id})
        if product_id not in self.products:
            raise PaymentNotFoundError(f"No such product: {product_id}")
        return self.products[product_id]

    async def create_customer(self, *, user_id: str, email: str | None) -> str:
        """Return a fresh sequential customer id."""
        self.calls.append({"method": "create_customer", "user_id": user_id, "email": email})
        customer_id = f"cus_mock_{len(self.created_customers) + 1}"
        self.created_customers.append(customer_id)
        return customer_id

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
        """Record the request and register an unpaid session for it."""
        request = {
            "customer_id": customer_id,
            "mode": mode,
            "line_items": list(line_items),
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": client_reference_id,
            "metadata": dict(metadata or {}),
        }
        self.calls.append({"method": "create_checkout_session", **request})
        self.created_sessions.append(request)
        session_id = f"cs_mock_{len(self.created_sessions)}"
        self.add_session(
            CheckoutSessionInfo(
                id=session_id,
                customer_id=customer_id,
                payment_status="unpaid",
                metadata=dict(metadata or {}),
                client_reference_id=client_reference_id,
            ),
            [
                LineItem(quantity=line.quantity, price_id=line.price_id)
                for line in line_items
            ],
        )
        return CreatedCheckout(
            id=session_id, url=f"https://checkout.mock/pay/{session_id}"
        )

    def call_count(self, method: str) -> int:
        """Count recorded invocations of a method."""
        return sum(1 for call in self.calls if call["method"] == method)
