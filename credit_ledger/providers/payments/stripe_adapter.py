"""Stripe payment gateway adapter.

Wraps the synchronous Stripe SDK. Calls run in a worker thread so the
event loop is never blocked, and they always happen outside a ledger
transaction: no database lock is held across a Stripe call.
"""

import asyncio
import json
from typing import Any

import stripe
import structlog

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
    PaymentProviderError,
    TransientPaymentError,
    WebhookSignatureError,
)

logger = structlog.get_logger()

# Checkout sessions never carry more line items than one page of this size.
_LINE_ITEM_PAGE_SIZE = 100


def _classify_stripe_error(error: Exception) -> PaymentProviderError:
    """Map Stripe exceptions to the internal error taxonomy.

    Returns a PaymentProviderError subclass instance (does not raise).
    The caller is responsible for raising via
    ``raise _classify_stripe_error(e) from e``.
    """
    if isinstance(error, stripe.InvalidRequestError) and error.http_status == 404:
        return PaymentNotFoundError(str(error))

    if isinstance(error, stripe.RateLimitError | stripe.APIConnectionError):
        return TransientPaymentError(str(error))

    if isinstance(error, stripe.APIError):
        return TransientPaymentError(str(error))

    return PaymentProviderError(str(error))


def _line_item_params(line: CheckoutLineRequest) -> dict[str, Any]:
    """Build a Checkout line_items entry for a catalogue or ad-hoc price."""
    if line.price_id:
        return {"price": line.price_id, "quantity": line.quantity}

    product_data: dict[str, Any] = {"name": line.product_name or "Credits"}
    if line.product_description:
        product_data["description"] = line.product_description
    if line.product_metadata:
        product_data["metadata"] = dict(line.product_metadata)
    price_data: dict[str, Any] = {
        "currency": line.currency,
        "unit_amount": line.unit_amount,
        "product_data": product_data,
    }
    if line.recurring_interval:
        price_data["recurring"] = {"interval": line.recurring_interval}
    return {"price_data": price_data, "quantity": line.quantity}


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert a StripeObject to plain JSON data."""
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    return obj.to_dict()


class StripeGateway(PaymentGateway):
    """Payment gateway backed by the Stripe API.

    Args:
        secret_key: Stripe secret API key.
        webhook_secret: Signing secret of the webhook endpoint.
        api_version: Pinned Stripe API version.
    """

    def __init__(
        self,
        *,
        secret_key: str,
        webhook_secret: str,
        api_version: str | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._api_version = api_version

    @property
    def provider_name(self) -> str:
        """Return 'stripe'."""
        return "stripe"

    def _request_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"api_key": self._secret_key}
        if self._api_version:
            options["stripe_version"] = self._api_version
        return options

    async def _call(self, operation: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except stripe.StripeError as e:
            logger.warning(
                "stripe_request_failed",
                operation=operation,
                error_type=type(e).__name__,
                http_status=getattr(e, "http_status", None),
            )
            raise _classify_stripe_error(e) from e

    def construct_event(self, payload: bytes, signature: str | None) -> WebhookEvent:
        """Verify the Stripe-Signature header and parse the event.

        Args:
            payload: Raw request body.
            signature: Stripe-Signature header value.

        Returns:
            The verified event.

        Raises:
            WebhookSignatureError: If the header is missing, the signature
                does not match, or the payload is not valid JSON.
        """
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self._webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError("Invalid webhook signature") from e
        except ValueError as e:
            raise WebhookSignatureError("Invalid webhook payload") from e

        # Parse the verified raw body so payload objects are plain JSON data.
        raw = json.loads(payload)
        return WebhookEvent(
            id=str(event["id"]),
            type=str(event["type"]),
            data_object=raw.get("data", {}).get("object", {}),
        )

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionInfo:
        """Fetch a checkout session by id."""
        session = await self._call(
            "retrieve_checkout_session",
            stripe.checkout.Session.retrieve,
            session_id,
            **self._request_options(),
        )
        return CheckoutSessionInfo.from_dict(_to_dict(session))

    async def list_checkout_line_items(self, session_id: str) -> list[LineItem]:
        """List up to one page of a checkout session's line items."""
        page = await self._call(
            "list_checkout_line_items",
            stripe.checkout.Session.list_line_items,
            session_id,
            limit=_LINE_ITEM_PAGE_SIZE,
            **self._request_options(),
        )
        data = _to_dict(page).get("data", [])
        return [LineItem.from_dict(item) for item in data]

    async def retrieve_price(self, price_id: str) -> PriceInfo:
        """Fetch a price by id."""
        price = await self._call(
            "retrieve_price",
            stripe.Price.retrieve,
            price_id,
            **self._request_options(),
        )
        return PriceInfo.from_dict(_to_dict(price))

    async def retrieve_product(self, product_id: str) -> ProductInfo:
        """Fetch a product by id."""
        product = await self._call(
            "retrieve_product",
            stripe.Product.retrieve,
            product_id,
            **self._request_options(),
        )
        data = _to_dict(product)
        metadata = data.get("metadata") or {}
        return ProductInfo(
            id=str(data.get("id", product_id)),
            metadata={str(k): str(v) for k, v in metadata.items() if v is not None},
        )

    async def create_customer(self, *, user_id: str, email: str | None) -> str:
        """Create a Stripe customer tagged with the internal user id."""
        params: dict[str, Any] = {"metadata": {"userId": user_id}}
        if email:
            params["email"] = email
        customer = await self._call(
            "create_customer",
            stripe.Customer.create,
            **params,
            **self._request_options(),
        )
        customer_id = str(_to_dict(customer)["id"])
        logger.info("stripe_customer_created", customer_id=customer_id)
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
        """Create a hosted Checkout session (promotion codes allowed)."""
        params: dict[str, Any] = {
            "mode": mode,
            "customer": customer_id,
            "line_items": [_line_item_params(line) for line in line_items],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "allow_promotion_codes": True,
        }
        if client_reference_id:
            params["client_reference_id"] = client_reference_id
        if metadata:
            params["metadata"] = dict(metadata)
        session = await self._call(
            "create_checkout_session",
            stripe.checkout.Session.create,
            **params,
            **self._request_options(),
        )
        data = _to_dict(session)
        return CreatedCheckout(id=str(data["id"]), url=data.get("url"))
