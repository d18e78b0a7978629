"""Payment gateway abstraction.

Exports:
    Error classes for gateway error handling
    Normalized provider types
    Factory functions for the gateway instance
"""

from credit_ledger.providers.payments.base import (
    CheckoutLineRequest,
    CheckoutSessionInfo,
    CreatedCheckout,
    InvoiceInfo,
    LineItem,
    PaymentGateway,
    PriceInfo,
    ProductInfo,
    SubscriptionInfo,
    WebhookEvent,
)
from credit_ledger.providers.payments.errors import (
    PaymentNotFoundError,
    PaymentProviderError,
    TransientPaymentError,
    WebhookSignatureError,
)
from credit_ledger.providers.payments.factory import (
    get_payment_gateway,
    reset_payment_gateway,
    set_payment_gateway,
)

__all__ = [
    # Types
    "PaymentGateway",
    "WebhookEvent",
    "CheckoutLineRequest",
    "CheckoutSessionInfo",
    "CreatedCheckout",
    "InvoiceInfo",
    "LineItem",
    "PriceInfo",
    "ProductInfo",
    "SubscriptionInfo",
    # Errors
    "PaymentProviderError",
    "WebhookSignatureError",
    "PaymentNotFoundError",
    "TransientPaymentError",
    # Factory
    "get_payment_gateway",
    "set_payment_gateway",
    "reset_payment_gateway",
]
