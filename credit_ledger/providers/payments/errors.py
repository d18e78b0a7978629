"""Payment gateway error taxonomy.

Adapters map provider SDK exceptions onto these classes so that the grant
logic and the API layer handle failures without importing the SDK.
"""

__all__ = [
    "PaymentProviderError",
    "WebhookSignatureError",
    "PaymentNotFoundError",
    "TransientPaymentError",
]


class PaymentProviderError(Exception):
    """Base class for all payment gateway errors."""

    pass


class WebhookSignatureError(PaymentProviderError):
    """Webhook payload failed signature verification or could not be parsed.

    Never retry: the request did not come from the provider.
    """

    pass


class PaymentNotFoundError(PaymentProviderError):
    """Requested session, price, or product does not exist."""

    pass


class TransientPaymentError(PaymentProviderError):
    """Temporary failure (network, rate limit, provider outage).

    Safe to retry; grants are keyed so a retry cannot double-credit.
    """

    pass
