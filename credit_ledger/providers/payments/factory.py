"""Payment gateway factory.

Singleton pattern for the gateway instance, mirroring how the rest of the
application treats external collaborators.
"""

from credit_ledger.core.config import Settings, settings
from credit_ledger.providers.payments.base import PaymentGateway
from credit_ledger.providers.payments.mock_adapter import MockPaymentGateway
from credit_ledger.providers.payments.stripe_adapter import StripeGateway

_gateway: PaymentGateway | None = None


def get_payment_gateway(config: Settings | None = None) -> PaymentGateway:
    """Get or create the payment gateway singleton.

    Args:
        config: Optional settings. If None, the module-level settings are used.

    Returns:
        PaymentGateway instance.

    Raises:
        ValueError: If the configured provider is unknown.
    """
    global _gateway

    if _gateway is None:
        if config is None:
            config = settings

        if config.payment_provider == "stripe":
            _gateway = StripeGateway(
                secret_key=config.stripe_secret_key.get_secret_value(),
                webhook_secret=config.stripe_webhook_secret.get_secret_value(),
                api_version=config.stripe_api_version,
            )
        elif config.payment_provider == "mock":
            _gateway = MockPaymentGateway()
        else:
            raise ValueError(f"Unknown payment provider: {config.payment_provider}")

    return _gateway


def set_payment_gateway(gateway: PaymentGateway) -> None:
    """Install a specific gateway instance (used by tests)."""
    global _gateway
    _gateway = gateway


def reset_payment_gateway() -> None:
    """Reset the gateway singleton.

    Used in tests to ensure isolation between test cases.
    """
    global _gateway
    _gateway = None
