"""SQLAlchemy ORM models for the credit ledger.

All models are exported from this module for convenient imports:
    from credit_ledger.models import User, LedgerEntry, UsageEvent, ...

Models are organized by domain:
- user.py: User (per-user lock target)
- ledger.py: LedgerEntry, UsageEvent (append-only)
- billing.py: Customer, Subscription (payment-provider collaborators)
"""

from credit_ledger.models.base import Base, TimestampMixin
from credit_ledger.models.billing import Customer, Subscription
from credit_ledger.models.ledger import LedgerEntry, UsageEvent
from credit_ledger.models.user import User

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    # Principal
    "User",
    # Ledger
    "LedgerEntry",
    "UsageEvent",
    # Billing
    "Customer",
    "Subscription",
]
