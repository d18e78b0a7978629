"""Idempotency keys and the pre-check lookup.

Every ledger mutation carries a key. Grants store it in
``credit_ledger_entries.source_ref``; spends store it in both the debit's
source_ref and ``usage_events.idempotency_key``. The lookups here are the
cheap pre-check; the unique constraints on those columns are the guard that
actually holds under concurrency.
"""

import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.errors import ValidationError
from credit_ledger.models.ledger import LedgerEntry, UsageEvent
from credit_ledger.repositories.ledger_repository import LedgerRepository
from credit_ledger.repositories.usage_event_repository import UsageEventRepository

MIN_KEY_LENGTH = 8
MAX_KEY_LENGTH = 255

CHECKOUT_PREFIX = "checkout:"
INVOICE_PREFIX = "invoice:"
SIMULATED_SUBSCRIPTION_PREFIX = "test-subscription:"

RESERVED_PREFIXES = (CHECKOUT_PREFIX, INVOICE_PREFIX, SIMULATED_SUBSCRIPTION_PREFIX)


def checkout_key(session_id: str) -> str:
    """Key for a completed checkout session (webhook and confirmation share it)."""
    return f"{CHECKOUT_PREFIX}{session_id}"


def invoice_key(invoice_id: str) -> str:
    """Key for a paid subscription invoice."""
    return f"{INVOICE_PREFIX}{invoice_id}"


def simulated_subscription_key() -> str:
    """Fresh key for a simulated subscription renewal.

    Each call is a distinct event, so the key is never reused.
    """
    return f"{SIMULATED_SUBSCRIPTION_PREFIX}{uuid.uuid4()}"


def validate_client_key(key: str) -> str:
    """Validate a caller-supplied idempotency key.

    Args:
        key: Key from a client or operator.

    Returns:
        The key with surrounding whitespace removed.

    Raises:
        ValidationError: If the key is shorter than 8 or longer than 255
            characters.
    """
    stripped = key.strip()
    if len(stripped) < MIN_KEY_LENGTH:
        raise ValidationError(
            f"idempotency_key must be at least {MIN_KEY_LENGTH} characters",
            details=[{"field": "idempotency_key", "min_length": MIN_KEY_LENGTH}],
        )
    if len(stripped) > MAX_KEY_LENGTH:
        raise ValidationError(
            f"idempotency_key must be at most {MAX_KEY_LENGTH} characters",
            details=[{"field": "idempotency_key", "max_length": MAX_KEY_LENGTH}],
        )
    return stripped


def validate_spend_key(key: str) -> str:
    """Validate a client spend key; provider grant prefixes are reserved.

    Raises:
        ValidationError: If the key is invalid or starts with a reserved
            prefix (a spend could otherwise claim a future grant's key).
    """
    stripped = validate_client_key(key)
    if stripped.startswith(RESERVED_PREFIXES):
        raise ValidationError(
            "idempotency_key uses a reserved prefix",
            details=[{"field": "idempotency_key", "reserved": list(RESERVED_PREFIXES)}],
        )
    return stripped


async def find_applied_grant(db: AsyncSession, key: str) -> LedgerEntry | None:
    """Pre-check for a grant: the ledger entry already stored under ``key``."""
    return await LedgerRepository.get_by_source_ref(db, key)


async def find_applied_spend(db: AsyncSession, key: str) -> UsageEvent | None:
    """Pre-check for a spend: the usage event already stored under ``key``."""
    return await UsageEventRepository.get_by_idempotency_key(db, key)
