"""Credit ledger request/response schemas.

All schemas use ConfigDict(extra="forbid") to reject unexpected fields.
Credit amounts are whole numbers.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from credit_ledger.models.ledger import MAX_CREDIT_AMOUNT
from credit_ledger.services.idempotency import MAX_KEY_LENGTH, MIN_KEY_LENGTH

_MAX_METER_CODE_LENGTH = 100
_MAX_REASON_LENGTH = 100


# =============================================================================
# Requests
# =============================================================================


class SpendRequest(BaseModel):
    """Body for POST /api/v1/credits/spend.

    ``feature`` is accepted as an alias of ``meter_code``.

    Attributes:
        amount: Credits to debit.
        meter_code: Metered feature/action.
        idempotency_key: Client key for this action (8-255 characters).
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    amount: int = Field(gt=0, le=MAX_CREDIT_AMOUNT)
    meter_code: str = Field(
        min_length=1,
        max_length=_MAX_METER_CODE_LENGTH,
        validation_alias=AliasChoices("meter_code", "feature"),
    )
    idempotency_key: str = Field(
        min_length=MIN_KEY_LENGTH,
        max_length=MAX_KEY_LENGTH,
        validation_alias=AliasChoices("idempotency_key", "idempotencyKey"),
    )

    @field_validator("idempotency_key", mode="before")
    @classmethod
    def strip_idempotency_key(cls, value: Any) -> Any:
        """Strip whitespace so padding cannot satisfy the minimum length."""
        return value.strip() if isinstance(value, str) else value


class AdminGrantRequest(BaseModel):
    """Body for POST /api/v1/admin/credits/grant.

    Attributes:
        user_id: User to credit.
        amount: Credits to add.
        reason: Optional classification; defaults to "grant".
        idempotency_key: Operator key for this grant (8-255 characters).
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    user_id: uuid.UUID = Field(validation_alias=AliasChoices("user_id", "userId"))
    amount: int = Field(gt=0, le=MAX_CREDIT_AMOUNT)
    reason: str | None = Field(default=None, max_length=_MAX_REASON_LENGTH)
    idempotency_key: str = Field(
        min_length=MIN_KEY_LENGTH,
        max_length=MAX_KEY_LENGTH,
        validation_alias=AliasChoices("idempotency_key", "idempotencyKey"),
    )

    @field_validator("idempotency_key", mode="before")
    @classmethod
    def strip_idempotency_key(cls, value: Any) -> Any:
        """Strip whitespace so padding cannot satisfy the minimum length."""
        return value.strip() if isinstance(value, str) else value


class AttachResultRequest(BaseModel):
    """Body for PUT /api/v1/credits/usage/{idempotency_key}/result.

    Attributes:
        result: Opaque JSON output of the metered operation.
    """

    model_config = ConfigDict(extra="forbid")

    result: Any


# =============================================================================
# Responses
# =============================================================================


class SpendResponse(BaseModel):
    """Response for spends and grants.

    Attributes:
        ok: True when the operation is (or already was) applied.
        balance: Balance after the operation.
        idempotent: True when the key had already been applied.
    """

    model_config = ConfigDict(extra="forbid")

    ok: bool
    balance: int
    idempotent: bool


class BalanceResponse(BaseModel):
    """Response for GET /api/v1/credits/balance.

    Attributes:
        balance: Authoritative balance (sum of all deltas).
        display_balance: Latest entry's snapshot; may lag.
        as_of: When the balance was read.
    """

    model_config = ConfigDict(extra="forbid")

    balance: int
    display_balance: int
    as_of: datetime


class LedgerEntryResponse(BaseModel):
    """Response item for GET /api/v1/credits/ledger.

    Attributes:
        id: Entry UUID.
        delta: Signed credits.
        currency: Always "credits".
        reason: Classification.
        source: Origin tag.
        source_ref: Idempotency key.
        balance_after: Snapshot balance after this entry.
        metadata: Opaque audit payload.
        created_at: When the entry was written.
    """

    model_config = ConfigDict(extra="forbid")

    id: uuid.UUID
    delta: int
    currency: str
    reason: str | None
    source: str | None
    source_ref: str
    balance_after: int | None
    metadata: dict[str, Any] | None
    created_at: datetime


class UsageEventResponse(BaseModel):
    """Response item for GET /api/v1/credits/usage.

    Attributes:
        id: Usage event UUID.
        meter_code: Metered feature/action.
        quantity: Credits consumed.
        idempotency_key: Spend key.
        has_result: Whether a result is cached.
        created_at: When the spend happened.
    """

    model_config = ConfigDict(extra="forbid")

    id: uuid.UUID
    meter_code: str
    quantity: int
    idempotency_key: str
    has_result: bool
    created_at: datetime


class UsageResultResponse(BaseModel):
    """Cached result of a metered operation.

    Attributes:
        idempotency_key: Spend key.
        result: Cached payload, or None when nothing is cached.
    """

    model_config = ConfigDict(extra="forbid")

    idempotency_key: str
    result: Any = None


class AttachResultResponse(BaseModel):
    """Response for PUT /api/v1/credits/usage/{idempotency_key}/result.

    Attributes:
        stored: False when caching failed (the spend is unaffected).
    """

    model_config = ConfigDict(extra="forbid")

    stored: bool
