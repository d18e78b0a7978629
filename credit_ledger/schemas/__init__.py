"""Pydantic request/response schemas for API endpoints."""

from credit_ledger.schemas.billing import (
    ConfirmSessionRequest,
    ConfirmSessionResponse,
    EntitlementPlan,
    EntitlementsResponse,
    SimulatedTopupResponse,
    WebhookAck,
)
from credit_ledger.schemas.credits import (
    AdminGrantRequest,
    AttachResultRequest,
    AttachResultResponse,
    BalanceResponse,
    LedgerEntryResponse,
    SpendRequest,
    SpendResponse,
    UsageEventResponse,
    UsageResultResponse,
)

__all__ = [
    # Credits
    "AdminGrantRequest",
    "AttachResultRequest",
    "AttachResultResponse",
    "BalanceResponse",
    "LedgerEntryResponse",
    "SpendRequest",
    "SpendResponse",
    "UsageEventResponse",
    "UsageResultResponse",
    # Billing
    "ConfirmSessionRequest",
    "ConfirmSessionResponse",
    "EntitlementPlan",
    "EntitlementsResponse",
    "SimulatedTopupResponse",
    "WebhookAck",
]
