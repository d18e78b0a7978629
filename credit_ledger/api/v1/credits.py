"""Credits API router.

Spends against the authenticated user's balance, balance reads, ledger
history, and the usage-result cache used for replaying metered requests.
"""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, Request

from credit_ledger.api.deps import CurrentUserId, DbSession
from credit_ledger.core.config import settings
from credit_ledger.core.errors import InsufficientBalanceError, NotFoundError
from credit_ledger.core.pagination import PaginationParams, pagination_params
from credit_ledger.core.rate_limiting import limiter
from credit_ledger.core.responses import DataResponse, ListResponse, PaginationMeta
from credit_ledger.repositories.ledger_repository import LedgerRepository
from credit_ledger.repositories.usage_event_repository import UsageEventRepository
from credit_ledger.schemas.credits import (
    AttachResultRequest,
    AttachResultResponse,
    BalanceResponse,
    LedgerEntryResponse,
    SpendRequest,
    SpendResponse,
    UsageEventResponse,
    UsageResultResponse,
)
from credit_ledger.services.idempotency import MAX_KEY_LENGTH
from credit_ledger.services.spend_service import SpendOutcome, SpendService
from credit_ledger.services.usage_replay import UsageReplayService

router = APIRouter()

Pagination = Annotated[PaginationParams, Depends(pagination_params)]
IdempotencyKeyPath = Annotated[
    str,
    Path(min_length=1, max_length=MAX_KEY_LENGTH, description="Spend key"),
]


# =============================================================================
# Spend
# =============================================================================


@router.post("/spend")
@limiter.limit(settings.rate_limit_spend)
async def spend_credits(
    request: Request,  # noqa: ARG001 - Required by rate limiter
    body: SpendRequest,
    user_id: CurrentUserId,
    db: DbSession,
) -> DataResponse[SpendResponse]:
    """Debit credits for a metered action.

    Retrying with the same idempotency key never charges twice; the retry
    answers with ``idempotent: true`` and the current balance.

    Args:
        request: HTTP request (required by rate limiter).
        body: Amount, meter code and idempotency key.
        user_id: Current user ID from auth.
        db: Database session.

    Returns:
        Outcome and balance after the spend.

    Raises:
        InsufficientBalanceError: If the balance does not cover the amount (402).
    """
    result = await SpendService(db).spend(
        user_id,
        amount=body.amount,
        meter_code=body.meter_code,
        idempotency_key=body.idempotency_key,
    )
    if result.outcome is SpendOutcome.INSUFFICIENT_BALANCE:
        raise InsufficientBalanceError(balance=result.balance, required=body.amount)

    return DataResponse(
        data=SpendResponse(
            ok=True,
            balance=result.balance,
            idempotent=result.idempotent,
        )
    )


# =============================================================================
# Balance & history
# =============================================================================


@router.get("/balance")
async def get_balance(
    user_id: CurrentUserId,
    db: DbSession,
) -> DataResponse[BalanceResponse]:
    """Get the authoritative and display balances."""
    balance = await LedgerRepository.get_balance(db, user_id)
    display_balance = await LedgerRepository.get_display_balance(db, user_id)
    return DataResponse(
        data=BalanceResponse(
            balance=balance,
            display_balance=display_balance,
            as_of=datetime.now(UTC),
        )
    )


@router.get("/ledger")
async def list_ledger_entries(
    user_id: CurrentUserId,
    db: DbSession,
    pagination: Pagination,
    source: Annotated[
        str | None,
        Query(max_length=20, description="Filter by source (stripe, usage, test, admin)"),
    ] = None,
) -> ListResponse[LedgerEntryResponse]:
    """List the user's ledger entries, newest first."""
    entries, total = await LedgerRepository.list_by_user(
        db,
        user_id,
        offset=pagination.offset,
        limit=pagination.limit,
        source=source,
    )
    return ListResponse(
        data=[
            LedgerEntryResponse(
                id=entry.id,
                delta=entry.delta,
                currency=entry.currency,
                reason=entry.reason,
                source=entry.source,
                source_ref=entry.source_ref,
                balance_after=entry.balance_after,
                metadata=entry.entry_metadata,
                created_at=entry.created_at,
            )
            for entry in entries
        ],
        meta=PaginationMeta(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
        ),
    )


@router.get("/usage")
async def list_usage_events(
    user_id: CurrentUserId,
    db: DbSession,
    pagination: Pagination,
    meter_code: Annotated[
        str | None,
        Query(max_length=100, description="Filter by meter code"),
    ] = None,
) -> ListResponse[UsageEventResponse]:
    """List the user's usage events, newest first."""
    events, total = await UsageEventRepository.list_by_user(
        db,
        user_id,
        offset=pagination.offset,
        limit=pagination.limit,
        meter_code=meter_code,
    )
    return ListResponse(
        data=[
            UsageEventResponse(
                id=event.id,
                meter_code=event.meter_code,
                quantity=event.quantity,
                idempotency_key=event.idempotency_key,
                has_result=event.result_json is not None,
                created_at=event.created_at,
            )
            for event in events
        ],
        meta=PaginationMeta(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
        ),
    )


# =============================================================================
# Usage result cache
# =============================================================================


@router.get("/usage/{idempotency_key}/result")
async def get_usage_result(
    idempotency_key: IdempotencyKeyPath,
    user_id: CurrentUserId,
    db: DbSession,
) -> DataResponse[UsageResultResponse]:
    """Get the cached result of a metered request.

    Raises:
        NotFoundError: If the user has no usage event with this key (404).
    """
    service = UsageReplayService(db)
    event = await service.get_usage_event(user_id, idempotency_key)
    if event is None:
        raise NotFoundError("Usage event", idempotency_key)
    return DataResponse(
        data=UsageResultResponse(
            idempotency_key=event.idempotency_key,
            result=event.result_json,
        )
    )


@router.put("/usage/{idempotency_key}/result")
async def attach_usage_result(
    idempotency_key: IdempotencyKeyPath,
    body: AttachResultRequest,
    user_id: CurrentUserId,
    db: DbSession,
) -> DataResponse[AttachResultResponse]:
    """Cache the result of a metered request under its spend key.

    A failed write is reported as ``stored: false``; the spend stands.

    Raises:
        NotFoundError: If the user has no usage event with this key (404).
    """
    service = UsageReplayService(db)
    if await service.get_usage_event(user_id, idempotency_key) is None:
        raise NotFoundError("Usage event", idempotency_key)
    stored = await service.attach_result(user_id, idempotency_key, body.result)
    return DataResponse(data=AttachResultResponse(stored=stored))
