"""Admin API router.

Operator grants. Every endpoint requires the X-Admin-Key credential; the
target user comes from the request body, never from a user token.
"""

from fastapi import APIRouter, Request

from credit_ledger.api.deps import AdminKey, DbSession
from credit_ledger.core.config import settings
from credit_ledger.core.rate_limiting import limiter
from credit_ledger.core.responses import DataResponse
from credit_ledger.schemas.credits import AdminGrantRequest, SpendResponse
from credit_ledger.services.grant_service import GrantService

router = APIRouter()


# =============================================================================
# Grants
# =============================================================================


@router.post("/credits/grant")
@limiter.limit(settings.rate_limit_grant)
async def grant_credits(
    request: Request,  # noqa: ARG001 - Required by rate limiter
    body: AdminGrantRequest,
    _admin: AdminKey,
    db: DbSession,
) -> DataResponse[SpendResponse]:
    """Credit a user's balance, once per idempotency key.

    Args:
        request: HTTP request (required by rate limiter).
        body: Target user, amount, optional reason and idempotency key.
        _admin: Operator credential check.
        db: Database session.

    Returns:
        Balance after the grant and whether it had already been applied.

    Raises:
        AdminRequiredError: If the operator credential is missing or wrong (401).
        NotFoundError: If the user does not exist (404).
    """
    result = await GrantService(db).admin_grant(
        body.user_id,
        amount=body.amount,
        idempotency_key=body.idempotency_key,
        reason=body.reason,
    )
    return DataResponse(
        data=SpendResponse(
            ok=True,
            balance=result.balance,
            idempotent=result.idempotent,
        )
    )
