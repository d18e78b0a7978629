"""Entitlements API router: the caller's balance and active plans."""

from fastapi import APIRouter

from credit_ledger.api.deps import CurrentUserId, DbSession
from credit_ledger.core.responses import DataResponse
from credit_ledger.schemas.billing import EntitlementPlan, EntitlementsResponse
from credit_ledger.services.entitlements import get_entitlements

router = APIRouter()


@router.get("/entitlements")
async def read_entitlements(
    user_id: CurrentUserId,
    db: DbSession,
) -> DataResponse[EntitlementsResponse]:
    """Get the authoritative balance and active or trialing subscriptions."""
    entitlements = await get_entitlements(db, user_id)
    return DataResponse(
        data=EntitlementsResponse(
            credit_balance=entitlements.credit_balance,
            plans=[
                EntitlementPlan(
                    status=plan.status,
                    current_period_end=plan.current_period_end,
                    plan_code=plan.plan_code,
                    quantity=plan.quantity,
                )
                for plan in entitlements.plans
            ],
        )
    )
