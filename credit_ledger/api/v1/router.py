"""API v1 router aggregator.

All v1 endpoint routers are included here under the /api/v1 prefix.
"""

from fastapi import APIRouter

from credit_ledger.api.v1 import admin, billing, credits, entitlements, webhooks

router = APIRouter()

# =============================================================================
# User-facing
# =============================================================================

router.include_router(credits.router, prefix="/credits", tags=["credits"])
router.include_router(billing.router, prefix="/billing", tags=["billing"])
router.include_router(entitlements.router, prefix="/me", tags=["entitlements"])

# =============================================================================
# Operator & provider
# =============================================================================

router.include_router(admin.router, prefix="/admin", tags=["admin"])
router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
