"""Shared dependencies for API endpoints.

Authentication: hosted mode verifies a bearer token (Authorization header,
falling back to the session cookie); local-first mode uses DEFAULT_USER_ID.
Operator endpoints require the X-Admin-Key credential instead of a user token.
"""

import secrets
import uuid
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.auth import extract_bearer_token, verify_access_token
from credit_ledger.core.config import settings
from credit_ledger.core.database import get_db
from credit_ledger.core.errors import AdminRequiredError
from credit_ledger.models import User
from credit_ledger.providers.payments import PaymentGateway, get_payment_gateway

# Generic 401 detail. Never say why auth failed (expired, bad sig, revoked).
_UNAUTHORIZED_DETAIL = {
    "code": "UNAUTHORIZED",
    "message": "Authentication required",
}


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=_UNAUTHORIZED_DETAIL,
    )


async def get_current_user_id(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> uuid.UUID:
    """Get current user ID from auth context.

    Validation steps (hosted mode):
    1. Read the bearer token (Authorization header, then session cookie)
    2. Verify signature, exp, aud, iss; require sub and iat
    3. Check token_invalidated_before (revocation)

    Args:
        request: HTTP request (injected by FastAPI).
        db: Database session for revocation check (injected).

    Returns:
        UUID of the current authenticated user.

    Raises:
        HTTPException: 401 for any auth failure.
    """
    if not settings.auth_enabled:
        if settings.default_user_id is None:
            raise _unauthorized()
        return settings.default_user_id

    token = extract_bearer_token(request.headers.get("authorization"))
    if token is None:
        token = request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise _unauthorized()

    claims = verify_access_token(token, settings.auth_secret.get_secret_value())
    if claims is None:
        raise _unauthorized()

    result = await db.execute(
        select(User.token_invalidated_before).where(User.id == claims.user_id)
    )
    invalidated_before = result.scalar_one_or_none()
    if (
        invalidated_before is not None
        and claims.issued_at < invalidated_before.timestamp()
    ):
        raise _unauthorized()

    return claims.user_id


def require_admin_key(
    x_admin_key: Annotated[str | None, Header()] = None,
) -> None:
    """Check the operator credential on administrative requests.

    An unset ADMIN_API_KEY disables administrative endpoints entirely.

    Args:
        x_admin_key: Value of the X-Admin-Key header.

    Raises:
        AdminRequiredError: If the credential is missing or wrong.
    """
    expected = settings.admin_api_key.get_secret_value()
    if not expected or not x_admin_key:
        raise AdminRequiredError()
    if not secrets.compare_digest(x_admin_key.encode(), expected.encode()):
        raise AdminRequiredError()


def get_gateway() -> PaymentGateway:
    """Payment gateway singleton as a FastAPI dependency."""
    return get_payment_gateway()


# Reusable type aliases for dependency injection
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
AdminKey = Annotated[None, Depends(require_admin_key)]
PaymentGatewayDep = Annotated[PaymentGateway, Depends(get_gateway)]
