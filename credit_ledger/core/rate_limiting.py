"""Rate limiting configuration using slowapi.

Security: Limits how fast a single principal can hit the mutating credit
endpoints. When auth is enabled, keys on the bearer token subject (per-user)
so that users behind a shared IP do not throttle each other. Unauthenticated
requests fall back to IP-based keying.

Usage in routers:
    from credit_ledger.core.rate_limiting import limiter

    @router.post("/spend")
    @limiter.limit(settings.rate_limit_spend)
    async def spend(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from credit_ledger.core.auth import extract_bearer_token, verify_access_token
from credit_ledger.core.config import settings


def _rate_limit_key_func(request: Request) -> str:
    """Get rate limit key from request.

    Key format:
    - Auth disabled: "{ip}" (local dev mode)
    - Auth enabled + valid token: "user:{sub}"
    - Auth enabled + no/invalid token: "unauth:{ip}"

    Args:
        request: The incoming request.

    Returns:
        Rate limit key string.
    """
    if not settings.auth_enabled:
        return get_remote_address(request)

    # Note: No revocation check here. Full auth validation happens in deps.py.
    token = extract_bearer_token(request.headers.get("authorization"))
    if token is None:
        token = request.cookies.get(settings.auth_cookie_name)
    if token:
        claims = verify_access_token(token, settings.auth_secret.get_secret_value())
        if claims is not None:
            return f"user:{claims.user_id}"

    return f"unauth:{get_remote_address(request)}"


# Global limiter instance
# Configured with in-memory storage (suitable for single-instance deployment)
# For multi-instance, configure Redis storage via RATELIMIT_STORAGE_URL
limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Returns 429 Too Many Requests with the standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # Parse retry-after from exception detail (e.g., "10 per 1 minute")
    try:
        retry_after = str(exc.detail.split()[-1])
        int(retry_after.rstrip("s"))
    except (ValueError, AttributeError, IndexError):
        retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": retry_after},
    )
