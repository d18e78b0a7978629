"""Access token helpers: minting and verifying bearer credentials.

The ledger trusts the verifier's output (a stable user id) and nothing else
about the caller. Tokens are HS256 JWTs with sub/aud/iss/exp/iat claims.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt

from credit_ledger.core.config import settings

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class AccessTokenClaims:
    """Verified claims of an access token.

    Attributes:
        user_id: Principal the token was issued to.
        issued_at: Unix timestamp of issuance (used for revocation checks).
        scope: Client scope the token was minted for ("extension" or "server").
    """

    user_id: uuid.UUID
    issued_at: float
    scope: str


def create_access_token(
    *,
    user_id: uuid.UUID,
    secret: str,
    scope: str = "server",
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token with standard claims.

    Args:
        user_id: User the token authenticates.
        secret: HMAC signing secret.
        scope: Client scope claim.
        expires_delta: Time until expiration. Defaults to the configured TTL.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    ttl = expires_delta or timedelta(seconds=settings.access_token_ttl_seconds)
    payload = {
        "sub": str(user_id),
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "scope": scope,
        "exp": now + ttl,
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def verify_access_token(token: str, secret: str) -> AccessTokenClaims | None:
    """Verify a bearer token and extract its claims.

    Never raises: any failure (bad signature, expired, missing sub/iat,
    malformed sub) yields None so callers answer with a generic 401.

    Args:
        token: Encoded JWT.
        secret: HMAC signing secret.

    Returns:
        AccessTokenClaims, or None if the token is not acceptable.
    """
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[_ALGORITHM],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
        )
        user_id = uuid.UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError):
        logger.debug("Rejected access token")
        return None

    # Security: iat is required for revocation checks.
    iat = payload.get("iat")
    if iat is None:
        return None

    return AccessTokenClaims(
        user_id=user_id,
        issued_at=float(iat),
        scope=str(payload.get("scope", "server")),
    )


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token part of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
