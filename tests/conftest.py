import socket
import uuid
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from credit_ledger.core.config import settings
from credit_ledger.models.base import Base
from credit_ledger.providers.payments import reset_payment_gateway, set_payment_gateway
from credit_ledger.providers.payments.mock_adapter import MockPaymentGateway

# Use separate test database (same host and role, database name suffixed)
TEST_DATABASE_URL = settings.model_copy(
    update={"database_name": f"{settings.database_name}_test"}
).database_url

# Test user ID (consistent across tests for predictable auth)
TEST_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")

# Security: test-only secrets. Production uses real secrets from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow
TEST_ADMIN_KEY = "test-admin-key-that-is-at-least-32-characters"  # nosec B105  # gitleaks:allow


def create_test_jwt(
    user_id: uuid.UUID = TEST_USER_ID,
    *,
    secret: str = TEST_AUTH_SECRET,
    expires_delta: timedelta | None = None,
    iat: datetime | None = None,
    audience: str = "credit-ledger",
) -> str:
    """Create a signed access token for test authentication.

    Args:
        user_id: User UUID to encode in the sub claim.
        secret: Signing secret (must match settings.auth_secret in tests).
        expires_delta: Time until expiration. Defaults to 1 hour.
        iat: Issued-at time. Defaults to now.
        audience: aud claim.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "aud": audience,
        "iss": "credit-ledger",
        "scope": "extension",
        "exp": now + (expires_delta or timedelta(hours=1)),
        "iat": iat or now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: uuid.UUID = TEST_USER_ID) -> dict[str, str]:
    """Bearer Authorization header for a user."""
    return {"Authorization": f"Bearer {create_test_jwt(user_id)}"}


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections on port 5432."""
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available."""
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine (one session per request)."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession):
    """Create (and commit) the authenticated test user.

    Ledger services commit and roll back the session they are given, so
    fixture rows must already be committed.
    """
    from credit_ledger.models import User

    user = User(id=TEST_USER_ID, email="test@example.com")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    yield user


# User B constants (cross-tenant counterpart to TEST_USER_ID)
USER_B_ID = uuid.UUID("00000000-0000-0000-0000-000000000099")


@pytest_asyncio.fixture
async def user_b(db_session: AsyncSession):
    """Create User B for cross-tenant isolation tests."""
    from credit_ledger.models import User

    user = User(id=USER_B_ID, email="userb@example.com")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    yield user


@pytest.fixture
def mock_gateway() -> Iterator[MockPaymentGateway]:
    """Install a MockPaymentGateway as the gateway singleton.

    Yields:
        The mock, for registering sessions/prices/products per test.
    """
    gateway = MockPaymentGateway()
    set_payment_gateway(gateway)
    yield gateway
    reset_payment_gateway()


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def client(
    session_factory,
    test_user,  # noqa: ARG001 - ensures user exists
    mock_gateway,  # noqa: ARG001 - ensures no real provider is called
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client authenticated as TEST_USER_ID via a bearer token.

    Sets up:
    - Test database connection via dependency override
    - Token verification with the test secret
    - Operator credential TEST_ADMIN_KEY
    """
    from credit_ledger.core.database import get_db
    from credit_ledger.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    original_auth_enabled = settings.auth_enabled
    original_auth_secret = settings.auth_secret
    original_admin_key = settings.admin_api_key
    settings.auth_enabled = True
    settings.auth_secret = SecretStr(TEST_AUTH_SECRET)
    settings.admin_api_key = SecretStr(TEST_ADMIN_KEY)

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers=auth_headers(TEST_USER_ID),
    ) as ac:
        yield ac

    settings.auth_enabled = original_auth_enabled
    settings.auth_secret = original_auth_secret
    settings.admin_api_key = original_admin_key
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def unauthenticated_client(
    session_factory,
    mock_gateway,  # noqa: ARG001 - webhooks resolve through the mock
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client without a bearer token.

    Auth is enabled so user endpoints answer 401; webhook and admin
    endpoints (which do not use user tokens) work normally.
    """
    from credit_ledger.core.database import get_db
    from credit_ledger.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    original_auth_enabled = settings.auth_enabled
    original_auth_secret = settings.auth_secret
    original_admin_key = settings.admin_api_key
    settings.auth_enabled = True
    settings.auth_secret = SecretStr(TEST_AUTH_SECRET)
    settings.admin_api_key = SecretStr(TEST_ADMIN_KEY)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    settings.auth_enabled = original_auth_enabled
    settings.auth_secret = original_auth_secret
    settings.admin_api_key = original_admin_key
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client_user_b(
    client,  # noqa: ARG001 - ensures DB override and auth config
    user_b,  # noqa: ARG001 - ensures user_b exists in DB
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client authenticated as User B for cross-tenant tests."""
    from credit_ledger.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers=auth_headers(USER_B_ID),
    ) as ac:
        yield ac


# =============================================================================
# Autouse Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable rate limiting during tests.

    Rate limiting is tested separately; disable for other tests to avoid
    flaky failures from rate limit triggers.
    """
    from credit_ledger.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False

    yield

    limiter.enabled = original_enabled
