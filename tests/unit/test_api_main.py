"""Tests for the FastAPI application: envelope handlers, headers, health, auth."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.config import settings
from credit_ledger.core.errors import TransientStoreError
from credit_ledger.main import create_app
from credit_ledger.models.user import User
from tests.conftest import TEST_USER_ID, create_test_jwt


async def _get(app: FastAPI, path: str):
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        return await ac.get(path)


class TestHealth:
    """GET /health."""

    async def test_health(self):
        response = await _get(create_app(), "/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestSecurityHeaders:
    """SecurityHeadersMiddleware."""

    async def test_headers_present(self):
        response = await _get(create_app(), "/health")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "Strict-Transport-Security" not in response.headers

    async def test_hsts_in_production(self):
        original = settings.environment
        settings.environment = "production"
        try:
            response = await _get(create_app(), "/health")
        finally:
            settings.environment = original

        assert "max-age=31536000" in response.headers["Strict-Transport-Security"]


class TestErrorEnvelope:
    """Exception handlers answer with {"error": {...}}."""

    async def test_unknown_route_is_enveloped(self):
        response = await _get(create_app(), "/api/v1/nope")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "HTTP_404"

    async def test_api_error_is_enveloped(self):
        app = create_app()

        @app.get("/boom")
        async def boom() -> None:
            raise TransientStoreError()

        response = await _get(app, "/boom")

        assert response.status_code == 503
        assert response.json() == {
            "error": {
                "code": "TRANSIENT_STORE_FAILURE",
                "message": "Ledger temporarily unavailable",
                "details": None,
            }
        }

    async def test_unhandled_exception_hides_details(self):
        app = create_app()

        @app.get("/crash")
        async def crash() -> None:
            raise RuntimeError("secret internals")

        with patch("credit_ledger.main.logger"):
            response = await _get(app, "/crash")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"
        assert "secret internals" not in response.text


class TestTokenRevocation:
    """Tokens issued before token_invalidated_before are refused."""

    async def test_revoked_token_is_401(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        test_user: User,  # noqa: ARG002
    ):
        issued = datetime.now(UTC) - timedelta(minutes=10)
        token = create_test_jwt(TEST_USER_ID, iat=issued)
        await db_session.execute(
            update(User)
            .where(User.id == TEST_USER_ID)
            .values(token_invalidated_before=datetime.now(UTC) - timedelta(minutes=1))
        )
        await db_session.commit()

        revoked = await client.get(
            "/api/v1/credits/balance", headers={"Authorization": f"Bearer {token}"}
        )
        fresh = await client.get("/api/v1/credits/balance")

        assert revoked.status_code == 401
        assert fresh.status_code == 200

    async def test_cookie_token_is_accepted(
        self,
        unauthenticated_client: AsyncClient,
        test_user: User,  # noqa: ARG002
    ):
        cookie = f"{settings.auth_cookie_name}={create_test_jwt(TEST_USER_ID)}"

        response = await unauthenticated_client.get(
            "/api/v1/credits/balance", headers={"Cookie": cookie}
        )

        assert response.status_code == 200
