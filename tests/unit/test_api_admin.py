"""Tests for the admin API: operator grants behind X-Admin-Key."""

import uuid

import pytest
from httpx import AsyncClient
from pydantic import SecretStr

from credit_ledger.core.config import settings
from credit_ledger.models.user import User
from tests.conftest import TEST_ADMIN_KEY, TEST_USER_ID

GRANT_URL = "/api/v1/admin/credits/grant"
ADMIN_HEADERS = {"X-Admin-Key": TEST_ADMIN_KEY}


def _grant_body(amount: int = 50, key: str = "admin-grant-0001", **extra):
    return {
        "user_id": str(TEST_USER_ID),
        "amount": amount,
        "idempotency_key": key,
        **extra,
    }


class TestAdminGrant:
    """POST /api/v1/admin/credits/grant."""

    async def test_grant_credits_user(
        self, unauthenticated_client: AsyncClient, test_user: User  # noqa: ARG002
    ) -> None:
        """The operator credential alone authorizes a grant."""
        response = await unauthenticated_client.post(
            GRANT_URL, json=_grant_body(), headers=ADMIN_HEADERS
        )

        assert response.status_code == 200
        assert response.json() == {
            "data": {"ok": True, "balance": 50, "idempotent": False}
        }

    async def test_replay_credits_once(
        self, unauthenticated_client: AsyncClient, test_user: User  # noqa: ARG002
    ) -> None:
        await unauthenticated_client.post(GRANT_URL, json=_grant_body(), headers=ADMIN_HEADERS)
        response = await unauthenticated_client.post(
            GRANT_URL, json=_grant_body(), headers=ADMIN_HEADERS
        )

        assert response.json()["data"] == {"ok": True, "balance": 50, "idempotent": True}

    async def test_reason_is_recorded(
        self, client: AsyncClient, test_user: User  # noqa: ARG002
    ) -> None:
        await client.post(
            GRANT_URL,
            json=_grant_body(reason="goodwill"),
            headers=ADMIN_HEADERS,
        )

        entries = (await client.get("/api/v1/credits/ledger")).json()["data"]

        assert entries[0]["reason"] == "goodwill"
        assert entries[0]["source"] == "admin"

    @pytest.mark.parametrize(
        "headers",
        [{}, {"X-Admin-Key": "wrong-key"}, {"X-Admin-Key": ""}],
    )
    async def test_missing_or_wrong_key_is_401(
        self,
        unauthenticated_client: AsyncClient,
        test_user: User,  # noqa: ARG002
        headers: dict,
    ) -> None:
        response = await unauthenticated_client.post(
            GRANT_URL, json=_grant_body(), headers=headers
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "ADMIN_REQUIRED"

    async def test_user_token_is_not_an_admin_credential(
        self, client: AsyncClient, test_user: User  # noqa: ARG002
    ) -> None:
        """A valid user token without X-Admin-Key cannot grant."""
        response = await client.post(GRANT_URL, json=_grant_body())

        assert response.status_code == 401

    async def test_unset_admin_key_disables_grants(
        self, unauthenticated_client: AsyncClient, test_user: User  # noqa: ARG002
    ) -> None:
        original = settings.admin_api_key
        settings.admin_api_key = SecretStr("")
        try:
            response = await unauthenticated_client.post(
                GRANT_URL, json=_grant_body(), headers={"X-Admin-Key": ""}
            )
        finally:
            settings.admin_api_key = original

        assert response.status_code == 401

    async def test_unknown_user_is_404(self, unauthenticated_client: AsyncClient) -> None:
        body = _grant_body()
        body["user_id"] = str(uuid.uuid4())

        response = await unauthenticated_client.post(
            GRANT_URL, json=body, headers=ADMIN_HEADERS
        )

        assert response.status_code == 404

    @pytest.mark.parametrize(
        "overrides",
        [{"amount": 0}, {"amount": -5}, {"key": "short"}],
    )
    async def test_invalid_grant_is_400(
        self,
        unauthenticated_client: AsyncClient,
        test_user: User,  # noqa: ARG002
        overrides: dict,
    ) -> None:
        response = await unauthenticated_client.post(
            GRANT_URL, json=_grant_body(**overrides), headers=ADMIN_HEADERS
        )

        assert response.status_code == 400
