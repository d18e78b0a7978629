"""Tests for access token helpers in credit_ledger.core.auth."""

import uuid
from datetime import UTC, datetime, timedelta

import jwt
import pytest

from credit_ledger.core.auth import (
    create_access_token,
    extract_bearer_token,
    verify_access_token,
)
from tests.conftest import TEST_AUTH_SECRET, create_test_jwt

_USER_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")


class TestCreateAndVerify:
    """Round trip through create_access_token() and verify_access_token()."""

    def test_created_token_verifies(self):
        token = create_access_token(user_id=_USER_ID, secret=TEST_AUTH_SECRET)

        claims = verify_access_token(token, TEST_AUTH_SECRET)

        assert claims is not None
        assert claims.user_id == _USER_ID
        assert claims.scope == "server"
        assert claims.issued_at > 0

    def test_scope_is_carried(self):
        token = create_test_jwt(_USER_ID)

        claims = verify_access_token(token, TEST_AUTH_SECRET)

        assert claims is not None
        assert claims.scope == "extension"


class TestVerifyRejects:
    """Every failure yields None, never an exception."""

    def test_wrong_secret(self):
        token = create_test_jwt(_USER_ID, secret="x" * 40)

        assert verify_access_token(token, TEST_AUTH_SECRET) is None

    def test_expired(self):
        token = create_test_jwt(_USER_ID, expires_delta=timedelta(seconds=-5))

        assert verify_access_token(token, TEST_AUTH_SECRET) is None

    def test_wrong_audience(self):
        token = create_test_jwt(_USER_ID, audience="some-other-service")

        assert verify_access_token(token, TEST_AUTH_SECRET) is None

    def test_garbage(self):
        assert verify_access_token("not.a.jwt", TEST_AUTH_SECRET) is None

    @pytest.mark.parametrize("missing", ["sub", "iat"])
    def test_missing_required_claim(self, missing):
        now = datetime.now(UTC)
        payload = {
            "sub": str(_USER_ID),
            "aud": "credit-ledger",
            "iss": "credit-ledger",
            "exp": now + timedelta(hours=1),
            "iat": now,
        }
        del payload[missing]
        token = jwt.encode(payload, TEST_AUTH_SECRET, algorithm="HS256")

        assert verify_access_token(token, TEST_AUTH_SECRET) is None

    def test_non_uuid_subject(self):
        now = datetime.now(UTC)
        token = jwt.encode(
            {
                "sub": "user-42",
                "aud": "credit-ledger",
                "iss": "credit-ledger",
                "exp": now + timedelta(hours=1),
                "iat": now,
            },
            TEST_AUTH_SECRET,
            algorithm="HS256",
        )

        assert verify_access_token(token, TEST_AUTH_SECRET) is None

    def test_rejects_none_algorithm(self):
        token = jwt.encode(
            {"sub": str(_USER_ID), "aud": "credit-ledger", "iss": "credit-ledger"},
            None,
            algorithm="none",
        )

        assert verify_access_token(token, TEST_AUTH_SECRET) is None


class TestExtractBearerToken:
    """extract_bearer_token() header parsing."""

    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer abc", "abc"),
            ("Bearer   abc  ", "abc"),
            ("Basic dXNlcjpwYXNz", None),
            ("Bearer", None),
            ("Bearer    ", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parsing(self, header, expected):
        assert extract_bearer_token(header) == expected
