"""Tests for access token generation/validation and the user-scoped dependency."""
from __future__ import annotations

from unittest.mock import patch

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from scorebook.auth.dependencies import require_user_id, require_valid_token
from scorebook.auth.tokens import (
    AccessCodeError,
    create_access_token,
    generate_access_code,
    validate_access_code,
)
from scorebook.config import settings

from factories import TEST_USER_ID


class TestAccessCodes:

    def test_round_trip_carries_user_id(self) -> None:
        token = create_access_token(user_id=TEST_USER_ID, expires_hours=1)
        claims = validate_access_code(token)
        assert claims["type"] == "access"
        assert claims["sub"] == TEST_USER_ID
        assert claims["exp"] > claims["iat"]

    def test_anonymous_token_has_no_sub(self) -> None:
        claims = validate_access_code(generate_access_code(duration_minutes=5))
        assert "sub" not in claims

    def test_duration_is_required(self) -> None:
        with pytest.raises(AccessCodeError, match="Must specify"):
            generate_access_code(user_id=TEST_USER_ID)

    def test_missing_secret_raises(self) -> None:
        with patch("scorebook.auth.tokens.settings") as mock_settings:
            mock_settings.access_token_secret = None
            with pytest.raises(AccessCodeError, match="not configured"):
                generate_access_code(duration_hours=1)

    def test_expired_token_rejected(self) -> None:
        token = jwt.encode(
            {"type": "access", "iat": 1, "exp": 2, "sub": TEST_USER_ID},
            settings.access_token_secret,
            algorithm="HS256",
        )
        with pytest.raises(AccessCodeError, match="expired"):
            validate_access_code(token)

    def test_wrong_type_rejected(self) -> None:
        token = jwt.encode(
            {"type": "refresh", "iat": 1, "exp": 4102444800},
            settings.access_token_secret,
            algorithm="HS256",
        )
        with pytest.raises(AccessCodeError, match="Invalid token type"):
            validate_access_code(token)

    def test_bad_signature_rejected(self) -> None:
        token = jwt.encode(
            {"type": "access", "iat": 1, "exp": 4102444800},
            "some-other-secret-that-is-long-enough-for-hs256",
            algorithm="HS256",
        )
        with pytest.raises(AccessCodeError, match="Invalid access code"):
            validate_access_code(token)


class TestDependencies:

    @pytest.mark.asyncio
    async def test_missing_credentials_is_401(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await require_valid_token(None)
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_credentials_is_401(self) -> None:
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials="not-a-jwt")
        with pytest.raises(HTTPException) as exc_info:
            await require_valid_token(creds)
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_user_id_from_claims(self) -> None:
        claims = validate_access_code(create_access_token(user_id=TEST_USER_ID, expires_hours=1))
        assert await require_user_id(claims) == TEST_USER_ID

    @pytest.mark.asyncio
    async def test_anonymous_token_cannot_own_scores(self) -> None:
        claims = validate_access_code(generate_access_code(duration_hours=1))
        with pytest.raises(HTTPException) as exc_info:
            await require_user_id(claims)
        assert exc_info.value.status_code == 401
