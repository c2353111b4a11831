"""
Access tokens for score sync.

A token is an HS256 JWT whose ``sub`` names the user that owns the scores
and snapshot a request reads or replaces.  Nothing is stored server-side:
signature and expiry are the whole check.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from typing_extensions import Required, TypedDict

from scorebook.config import settings

TOKEN_TYPE = "access"


class AccessCodeError(Exception):
    """Raised when a token cannot be issued or does not validate."""


class TokenClaims(TypedDict, total=False):
    """Claims of a validated token.  ``sub`` is absent on anonymous tokens."""

    type: Required[str]
    iat: Required[int]
    exp: Required[int]
    sub: str


def _signing_secret() -> str:
    secret = settings.access_token_secret
    if not secret:
        raise AccessCodeError(
            "SCOREBOOK_ACCESS_TOKEN_SECRET not configured. "
            "Generate one with: openssl rand -hex 32"
        )
    return secret


def _lifetime(hours: int | None, days: int | None, minutes: int | None) -> timedelta:
    lifetime = timedelta(hours=hours or 0, days=days or 0, minutes=minutes or 0)
    if lifetime <= timedelta(0):
        raise AccessCodeError(
            "Must specify at least one of: duration_hours, duration_days, duration_minutes"
        )
    return lifetime


def generate_access_code(
    user_id: str | None = None,
    duration_hours: int | None = None,
    duration_days: int | None = None,
    duration_minutes: int | None = None,
) -> str:
    """
    Issue a signed token valid for the sum of the given durations.

    Args:
        user_id: Owner of the scores the token may sync; omitted for an
            anonymous token, which the sync routes reject.
        duration_hours / duration_days / duration_minutes: Added together.

    Raises:
        AccessCodeError: No positive duration, or no signing secret.
    """
    secret = _signing_secret()
    issued = datetime.now(timezone.utc)
    expires = issued + _lifetime(duration_hours, duration_days, duration_minutes)

    claims: dict[str, object] = {
        "type": TOKEN_TYPE,
        "iat": int(issued.timestamp()),
        "exp": int(expires.timestamp()),
    }
    if user_id:
        claims["sub"] = user_id
    return jwt.encode(claims, secret, algorithm=settings.access_token_algorithm)


def create_access_token(
    user_id: str | None = None,
    expires_hours: int | None = None,
    expires_days: int | None = None,
) -> str:
    return generate_access_code(
        user_id=user_id,
        duration_hours=expires_hours,
        duration_days=expires_days,
    )


def validate_access_code(token: str) -> TokenClaims:
    """
    Verify *token* and return its claims.

    Raises:
        AccessCodeError: Bad signature, expired, wrong ``type``, or claims of
            the wrong shape.
    """
    try:
        payload = jwt.decode(
            token,
            _signing_secret(),
            algorithms=[settings.access_token_algorithm],
        )
    except jwt.ExpiredSignatureError:
        raise AccessCodeError("Access code has expired")
    except jwt.InvalidTokenError as e:
        raise AccessCodeError(f"Invalid access code: {e}")

    if payload.get("type") != TOKEN_TYPE:
        raise AccessCodeError("Invalid token type")

    iat, exp = payload.get("iat"), payload.get("exp")
    if not isinstance(iat, int) or not isinstance(exp, int):
        raise AccessCodeError("Malformed token: iat/exp must be integers")
    claims = TokenClaims(type=TOKEN_TYPE, iat=iat, exp=exp)

    sub = payload.get("sub")
    if sub is not None:
        if not isinstance(sub, str):
            raise AccessCodeError("Malformed token: sub must be a string")
        claims["sub"] = sub
    return claims
