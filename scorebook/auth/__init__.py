"""
Scorebook Authentication Module

Provides JWT-based access token generation and validation.
"""
from scorebook.auth.tokens import (
    generate_access_code,
    create_access_token,
    validate_access_code,
    AccessCodeError,
    TokenClaims,
)
from scorebook.auth.dependencies import require_valid_token, require_user_id

__all__ = [
    "generate_access_code",
    "create_access_token",
    "validate_access_code",
    "AccessCodeError",
    "TokenClaims",
    "require_valid_token",
    "require_user_id",
]
