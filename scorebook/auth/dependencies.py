"""
FastAPI Authentication Dependencies

Every score and sync endpoint is scoped to the user named by the bearer
token's ``sub`` claim.
"""
from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from scorebook.auth.tokens import AccessCodeError, TokenClaims, validate_access_code

logger = logging.getLogger(__name__)

# auto_error=False so a missing header gets our 401 instead of FastAPI's 403
security = HTTPBearer(auto_error=False)


async def require_valid_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> TokenClaims:
    """
    FastAPI dependency that validates access tokens.

    Raises:
        HTTPException 401: If token is missing, invalid, or expired
    """
    if credentials is None:
        logger.warning("Access attempt without token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access code required. Please provide a valid access code.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = validate_access_code(credentials.credentials)
    except AccessCodeError as e:
        logger.warning("Invalid token: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired access code.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.debug("Valid token, expires at %s", claims["exp"])
    return claims


async def require_user_id(
    claims: TokenClaims = Depends(require_valid_token),
) -> str:
    """Return the token's user ID; anonymous tokens cannot own scores."""
    user_id = claims.get("sub")
    if not user_id:
        logger.warning("Token without user ID used on a user-scoped endpoint")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access code is not bound to a user.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
