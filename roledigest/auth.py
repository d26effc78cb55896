"""JWT verification dependency for Supabase-issued tokens."""

from __future__ import annotations

import logging
from typing import Any

import jwt
from fastapi import Depends, Header, HTTPException, status

from roledigest.config import get_settings
from roledigest.repositories.base import DigestRepository, UserRecord
from roledigest.repositories.factory import get_repository

logger = logging.getLogger(__name__)


def decode_token(authorization: str, secret: str) -> dict[str, Any]:
    """Verify a ``Bearer`` header and return the token claims.

    Raises:
        HTTPException: 401 on a malformed header, expired or invalid token.
    """
    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
        )

    token = authorization.removeprefix("Bearer ")
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience="authenticated",
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )


async def get_current_user(
    authorization: str = Header(...),
    repo: DigestRepository = Depends(get_repository),
) -> UserRecord:
    """Resolve the signed-in user from the Authorization header.

    Decodes the JWT, reads the email claim and upserts the user by email.

    Args:
        authorization: Bearer token from the Authorization header.
        repo: Storage backend.

    Returns:
        The stored user record.

    Raises:
        HTTPException: 500 when no JWT secret is configured, 401 on an
            invalid, expired or incomplete token.
    """
    settings = get_settings()

    if not settings.supabase_jwt_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="SUPABASE_JWT_SECRET not configured",
        )

    payload = decode_token(authorization, settings.supabase_jwt_secret)
    email: str | None = payload.get("email")
    if not email:
        logger.warning("Rejected token without email claim (sub=%s)", payload.get("sub"))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing email claim",
        )

    metadata = payload.get("user_metadata") or {}
    display_name = metadata.get("full_name") or metadata.get("name")
    return repo.upsert_user(email, display_name=display_name)
