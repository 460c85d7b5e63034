"""Caller identity for the search API.

Tokens are issued by the external auth service. This module only checks the
signature, expiry and token type, and turns the claims into the identity
every search operation is scoped to.
"""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_token(token: str, *, settings: Settings | None = None) -> dict:
    """Decode *token* with the shared secret.

    Raises:
        JWTError: The token is malformed, expired or signed with another key.
    """
    settings = settings or get_settings()
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


def identity_from_claims(claims: dict) -> dict | None:
    """Map access-token claims to ``{"user_id", "username"}``; None when unusable.

    ``user_id`` falls back to ``sub`` for tokens that carry no separate id.
    """
    if claims.get("type") != "access":
        return None
    username = claims.get("sub")
    user_id = claims.get("user_id", username)
    if user_id is None or str(user_id) == "":
        return None
    return {"user_id": str(user_id), "username": username}


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),  # noqa: B008
) -> dict:
    """FastAPI dependency resolving the Bearer token to the caller's identity."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized()

    try:
        claims = verify_token(credentials.credentials)
    except JWTError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise _unauthorized() from None

    identity = identity_from_claims(claims)
    if identity is None:
        raise _unauthorized()
    return identity
