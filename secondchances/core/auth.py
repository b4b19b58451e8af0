"""
Auth utilities for the Second Chances API.

Issues and verifies HS256 session tokens and resolves the caller of a
request into an AuthenticatedUser.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
import logging

from secondchances.core.config import settings
from secondchances.core.errors import AuthenticationError
from secondchances.models.user import AuthenticatedUser

logger = logging.getLogger("secondchances")

bearer = HTTPBearer(auto_error=False, scheme_name="bearerAuth")

_DEV_SECRET = "dev-secret-change-me"


def _jwt_secret() -> str:
    if settings.JWT_SECRET:
        return settings.JWT_SECRET
    if settings.ENV.lower() == "production":
        raise RuntimeError("JWT_SECRET must be configured in production")
    return _DEV_SECRET


def create_access_token(user_id: int, email: str, *, expires_in: Optional[timedelta] = None) -> str:
    """Sign a session token carrying the user id (``sub``) and email."""
    now = datetime.now(timezone.utc)
    exp = now + (expires_in or timedelta(hours=settings.JWT_EXPIRE_HOURS))
    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> AuthenticatedUser:
    """
    Verify a session token and extract the caller.

    Raises:
        AuthenticationError: Invalid, expired or malformed token
    """
    try:
        payload = jwt.decode(
            token,
            _jwt_secret(),
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired", code="token_expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthenticationError("Invalid token", code="invalid_token")

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid token", code="invalid_token")

    return AuthenticatedUser(user_id=user_id, email=payload.get("email", ""))


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> AuthenticatedUser:
    """
    FastAPI dependency resolving the Authorization: Bearer token.

    Raises:
        AuthenticationError 401: Missing or invalid token
    """
    if not creds or not creds.credentials:
        raise AuthenticationError("Missing Authorization (Bearer token) header")
    return decode_access_token(creds.credentials)
