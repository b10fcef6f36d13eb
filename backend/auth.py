"""
Session authentication.

authenticate(credential) -> identity verifies an app-issued HS256 session
token and returns the user id it carries. Tokens are minted with
create_session_token() after the identity provider has vouched for the user.

If JWT_SECRET is not configured the service runs in development mode: every
request is served as the single "local" identity and a warning is logged.
"""
import logging
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import config
from errors import AuthFailed

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEV_IDENTITY = "local"

# auto_error=False so missing credentials reach us and surface as AuthFailed
security = HTTPBearer(auto_error=False)


def create_session_token(user_id: str, secret: str | None = None, expires_in: timedelta | None = None) -> str:
    secret = secret or config.JWT_SECRET
    if not secret:
        raise RuntimeError("JWT_SECRET environment variable not set")
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": user_id,
        "iat": now,
        "exp": now + (expires_in or timedelta(days=config.SESSION_EXPIRY_DAYS)),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def authenticate(credential: str | None, secret: str | None = None) -> str:
    """Return the user id for a session token. Raises AuthFailed."""
    secret = secret or config.JWT_SECRET
    if not credential:
        raise AuthFailed("Missing Authorization header")
    try:
        payload = jwt.decode(credential, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthFailed("Session expired")
    except jwt.InvalidTokenError:
        raise AuthFailed("Invalid session token")

    user_id = payload.get("user_id")
    if not user_id or not isinstance(user_id, str):
        raise AuthFailed("Invalid session token payload")
    return user_id


async def require_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    """FastAPI dependency resolving the caller's identity."""
    if not config.JWT_SECRET:
        logger.warning("JWT_SECRET not set, serving request as '%s' (development mode)", DEV_IDENTITY)
        return DEV_IDENTITY

    token = credentials.credentials if credentials else None
    try:
        return authenticate(token)
    except AuthFailed as e:
        logger.warning("Auth failed: %s", e.message)
        raise
