"""
Session token handling.

The session is an HS256 JWT whose `sub` is the user id. It is read from the
session cookie first, then from an `Authorization: Bearer` header.

resolve_user_id() never raises: an absent, malformed, expired or
wrongly-signed token all resolve to None. Deciding whether "no identity"
is fatal belongs to the caller (the gateway forwards, the procedure
identity guard rejects).
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import jwt
from starlette.requests import HTTPConnection

from equiprofile.utils.clock import utcnow

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "app_session_id"
SESSION_TOKEN_ALGORITHM = "HS256"
SESSION_TOKEN_TTL = timedelta(days=30)


def issue_session_token(
    user_id: str,
    secret: str,
    now: Optional[datetime] = None,
    ttl: timedelta = SESSION_TOKEN_TTL,
) -> str:
    """Sign a session token for user_id."""
    if not secret:
        raise ValueError("JWT secret is required to issue session tokens")
    issued_at = now or utcnow()
    payload = {
        "sub": str(user_id),
        "iat": issued_at,
        "exp": issued_at + ttl,
    }
    return jwt.encode(payload, secret, algorithm=SESSION_TOKEN_ALGORITHM)


def extract_session_token(request: HTTPConnection) -> Optional[str]:
    """Raw token from cookie or bearer header, if present."""
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        return token

    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def resolve_user_id(request: HTTPConnection, secret: str) -> Optional[str]:
    """
    User id carried by the request's session token.

    Returns:
        The token subject, or None when there is no valid session.
    """
    token = extract_session_token(request)
    if not token or not secret:
        return None

    try:
        payload = jwt.decode(token, secret, algorithms=[SESSION_TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("Session token expired", extra={"path": request.url.path})
        return None
    except jwt.PyJWTError as e:
        logger.debug(
            "Invalid session token",
            extra={"path": request.url.path, "error": type(e).__name__},
        )
        return None

    subject = payload.get("sub")
    return str(subject) if subject else None
