"""
Supabase session helpers: pull the access token off the request and verify it.

Browsers present the token through the Supabase session cookie, API clients
through `Authorization: Bearer <token>`. Verification is local (HS256 with the
project's JWT secret), so no round trip to Supabase happens per request.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

from fastapi import Request
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

ALGORITHMS = ["HS256"]
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "sb-access-token")

__all__ = [
    "SESSION_COOKIE_NAME",
    "SessionUser",
    "decode_session_token",
    "extract_session_token",
    "get_session_user",
]


@dataclass(frozen=True)
class SessionUser:
    user_id: str
    email: str | None = None
    user_metadata: dict[str, Any] = field(default_factory=dict)
    access_token: str | None = None

    @property
    def role_hint(self) -> str | None:
        role = self.user_metadata.get("role")
        if not role:
            return None
        return str(role).strip().lower() or None


def extract_session_token(request: Request) -> str | None:
    """Return the raw access token from the Authorization header or session cookie."""
    bearer = _extract_bearer_token(request.headers.get("authorization"))
    if bearer:
        return bearer

    cookie_value = request.cookies.get(SESSION_COOKIE_NAME)
    if cookie_value and cookie_value.strip():
        return cookie_value.strip()
    return None


def decode_session_token(token: str) -> SessionUser | None:
    """
    Verify a Supabase access token and return its user.

    Returns None for anything that is not a valid, unexpired token so callers
    can treat it exactly like a missing session.
    """
    secret = os.getenv("SUPABASE_JWT_SECRET")
    if not secret:
        logger.error("SUPABASE_JWT_SECRET is not set; every session is rejected.")
        return None

    audience = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")
    try:
        payload = jwt.decode(token, secret, algorithms=ALGORITHMS, audience=audience)
    except JWTError as exc:
        logger.info("Rejected session token: %s", exc)
        return None

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("Session token missing sub claim.")
        return None

    metadata = payload.get("user_metadata")
    return SessionUser(
        user_id=str(user_id),
        email=payload.get("email"),
        user_metadata=metadata if isinstance(metadata, dict) else {},
        access_token=token,
    )


def get_session_user(request: Request) -> SessionUser | None:
    """FastAPI dependency: the caller's session, or None when there is none."""
    token = extract_session_token(request)
    if not token:
        return None
    return decode_session_token(token)


def _extract_bearer_token(auth_header: str | None) -> str | None:
    if not auth_header:
        return None

    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
