"""
Role-based access rules for page paths, plus the edge middleware that applies
the cheap half of them before any handler runs.

The edge check only looks at the decoded token: protected paths need a
session, and signed-in users are bounced off the login pages. The page
dependency in `security.enforce_page_access` re-applies the full table with
the role read from the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import RedirectResponse

from models import ROLES
from session_auth import decode_session_token, extract_session_token

logger = logging.getLogger(__name__)

AUTH_PAGES: tuple[str, ...] = ("/login", "/admin-login")

PROTECTED_PREFIXES: dict[str, frozenset[str]] = {
    "/admin": frozenset({"admin"}),
    "/teacher": frozenset({"teacher"}),
    "/student": frozenset({"student"}),
    "/feedback": frozenset({"student"}),
    "/analytics": frozenset({"teacher", "admin"}),
    "/profile": frozenset(ROLES),
    "/reviews": frozenset(ROLES),
}

__all__ = [
    "AUTH_PAGES",
    "PROTECTED_PREFIXES",
    "AccessDecision",
    "decide_access",
    "role_guard_middleware",
]


@dataclass(frozen=True)
class AccessDecision:
    redirect_to: str | None = None

    @property
    def allowed(self) -> bool:
        return self.redirect_to is None


ALLOW = AccessDecision()


def _matches(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def _auth_page(path: str) -> str | None:
    for prefix in AUTH_PAGES:
        if _matches(path, prefix):
            return prefix
    return None


def _protected_prefix(path: str) -> str | None:
    for prefix in PROTECTED_PREFIXES:
        if _matches(path, prefix):
            return prefix
    return None


def decide_access(path: str, role: str | None) -> AccessDecision:
    """
    Decide allow / redirect for a page path.

    `role` is None both when there is no session and when the session's role
    could not be determined; the two are treated alike.
    """
    if _auth_page(path):
        if role:
            return AccessDecision(redirect_to=f"/{role}")
        return ALLOW

    prefix = _protected_prefix(path)
    if prefix is None:
        return ALLOW

    if not role:
        return AccessDecision(redirect_to="/login")

    if role not in PROTECTED_PREFIXES[prefix]:
        if prefix == "/admin":
            return AccessDecision(redirect_to="/admin-login")
        return AccessDecision(redirect_to=f"/{role}")

    return ALLOW


async def role_guard_middleware(request: Request, call_next):
    path = request.url.path
    if path.startswith("/api/"):
        return await call_next(request)

    is_auth_page = _auth_page(path) is not None
    is_protected = _protected_prefix(path) is not None
    if not (is_auth_page or is_protected):
        return await call_next(request)

    token = extract_session_token(request)
    session_user = decode_session_token(token) if token else None

    # Without a known role the page guard decides; it lets the auth pages render.
    if is_auth_page and session_user is not None and session_user.role_hint in ROLES:
        return RedirectResponse(f"/{session_user.role_hint}", status_code=307)

    if is_protected and session_user is None:
        logger.debug("Edge guard: no session for %s", path)
        return RedirectResponse("/login", status_code=307)

    return await call_next(request)
