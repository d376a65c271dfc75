"""
Resolve who is calling: session token → Viewer (id, role, display name).

The role comes from the `profiles` row first and falls back to the role hint
stored in the account metadata. The fallback covers accounts whose profile row
has not been written yet, and store failures during the lookup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from db import get_session
from errors import Forbidden, RedirectRequired, Unauthenticated
from middleware.auth import decide_access
from models import ROLES, Profile
from session_auth import SessionUser, get_session_user

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Viewer:
    user_id: str
    email: str | None
    role: str | None
    full_name: str | None = None

    @property
    def home(self) -> str:
        return f"/{self.role}" if self.role else "/login"


def resolve_viewer(session: Session, session_user: SessionUser) -> Viewer:
    profile: Profile | None = None
    try:
        profile = session.get(Profile, session_user.user_id)
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning(
            "Profile lookup failed for %s; falling back to metadata role: %s",
            session_user.user_id,
            exc,
        )

    raw_role = (profile.role if profile and profile.role else None) or session_user.role_hint or ""
    role = str(raw_role).strip().lower()
    if role not in ROLES:
        role = None

    full_name = (profile.full_name if profile else None) or session_user.user_metadata.get("full_name")
    email = (profile.email if profile else None) or session_user.email

    return Viewer(user_id=session_user.user_id, email=email, role=role, full_name=full_name)


def get_viewer(
    session_user: SessionUser | None = Depends(get_session_user),
    session: Session = Depends(get_session),
) -> Viewer | None:
    if session_user is None:
        return None
    return resolve_viewer(session, session_user)


def require_viewer(viewer: Viewer | None = Depends(get_viewer)) -> Viewer:
    if viewer is None:
        raise Unauthenticated("Not authenticated")
    return viewer


def require_role(*roles: str) -> Callable[..., Viewer]:
    """Dependency factory for API endpoints: 401 without a session, 403 for other roles."""
    allowed = frozenset(roles)

    def _dependency(viewer: Viewer = Depends(require_viewer)) -> Viewer:
        if viewer.role not in allowed:
            logger.warning(
                "Rejected %s (role=%s); endpoint requires %s",
                viewer.user_id,
                viewer.role,
                sorted(allowed),
            )
            raise Forbidden(f"Only {' or '.join(sorted(allowed))} accounts can do this")
        return viewer

    return _dependency


def enforce_page_access(
    request: Request,
    viewer: Viewer | None = Depends(get_viewer),
) -> Viewer | None:
    """
    Authoritative page guard. Runs on every page endpoint even when the edge
    middleware already let the request through.
    """
    role = viewer.role if viewer else None
    decision = decide_access(request.url.path, role)
    if decision.redirect_to:
        logger.info(
            "Page guard redirecting %s (role=%s) to %s",
            request.url.path,
            role,
            decision.redirect_to,
        )
        raise RedirectRequired(decision.redirect_to)
    return viewer


def require_page_viewer(viewer: Viewer | None = Depends(enforce_page_access)) -> Viewer:
    # Protected pages only pass the guard with a resolved viewer.
    if viewer is None:
        raise RedirectRequired("/login")
    return viewer


__all__ = [
    "Viewer",
    "enforce_page_access",
    "get_viewer",
    "require_page_viewer",
    "require_role",
    "require_viewer",
    "resolve_viewer",
]
