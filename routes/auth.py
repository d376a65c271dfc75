# routes/auth.py
# ==========================================================
# Login pages and thin wrappers over Supabase Auth:
# sign-in, admin sign-in, sign-up and sign-out.
# ==========================================================

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session

from db import get_session
from errors import Conflict, Forbidden, InvalidArgument, Unauthenticated, UpstreamFailure, UpstreamTimeout
from identity import (
    AuthSession,
    IdentityConflictError,
    IdentityProviderError,
    IdentityTimeoutError,
    InvalidCredentialsError,
    SupabaseIdentityProvider,
    get_identity_provider,
)
from schemas import SignInOut, SignInPayload, SignUpPayload, ViewerOut
from security import Viewer, enforce_page_access, resolve_viewer
from session_auth import SESSION_COOKIE_NAME, SessionUser, extract_session_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

SIGN_UP_ROLES = {"student", "teacher"}
MIN_PASSWORD_LENGTH = 6


@contextmanager
def identity_errors() -> Iterator[None]:
    """Translate identity provider failures into API errors."""
    try:
        yield
    except InvalidCredentialsError as exc:
        raise Unauthenticated("Invalid login credentials") from exc
    except IdentityTimeoutError as exc:
        raise UpstreamTimeout(str(exc)) from exc
    except IdentityConflictError as exc:
        raise Conflict(str(exc)) from exc
    except IdentityProviderError as exc:
        raise UpstreamFailure(str(exc)) from exc


# ----------------------------------------------------------
# Pages
# ----------------------------------------------------------
@router.get("/login")
def login_page(viewer: Viewer | None = Depends(enforce_page_access)):
    return {"page": "login"}


@router.get("/admin-login")
def admin_login_page(viewer: Viewer | None = Depends(enforce_page_access)):
    return {"page": "admin-login"}


# ----------------------------------------------------------
# Session endpoints
# ----------------------------------------------------------
def _session_response(request: Request, auth: AuthSession, viewer: Viewer) -> JSONResponse:
    body = SignInOut(
        user=ViewerOut(
            id=viewer.user_id,
            email=viewer.email,
            role=viewer.role,
            full_name=viewer.full_name,
        ),
        access_token=auth.access_token,
        redirect_to=viewer.home,
    )
    response = JSONResponse(body.model_dump())
    response.set_cookie(
        SESSION_COOKIE_NAME,
        auth.access_token,
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
    )
    return response


def _sign_in(
    payload: SignInPayload,
    session: Session,
    provider: SupabaseIdentityProvider,
) -> tuple[AuthSession, Viewer]:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise InvalidArgument("Email and password are required.")

    with identity_errors():
        auth = provider.sign_in(email, payload.password)

    session_user = SessionUser(
        user_id=auth.user.user_id,
        email=auth.user.email,
        user_metadata=auth.user.user_metadata,
        access_token=auth.access_token,
    )
    return auth, resolve_viewer(session, session_user)


@router.post("/api/auth/login", response_model=SignInOut)
def sign_in(
    payload: SignInPayload,
    request: Request,
    session: Session = Depends(get_session),
    provider: SupabaseIdentityProvider = Depends(get_identity_provider),
):
    auth, viewer = _sign_in(payload, session, provider)
    logger.info("Signed in %s (role=%s)", viewer.user_id, viewer.role)
    return _session_response(request, auth, viewer)


@router.post("/api/auth/admin-login", response_model=SignInOut)
def admin_sign_in(
    payload: SignInPayload,
    request: Request,
    session: Session = Depends(get_session),
    provider: SupabaseIdentityProvider = Depends(get_identity_provider),
):
    auth, viewer = _sign_in(payload, session, provider)
    if viewer.role != "admin":
        logger.warning("Non-admin %s attempted admin sign-in", viewer.user_id)
        try:
            provider.sign_out(auth.access_token)
        except IdentityProviderError as exc:
            logger.error("Could not revoke the session of non-admin %s: %s", viewer.user_id, exc)
        raise Forbidden("This account does not have admin access.")
    return _session_response(request, auth, viewer)


@router.post("/api/auth/signup", status_code=201)
def sign_up(
    payload: SignUpPayload,
    provider: SupabaseIdentityProvider = Depends(get_identity_provider),
):
    email = payload.email.strip().lower()
    role = payload.role.strip().lower()
    full_name = payload.full_name.strip()

    if not email or not full_name:
        raise InvalidArgument("Email and full name are required.")
    if role not in SIGN_UP_ROLES:
        raise InvalidArgument("Role must be student or teacher.")
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise InvalidArgument(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")

    metadata = {
        "role": role,
        "full_name": full_name,
        "department": payload.department,
        "enrollment_number": payload.enrollment_number,
        "employee_id": payload.employee_id,
        "year": payload.year,
    }
    metadata = {key: value for key, value in metadata.items() if value not in (None, "")}

    with identity_errors():
        user = provider.sign_up(email, payload.password, metadata)

    logger.info("Created %s account %s", role, user.user_id)
    return {
        "message": "Account created. Check your inbox to confirm your email.",
        "user": {"id": user.user_id, "email": user.email, "role": role},
    }


@router.post("/api/auth/logout")
def sign_out(
    request: Request,
    provider: SupabaseIdentityProvider = Depends(get_identity_provider),
):
    token = extract_session_token(request)
    if token:
        with identity_errors():
            provider.sign_out(token)

    response = JSONResponse({"success": True})
    response.delete_cookie(SESSION_COOKIE_NAME)
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    return response
