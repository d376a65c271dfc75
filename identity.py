"""
Supabase Auth helper for the identity-provider side of the app.

Wraps sign-in/sign-up/sign-out for end users (anon key) and the admin user
management calls used by teacher provisioning and admin seeding (service role
key). Exposes a cached accessor the routes depend on, so tests can swap in a
fake provider through FastAPI's dependency overrides.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from supabase import Client, ClientOptions, create_client

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CONFLICT_CODES = {"email_exists", "user_already_exists", "phone_exists"}


class IdentityProviderError(RuntimeError):
    """Base error for identity provider failures."""


class IdentityConfigError(IdentityProviderError):
    """Raised when Supabase Auth is not configured."""


class IdentityTimeoutError(IdentityProviderError):
    """Raised when an auth call does not answer within the configured timeout."""


class IdentityConflictError(IdentityProviderError):
    """Raised when an account with the same email already exists."""


class InvalidCredentialsError(IdentityProviderError):
    """Raised when sign-in is refused."""


@dataclass(slots=True)
class AuthUser:
    user_id: str
    email: str | None
    user_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AuthSession:
    access_token: str
    refresh_token: str | None
    user: AuthUser


class SupabaseIdentityProvider:
    """
    Thin wrapper around Supabase Auth.

    User-facing calls run on a client built with the anon key; admin calls use
    a separate service-role client that never persists or refreshes sessions.
    """

    def __init__(
        self,
        *,
        url: str,
        anon_key: str,
        service_role_key: str,
        timeout: float = 5.0,
    ) -> None:
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.service_role_key = service_role_key
        self.timeout = timeout

        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="supabase-auth")
        self._admin_client: Client | None = None

    @classmethod
    def from_env(cls) -> SupabaseIdentityProvider:
        return cls(
            url=os.getenv("SUPABASE_URL", ""),
            anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
            service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
            timeout=float(os.getenv("SUPABASE_AUTH_TIMEOUT", "5")),
        )

    # ------------------------------------------------------------------ utils
    def _require_url(self) -> None:
        if not self.url:
            raise IdentityConfigError("SUPABASE_URL is required to reach Supabase Auth.")

    def _user_client(self) -> Client:
        self._require_url()
        if not self.anon_key:
            raise IdentityConfigError("SUPABASE_ANON_KEY is required to reach Supabase Auth.")
        # A fresh client per call keeps one user's session out of another's.
        return create_client(
            self.url,
            self.anon_key,
            options=ClientOptions(auto_refresh_token=False, persist_session=False),
        )

    def _get_admin_client(self) -> Client:
        self._require_url()
        if not self.service_role_key:
            raise IdentityConfigError(
                "SUPABASE_SERVICE_ROLE_KEY is required for account administration.",
            )
        if self._admin_client is None:
            logger.info("Initializing Supabase admin client for auth management.")
            self._admin_client = create_client(
                self.url,
                self.service_role_key,
                options=ClientOptions(auto_refresh_token=False, persist_session=False),
            )
        return self._admin_client

    def close(self) -> None:
        """Stop the worker pool; calls still blocked on a timed-out request are abandoned."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _with_timeout(self, call: Callable[[], T]) -> T:
        future = self._executor.submit(call)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as exc:
            future.cancel()
            raise IdentityTimeoutError(
                f"Request timed out after {self.timeout:g}s",
            ) from exc

    # ------------------------------------------------------------------ users
    def sign_in(self, email: str, password: str) -> AuthSession:
        client = self._user_client()
        try:
            result = self._with_timeout(
                lambda: client.auth.sign_in_with_password({"email": email, "password": password}),
            )
        except IdentityProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise InvalidCredentialsError(_error_message(exc, "Invalid login credentials")) from exc

        session = getattr(result, "session", None)
        user = getattr(result, "user", None)
        if session is None or user is None:
            raise InvalidCredentialsError("Invalid login credentials")

        return AuthSession(
            access_token=session.access_token,
            refresh_token=getattr(session, "refresh_token", None),
            user=_to_auth_user(user),
        )

    def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> AuthUser:
        client = self._user_client()
        try:
            result = self._with_timeout(
                lambda: client.auth.sign_up(
                    {"email": email, "password": password, "options": {"data": metadata}},
                ),
            )
        except IdentityProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise _classify(exc, "Unable to create account.") from exc

        user = getattr(result, "user", None)
        if user is None:
            raise IdentityProviderError("Supabase did not return the new account.")
        return _to_auth_user(user)

    def sign_out(self, access_token: str) -> None:
        """Revoke every session belonging to the token's user."""
        admin = self._get_admin_client()
        try:
            admin.auth.admin.sign_out(access_token)
        except Exception as exc:  # noqa: BLE001
            raise IdentityProviderError(_error_message(exc, "Sign-out failed.")) from exc

    # ------------------------------------------------------------------ admin
    def create_user(self, email: str, password: str, metadata: dict[str, Any]) -> AuthUser:
        admin = self._get_admin_client()
        try:
            result = admin.auth.admin.create_user(
                {
                    "email": email,
                    "password": password,
                    "user_metadata": metadata,
                    "email_confirm": True,
                },
            )
        except Exception as exc:  # noqa: BLE001
            raise _classify(exc, "Unable to create account.") from exc

        return _to_auth_user(result.user)

    def update_user(self, user_id: str, attributes: dict[str, Any]) -> AuthUser:
        admin = self._get_admin_client()
        try:
            result = admin.auth.admin.update_user_by_id(user_id, attributes)
        except Exception as exc:  # noqa: BLE001
            raise _classify(exc, "Unable to update account.") from exc
        return _to_auth_user(result.user)

    def delete_user(self, user_id: str) -> None:
        admin = self._get_admin_client()
        try:
            admin.auth.admin.delete_user(user_id)
        except Exception as exc:  # noqa: BLE001
            raise IdentityProviderError(_error_message(exc, "Unable to delete account.")) from exc

    def list_users(self, per_page: int = 1000) -> list[AuthUser]:
        admin = self._get_admin_client()
        try:
            users = admin.auth.admin.list_users(page=1, per_page=per_page)
        except Exception as exc:  # noqa: BLE001
            raise IdentityProviderError(_error_message(exc, "Unable to list accounts.")) from exc
        return [_to_auth_user(user) for user in users or []]


# ---------------------------------------------------------------- helpers
def _to_auth_user(user: Any) -> AuthUser:
    metadata = getattr(user, "user_metadata", None)
    return AuthUser(
        user_id=str(user.id),
        email=getattr(user, "email", None),
        user_metadata=dict(metadata) if isinstance(metadata, dict) else {},
    )


def _error_message(exc: Exception, default: str) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message or default


def _classify(exc: Exception, default: str) -> IdentityProviderError:
    message = _error_message(exc, default)
    code = getattr(exc, "code", None)
    if code in _CONFLICT_CODES or "already" in message.lower():
        return IdentityConflictError(message)
    return IdentityProviderError(message)


_CACHED_PROVIDER: SupabaseIdentityProvider | None = None


def get_identity_provider() -> SupabaseIdentityProvider:
    global _CACHED_PROVIDER
    if _CACHED_PROVIDER is None:
        _CACHED_PROVIDER = SupabaseIdentityProvider.from_env()
    return _CACHED_PROVIDER


def close_identity_provider() -> None:
    global _CACHED_PROVIDER
    if _CACHED_PROVIDER is not None:
        _CACHED_PROVIDER.close()
        _CACHED_PROVIDER = None
