"""
Admin-side account provisioning: teacher accounts with generated credentials.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from errors import Conflict, InvalidArgument, UpstreamFailure
from identity import IdentityConflictError, IdentityProviderError, SupabaseIdentityProvider
from models import Profile, utc_now

logger = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 6
MAX_USERNAME_ATTEMPTS = 5

_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class ProvisionedTeacher:
    user_id: str
    username: str
    email: str
    password: str
    full_name: str
    employee_id: str
    department: str


def teacher_email_domain() -> str:
    return os.getenv("TEACHER_EMAIL_DOMAIN", "vit.edu.in").strip().lower()


def default_teacher_password() -> str:
    return os.getenv("DEFAULT_TEACHER_PASSWORD", "123456")


def username_base(full_name: str) -> str:
    """Lower-cased first name with everything but letters and digits removed."""
    parts = full_name.strip().split()
    first = parts[0] if parts else ""
    base = _NON_ALNUM.sub("", first.lower())
    if len(base) < MIN_USERNAME_LENGTH:
        raise InvalidArgument(
            f"First name must contain at least {MIN_USERNAME_LENGTH} letters or digits "
            "to generate a username.",
        )
    return base


def username_candidates(base: str, attempts: int = MAX_USERNAME_ATTEMPTS) -> Iterator[str]:
    yield base
    for suffix in range(1, attempts):
        yield f"{base}{suffix}"


def _email_taken(session: Session, email: str) -> bool:
    try:
        return session.exec(select(Profile).where(Profile.email == email)).first() is not None
    except SQLAlchemyError as exc:
        session.rollback()
        raise UpstreamFailure(f"Failed to check existing accounts: {exc}") from exc


def provision_teacher(
    session: Session,
    provider: SupabaseIdentityProvider,
    *,
    full_name: str | None,
    employee_id: str | None,
    department: str | None,
) -> ProvisionedTeacher:
    full_name = (full_name or "").strip()
    employee_id = (employee_id or "").strip()
    department = (department or "").strip()
    if not full_name or not employee_id or not department:
        raise InvalidArgument("All fields are required")

    base = username_base(full_name)
    password = default_teacher_password()
    domain = teacher_email_domain()
    metadata = {
        "full_name": full_name,
        "role": "teacher",
        "employee_id": employee_id,
        "department": department,
    }

    for username in username_candidates(base):
        email = f"{username}@{domain}"
        if _email_taken(session, email):
            logger.warning("Username %s already has a profile; trying the next suffix", username)
            continue

        try:
            account = provider.create_user(email, password, metadata)
        except IdentityConflictError:
            logger.warning("Username %s already exists at the identity provider; retrying", username)
            continue
        except IdentityProviderError as exc:
            raise UpstreamFailure(str(exc)) from exc

        _store_teacher_profile(session, provider, account.user_id, email, metadata)
        logger.info("Provisioned teacher %s as %s", full_name, username)
        return ProvisionedTeacher(
            user_id=account.user_id,
            username=username,
            email=email,
            password=password,
            full_name=full_name,
            employee_id=employee_id,
            department=department,
        )

    raise Conflict(
        f"Could not find a free username for {full_name} after {MAX_USERNAME_ATTEMPTS} attempts.",
    )


def _store_teacher_profile(
    session: Session,
    provider: SupabaseIdentityProvider,
    user_id: str,
    email: str,
    metadata: dict[str, str],
) -> None:
    try:
        profile = session.get(Profile, user_id) or Profile(id=user_id)
        profile.email = email
        profile.full_name = metadata["full_name"]
        profile.role = "teacher"
        profile.employee_id = metadata["employee_id"]
        profile.department = metadata["department"]
        profile.updated_at = utc_now()
        session.add(profile)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Teacher profile creation failed for %s; removing the account", user_id)
        try:
            provider.delete_user(user_id)
        except IdentityProviderError:
            logger.exception("Could not delete orphaned account %s", user_id)
        raise UpstreamFailure("Failed to create teacher profile") from exc
