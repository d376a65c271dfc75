# seed_admin.py
# Make sure the institution's admin account exists with a matching profile row.

import os

from dotenv import load_dotenv
from sqlmodel import Session

from identity import AuthUser, IdentityProviderError, SupabaseIdentityProvider
from models import Profile, utc_now

load_dotenv()


def _find_admin(provider: SupabaseIdentityProvider, email: str) -> AuthUser | None:
    users = provider.list_users()
    for user in users:
        if (user.email or "").lower() == email:
            return user
    for user in users:
        if str(user.user_metadata.get("role", "")).lower() == "admin":
            return user
    return None


def seed_admin() -> None:
    from db import create_db_and_tables, engine

    email = os.getenv("ADMIN_EMAIL", "").strip().lower()
    password = os.getenv("ADMIN_PASSWORD", "")
    if not email or not password:
        raise SystemExit("⚠️ ADMIN_EMAIL and ADMIN_PASSWORD must be set.")

    metadata = {
        "full_name": os.getenv("ADMIN_FULL_NAME", "System Administrator"),
        "role": "admin",
        "employee_id": os.getenv("ADMIN_EMPLOYEE_ID", "ADMIN001"),
        "department": os.getenv("ADMIN_DEPARTMENT", "Administration"),
    }

    provider = SupabaseIdentityProvider.from_env()
    try:
        existing = _find_admin(provider, email)
        if existing:
            account = provider.update_user(
                existing.user_id,
                {"email": email, "password": password, "user_metadata": metadata},
            )
            print(f"ℹ️  Updated existing admin account {account.user_id}.")
        else:
            account = provider.create_user(email, password, metadata)
            print(f"✅ Created admin account {account.user_id}.")
    except IdentityProviderError as exc:
        print(f"⚠️ Admin seeding failed: {exc}")
        raise
    finally:
        provider.close()

    create_db_and_tables()
    with Session(engine) as session:
        profile = session.get(Profile, account.user_id) or Profile(id=account.user_id)
        profile.email = email
        profile.full_name = metadata["full_name"]
        profile.role = "admin"
        profile.employee_id = metadata["employee_id"]
        profile.department = metadata["department"]
        profile.updated_at = utc_now()
        session.add(profile)
        session.commit()
    print(f"✅ Admin profile ready for {email}.")


if __name__ == "__main__":
    seed_admin()
