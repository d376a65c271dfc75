import os
import time
import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlmodel import Session, SQLModel

TEST_DB_PATH = Path(__file__).resolve().parent / "test_feedback.db"
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()

JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"

os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["SUPABASE_JWT_SECRET"] = JWT_SECRET
os.environ.pop("SUPABASE_JWT_AUDIENCE", None)
os.environ.pop("TEACHER_EMAIL_DOMAIN", None)
os.environ.pop("DEFAULT_TEACHER_PASSWORD", None)

from db import engine  # noqa: E402
from identity import (  # noqa: E402
    AuthSession,
    AuthUser,
    IdentityConflictError,
    InvalidCredentialsError,
    get_identity_provider,
)
from main import app  # noqa: E402
from models import Course, CourseAssignment, Profile  # noqa: E402


def make_token(user_id, *, role=None, email=None, expires_in=3600, secret=JWT_SECRET, metadata=None):
    claims = {
        "sub": user_id,
        "email": email or f"{user_id}@example.edu",
        "aud": "authenticated",
        "role": "authenticated",
        "user_metadata": dict(metadata or {}),
        "exp": int(time.time()) + expires_in,
    }
    if role is not None:
        claims["user_metadata"]["role"] = role
    return jwt.encode(claims, secret, algorithm="HS256")


class FakeIdentityProvider:
    """In-memory stand-in for Supabase Auth."""

    def __init__(self):
        self.users = {}
        self.passwords = {}
        self.signed_out = []
        self.deleted = []
        self.reserved_emails = set()

    def add_user(self, email, password, metadata=None, user_id=None):
        user = AuthUser(user_id=user_id or str(uuid.uuid4()), email=email, user_metadata=dict(metadata or {}))
        self.users[user.user_id] = user
        self.passwords[user.user_id] = password
        return user

    def _by_email(self, email):
        for user in self.users.values():
            if user.email == email:
                return user
        return None

    def sign_in(self, email, password):
        user = self._by_email(email)
        if user is None or self.passwords[user.user_id] != password:
            raise InvalidCredentialsError("Invalid login credentials")
        token = make_token(user.user_id, email=email, metadata=user.user_metadata)
        return AuthSession(access_token=token, refresh_token="refresh", user=user)

    def sign_up(self, email, password, metadata):
        if self._by_email(email) or email in self.reserved_emails:
            raise IdentityConflictError("User already registered")
        return self.add_user(email, password, metadata)

    def sign_out(self, access_token):
        self.signed_out.append(access_token)

    def create_user(self, email, password, metadata):
        if self._by_email(email) or email in self.reserved_emails:
            raise IdentityConflictError("A user with this email address has already been registered")
        return self.add_user(email, password, metadata)

    def update_user(self, user_id, attributes):
        user = self.users[user_id]
        if "user_metadata" in attributes:
            user.user_metadata = dict(attributes["user_metadata"])
        if "password" in attributes:
            self.passwords[user_id] = attributes["password"]
        return user

    def delete_user(self, user_id):
        self.deleted.append(user_id)
        self.users.pop(user_id, None)

    def list_users(self, per_page=1000):
        return list(self.users.values())


@pytest.fixture(autouse=True)
def reset_database():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield


@pytest.fixture(scope="session", autouse=True)
def cleanup_db_file():
    yield
    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()


@pytest.fixture
def identity_provider():
    provider = FakeIdentityProvider()
    app.dependency_overrides[get_identity_provider] = lambda: provider
    yield provider
    app.dependency_overrides.pop(get_identity_provider, None)


@pytest.fixture
def client(reset_database, identity_provider):
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client


@pytest.fixture
def session():
    with Session(engine) as db_session:
        yield db_session


@pytest.fixture
def make_profile(session):
    def _make(role, *, full_name=None, user_id=None, email=None, **fields):
        profile = Profile(
            id=user_id or str(uuid.uuid4()),
            email=email,
            full_name=full_name or f"Test {role.title()}",
            role=role,
            **fields,
        )
        session.add(profile)
        session.commit()
        session.refresh(profile)
        return profile

    return _make


@pytest.fixture
def make_course(session):
    def _make(code, name=None, *, teacher_id=None, department="Computer Engineering"):
        course = Course(course_code=code, course_name=name or f"{code} Course", department=department, year=2, semester=1)
        session.add(course)
        session.commit()
        session.refresh(course)
        if teacher_id:
            session.add(CourseAssignment(course_id=course.id, teacher_id=teacher_id))
            session.commit()
        return course

    return _make


@pytest.fixture
def auth_headers():
    def _headers(profile_or_id, role=None, *, expires_in=3600):
        if isinstance(profile_or_id, Profile):
            user_id, role = profile_or_id.id, role or profile_or_id.role
        else:
            user_id = profile_or_id
        return {"Authorization": f"Bearer {make_token(user_id, role=role, expires_in=expires_in)}"}

    return _headers


@pytest.fixture
def token_for():
    return make_token
