from identity import IdentityProviderError
from session_auth import SESSION_COOKIE_NAME


def test_login_sets_session_cookie_and_redirect(client, identity_provider, make_profile):
    account = identity_provider.add_user("riya@example.edu", "secret1", {"role": "student"})
    make_profile("student", user_id=account.user_id, email="riya@example.edu", full_name="Riya Sharma")

    resp = client.post("/api/auth/login", json={"email": "Riya@Example.edu ", "password": "secret1"})
    assert resp.status_code == 200
    body = resp.json()

    assert body["user"] == {
        "id": account.user_id,
        "email": "riya@example.edu",
        "role": "student",
        "full_name": "Riya Sharma",
    }
    assert body["redirect_to"] == "/student"
    assert resp.cookies.get(SESSION_COOKIE_NAME) == body["access_token"]

    # The cookie alone now opens the student pages.
    assert client.get("/student").status_code == 200


def test_login_with_wrong_password_is_unauthenticated(client, identity_provider):
    identity_provider.add_user("riya@example.edu", "secret1")
    resp = client.post("/api/auth/login", json={"email": "riya@example.edu", "password": "nope"})

    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid login credentials"}


def test_login_requires_both_fields(client):
    resp = client.post("/api/auth/login", json={"email": "", "password": ""})
    assert resp.status_code == 400


def test_admin_login_rejects_non_admins(client, identity_provider, make_profile):
    account = identity_provider.add_user("teach@example.edu", "secret1", {"role": "teacher"})
    make_profile("teacher", user_id=account.user_id)

    resp = client.post("/api/auth/admin-login", json={"email": "teach@example.edu", "password": "secret1"})
    assert resp.status_code == 403
    assert len(identity_provider.signed_out) == 1


def test_admin_login_stays_forbidden_when_revoke_fails(client, identity_provider, make_profile, monkeypatch):
    account = identity_provider.add_user("teach@example.edu", "secret1", {"role": "teacher"})
    make_profile("teacher", user_id=account.user_id)

    def fail_sign_out(access_token):
        raise IdentityProviderError("Auth service unavailable")

    monkeypatch.setattr(identity_provider, "sign_out", fail_sign_out)

    resp = client.post("/api/auth/admin-login", json={"email": "teach@example.edu", "password": "secret1"})
    assert resp.status_code == 403
    assert SESSION_COOKIE_NAME not in resp.cookies


def test_admin_login_accepts_admins(client, identity_provider, make_profile):
    account = identity_provider.add_user("dean@example.edu", "secret1", {"role": "admin"})
    make_profile("admin", user_id=account.user_id)

    resp = client.post("/api/auth/admin-login", json={"email": "dean@example.edu", "password": "secret1"})
    assert resp.status_code == 200
    assert resp.json()["redirect_to"] == "/admin"


def test_signup_stores_role_metadata(client, identity_provider):
    resp = client.post(
        "/api/auth/signup",
        json={
            "email": "new@example.edu",
            "password": "secret1",
            "role": "teacher",
            "full_name": "New Teacher",
            "department": "Physics",
            "employee_id": "",
        },
    )
    assert resp.status_code == 201

    account = identity_provider.users[resp.json()["user"]["id"]]
    assert account.user_metadata == {"role": "teacher", "full_name": "New Teacher", "department": "Physics"}


def test_signup_refuses_admin_role(client):
    resp = client.post(
        "/api/auth/signup",
        json={"email": "x@example.edu", "password": "secret1", "role": "admin", "full_name": "X"},
    )
    assert resp.status_code == 400


def test_signup_short_password(client):
    resp = client.post(
        "/api/auth/signup",
        json={"email": "x@example.edu", "password": "123", "full_name": "X"},
    )
    assert resp.status_code == 400


def test_signup_duplicate_email_is_conflict(client, identity_provider):
    identity_provider.add_user("x@example.edu", "secret1")
    resp = client.post(
        "/api/auth/signup",
        json={"email": "x@example.edu", "password": "secret1", "full_name": "X"},
    )
    assert resp.status_code == 409


def test_signup_missing_fields_is_invalid(client):
    resp = client.post("/api/auth/signup", json={"email": "x@example.edu"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid request payload."}


def test_logout_revokes_token_and_clears_cookie(client, identity_provider, auth_headers):
    headers = auth_headers("user-1", role="student")
    resp = client.post("/api/auth/logout", headers=headers)

    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert resp.headers["cache-control"].startswith("no-store")
    assert identity_provider.signed_out == [headers["Authorization"].split(" ", 1)[1]]
    assert SESSION_COOKIE_NAME in resp.headers.get("set-cookie", "")


def test_logout_without_session_is_a_no_op(client, identity_provider):
    resp = client.post("/api/auth/logout")
    assert resp.status_code == 200
    assert identity_provider.signed_out == []


def test_health_and_root(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").status_code == 200
