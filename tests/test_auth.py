from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.security import hash_password
from app.models.user import User, UserRole

PASSWORD = "StrongPass1!"


def _create_user(db: Session, email: str, role: UserRole = UserRole.PARENT, **overrides) -> User:
    user = User(
        email=email,
        name="Auth Test User",
        password_hash=hash_password(PASSWORD),
        role=role,
        **overrides,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _login(client: TestClient, email: str, password: str = PASSWORD):
    return client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )


def _tokens(client: TestClient, email: str, password: str = PASSWORD) -> dict:
    response = _login(client, email, password)
    assert response.status_code == 200
    return response.json()["data"]["tokens"]


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _error_code(response) -> str:
    return response.json()["errors"][0]["code"]


# ============= REGISTRATION =============

def test_register_success(client: TestClient, notifier):
    response = client.post(
        "/api/v1/auth/register",
        json={
            "email": "Register@Example.com",
            "name": "Register User",
            "phone": "010-1234-5678",
            "password": PASSWORD,
            "role": "teacher",
        },
    )

    assert response.status_code == 201
    payload = response.json()
    assert payload["success"] is True
    assert payload["data"]["user"]["email"] == "register@example.com"
    assert payload["data"]["user"]["role"] == "teacher"
    assert payload["data"]["user"]["is_email_verified"] is False
    assert payload["data"]["tokens"]["access_token"]
    assert notifier.of_kind("email_verification")[0]["email"] == "register@example.com"


def test_register_duplicate_email_conflicts(client: TestClient, db_session: Session):
    _create_user(db_session, "taken@example.com")

    response = client.post(
        "/api/v1/auth/register",
        json={"email": "TAKEN@example.com", "name": "Someone", "password": PASSWORD},
    )

    assert response.status_code == 409
    assert response.json()["success"] is False


def test_register_cannot_self_assign_admin(client: TestClient):
    response = client.post(
        "/api/v1/auth/register",
        json={"email": "sneaky@example.com", "name": "Sneaky", "password": PASSWORD, "role": "admin"},
    )

    assert response.status_code == 422


def test_register_rejects_weak_password(client: TestClient):
    response = client.post(
        "/api/v1/auth/register",
        json={"email": "weak@example.com", "name": "Weak Password", "password": "weakpass"},
    )

    assert response.status_code == 422
    assert response.json()["message"] == "Validation failed"


# ============= LOGIN =============

def test_login_success(client: TestClient, db_session: Session):
    _create_user(db_session, "login@example.com")

    response = _login(client, "login@example.com")

    assert response.status_code == 200
    payload = response.json()
    assert payload["data"]["user"]["email"] == "login@example.com"
    assert payload["data"]["tokens"]["token_type"] == "bearer"
    assert response.headers["Cache-Control"] == "no-store"
    assert response.headers["X-Request-ID"]

    me = client.get("/api/v1/users/me", headers=_bearer(payload["data"]["tokens"]["access_token"]))
    assert me.status_code == 200
    assert me.json()["data"]["email"] == "login@example.com"


def test_login_failure(client: TestClient, db_session: Session):
    _create_user(db_session, "wrongpass@example.com")

    response = _login(client, "wrongpass@example.com", "WrongPass1!")

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert _error_code(response) == "invalid_credentials"


def test_unknown_email_looks_like_wrong_password(client: TestClient, db_session: Session):
    _create_user(db_session, "known@example.com")

    unknown = _login(client, "unknown@example.com")
    wrong = _login(client, "known@example.com", "WrongPass1!")

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json()["message"] == wrong.json()["message"]


def test_login_inactive_account_forbidden(client: TestClient, db_session: Session):
    _create_user(db_session, "inactive@example.com", is_active=False)

    response = _login(client, "inactive@example.com")

    assert response.status_code == 403
    assert _error_code(response) == "account_inactive"


def test_account_locks_after_five_failures(client: TestClient, db_session: Session, notifier):
    _create_user(db_session, "locked@example.com")
    for _ in range(5):
        assert _login(client, "locked@example.com", "WrongPass1!").status_code == 401

    response = _login(client, "locked@example.com")

    assert response.status_code == 423
    assert _error_code(response) == "account_locked"
    assert 1 <= int(response.headers["Retry-After"]) <= 30 * 60
    assert len(notifier.of_kind("account_locked")) == 1


def test_brute_force_from_one_address_is_throttled(client: TestClient, db_session: Session):
    _create_user(db_session, "victim@example.com")
    for index in range(20):
        assert _login(client, f"guess{index}@example.com").status_code == 401

    response = _login(client, "victim@example.com")

    assert response.status_code == 429
    assert _error_code(response) == "brute_force_suspected"
    assert int(response.headers["Retry-After"]) >= 1


# ============= TOKENS =============

def test_missing_bearer_token_is_rejected(client: TestClient):
    response = client.get("/api/v1/users/me")

    assert response.status_code == 401
    assert _error_code(response) == "malformed_token"


def test_refresh_returns_new_access_token(client: TestClient, db_session: Session):
    _create_user(db_session, "refresh@example.com")
    tokens = _tokens(client, "refresh@example.com")

    response = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

    assert response.status_code == 200
    access_token = response.json()["data"]["access_token"]
    assert client.get("/api/v1/users/me", headers=_bearer(access_token)).status_code == 200


def test_refresh_rejects_access_token(client: TestClient, db_session: Session):
    _create_user(db_session, "wrongtype@example.com")
    tokens = _tokens(client, "wrongtype@example.com")

    response = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]})

    assert response.status_code == 401
    assert _error_code(response) == "wrong_token_type"


def test_logout_revokes_access_and_refresh_tokens(client: TestClient, db_session: Session):
    _create_user(db_session, "logout@example.com")
    tokens = _tokens(client, "logout@example.com")

    logout = client.post(
        "/api/v1/auth/logout",
        json={"refresh_token": tokens["refresh_token"]},
        headers=_bearer(tokens["access_token"]),
    )
    assert logout.status_code == 200

    me = client.get("/api/v1/users/me", headers=_bearer(tokens["access_token"]))
    assert me.status_code == 401
    assert _error_code(me) == "revoked_token"

    refresh = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refresh.status_code == 401
    assert _error_code(refresh) == "revoked_token"


def test_logout_all_invalidates_every_session(client: TestClient, db_session: Session):
    _create_user(db_session, "everywhere@example.com")
    first = _tokens(client, "everywhere@example.com")
    second = _tokens(client, "everywhere@example.com")

    response = client.post("/api/v1/auth/logout-all", headers=_bearer(first["access_token"]))
    assert response.status_code == 200
    assert response.json()["data"]["token_version"] == 1

    for tokens in (first, second):
        me = client.get("/api/v1/users/me", headers=_bearer(tokens["access_token"]))
        assert me.status_code == 401
        assert _error_code(me) == "stale_token_version"

    fresh = _tokens(client, "everywhere@example.com")
    assert client.get("/api/v1/users/me", headers=_bearer(fresh["access_token"])).status_code == 200


# ============= PASSWORDS =============

def test_forgot_password_does_not_reveal_accounts(client: TestClient, notifier):
    response = client.post("/api/v1/auth/forgot-password", json={"email": "ghost@example.com"})

    assert response.status_code == 200
    assert notifier.of_kind("password_reset") == []


def test_password_reset_flow(client: TestClient, db_session: Session, notifier):
    _create_user(db_session, "reset@example.com")
    old_tokens = _tokens(client, "reset@example.com")

    assert client.post("/api/v1/auth/forgot-password", json={"email": "reset@example.com"}).status_code == 200
    reset_token = notifier.of_kind("password_reset")[0]["token"]

    response = client.post(
        "/api/v1/auth/reset-password",
        json={"token": reset_token, "new_password": "NewStrong2@"},
    )
    assert response.status_code == 200

    assert client.get("/api/v1/users/me", headers=_bearer(old_tokens["access_token"])).status_code == 401
    assert _login(client, "reset@example.com").status_code == 401
    assert _login(client, "reset@example.com", "NewStrong2@").status_code == 200

    reused = client.post(
        "/api/v1/auth/reset-password",
        json={"token": reset_token, "new_password": "Another3#Pass"},
    )
    assert reused.status_code == 400
    assert _error_code(reused) == "side_token_not_found_or_expired"


def test_change_password(client: TestClient, db_session: Session, notifier):
    _create_user(db_session, "change@example.com")
    tokens = _tokens(client, "change@example.com")

    response = client.put(
        "/api/v1/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "NewStrong2@"},
        headers=_bearer(tokens["access_token"]),
    )

    assert response.status_code == 200
    assert client.get("/api/v1/users/me", headers=_bearer(tokens["access_token"])).status_code == 401
    assert _login(client, "change@example.com", "NewStrong2@").status_code == 200
    assert len(notifier.of_kind("password_changed")) == 1


def test_change_password_wrong_current_password(client: TestClient, db_session: Session):
    user = _create_user(db_session, "change-wrong@example.com")
    tokens = _tokens(client, "change-wrong@example.com")

    response = client.put(
        "/api/v1/auth/change-password",
        json={"current_password": "WrongPass1!", "new_password": "NewStrong2@"},
        headers=_bearer(tokens["access_token"]),
    )

    assert response.status_code == 401
    db_session.refresh(user)
    assert user.login_attempts == 1


# ============= EMAIL VERIFICATION =============

def test_email_verification_flow(client: TestClient, notifier):
    register = client.post(
        "/api/v1/auth/register",
        json={"email": "verify@example.com", "name": "Verify Me", "password": PASSWORD},
    )
    assert register.status_code == 201
    access_token = register.json()["data"]["tokens"]["access_token"]
    token = notifier.of_kind("email_verification")[0]["token"]

    response = client.post("/api/v1/auth/verify-email", json={"token": token})
    assert response.status_code == 200
    assert response.json()["data"]["user"]["is_email_verified"] is True

    again = client.post("/api/v1/auth/verify-email", json={"token": token})
    assert again.status_code == 400

    resend = client.post("/api/v1/auth/resend-verification", headers=_bearer(access_token))
    assert resend.status_code == 400


def test_resend_verification_issues_new_token(client: TestClient, db_session: Session, notifier):
    _create_user(db_session, "resend@example.com")
    tokens = _tokens(client, "resend@example.com")

    response = client.post("/api/v1/auth/resend-verification", headers=_bearer(tokens["access_token"]))

    assert response.status_code == 200
    assert len(notifier.of_kind("email_verification")) == 1
