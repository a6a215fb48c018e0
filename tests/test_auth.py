from datetime import datetime, timedelta
from http import HTTPStatus

import jwt

from bizdash.auth import create_access_token, decode_access_token
from bizdash.config import settings
from bizdash.models import User

DEFAULT_PASSWORD = "Secret123"


def _login(client, email, password):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def test_register_returns_token_and_user(client, db_session):
    payload = {"name": "Alice Example", "email": "Alice@Example.com", "password": "Secret123"}

    response = client.post("/api/auth/register", json=payload)
    assert response.status_code == HTTPStatus.CREATED

    body = response.json()
    assert body["success"] is True
    assert body["data"]["token"]
    user = body["data"]["user"]
    assert user["email"] == "alice@example.com"
    assert user["role"] == "user"
    assert user["isActive"] is True
    assert "passwordHash" not in user

    stored = db_session.query(User).filter_by(email="alice@example.com").one()
    assert stored.password_hash != "Secret123"


def test_register_duplicate_email_is_rejected(client, user_factory):
    user_factory(email="taken@example.com")

    response = client.post(
        "/api/auth/register",
        json={"name": "Someone", "email": "taken@example.com", "password": "Secret123"},
    )
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json() == {
        "success": False,
        "error": "User already exists with this email",
    }


def test_register_weak_password_reports_field_details(client):
    response = client.post(
        "/api/auth/register",
        json={"name": "Weak", "email": "weak@example.com", "password": "secret"},
    )
    assert response.status_code == HTTPStatus.BAD_REQUEST

    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Validation failed"
    assert any(detail["loc"].endswith("password") for detail in body["details"])


def test_login_success_resets_attempts(client, user_factory, db_session):
    user = user_factory(email="bob@example.com")
    user.login_attempts = 3
    db_session.commit()

    response = _login(client, "bob@example.com", DEFAULT_PASSWORD)
    assert response.status_code == HTTPStatus.OK
    assert response.json()["data"]["user"]["email"] == "bob@example.com"

    db_session.expire_all()
    refreshed = db_session.get(User, user.id)
    assert refreshed.login_attempts == 0
    assert refreshed.last_login is not None


def test_login_unknown_email(client):
    response = _login(client, "nobody@example.com", "Whatever1")
    assert response.status_code == HTTPStatus.UNAUTHORIZED
    assert response.json()["error"] == "Invalid credentials"


def test_login_inactive_account(client, user_factory):
    user_factory(email="gone@example.com", is_active=False)

    response = _login(client, "gone@example.com", DEFAULT_PASSWORD)
    assert response.status_code == HTTPStatus.UNAUTHORIZED
    assert response.json()["error"] == "Account is deactivated"


def test_five_failures_lock_the_account(client, user_factory, db_session):
    user = user_factory(email="carol@example.com")

    for _ in range(5):
        response = _login(client, "carol@example.com", "WrongPass1")
        assert response.status_code == HTTPStatus.UNAUTHORIZED

    # Locked now, even with the right password.
    response = _login(client, "carol@example.com", DEFAULT_PASSWORD)
    assert response.status_code == HTTPStatus.LOCKED

    db_session.expire_all()
    locked = db_session.get(User, user.id)
    assert locked.login_attempts == 5
    assert locked.lock_until > datetime.utcnow() + timedelta(minutes=settings.lock_minutes - 1)


def test_expired_lock_restarts_attempt_count(client, user_factory, db_session):
    user = user_factory(email="dave@example.com")
    user.login_attempts = 5
    user.lock_until = datetime.utcnow() - timedelta(minutes=1)
    db_session.commit()

    response = _login(client, "dave@example.com", "WrongPass1")
    assert response.status_code == HTTPStatus.UNAUTHORIZED

    db_session.expire_all()
    refreshed = db_session.get(User, user.id)
    assert refreshed.login_attempts == 1
    assert refreshed.lock_until is None


def test_demo_login_bypasses_store(client, db_session):
    response = _login(client, settings.demo_email, settings.demo_password)
    assert response.status_code == HTTPStatus.OK

    data = response.json()["data"]
    assert data["user"]["id"] == "demo-user-1"
    assert data["user"]["isDemo"] is True
    assert data["user"]["role"] == "admin"
    assert db_session.query(User).count() == 0

    claims = decode_access_token(data["token"])
    assert claims["isDemo"] is True
    assert claims["id"] == "demo-user-1"


def test_missing_token(client):
    response = client.get("/api/auth/me")
    assert response.status_code == HTTPStatus.UNAUTHORIZED
    assert response.json()["error"] == "Access token required"


def test_tampered_token(client):
    token = jwt.encode({"id": "1"}, "not-the-secret", algorithm="HS256")

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == HTTPStatus.UNAUTHORIZED
    assert response.json()["error"] == "Invalid token"


def test_expired_token(client, user_factory):
    user = user_factory()
    token = create_access_token({"id": str(user.id)}, expires_delta=timedelta(seconds=-5))

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == HTTPStatus.UNAUTHORIZED
    assert response.json()["error"] == "Token expired"


def test_token_for_deactivated_user(client, user_factory, auth_headers, db_session):
    user = user_factory()
    headers = auth_headers(user)
    user.is_active = False
    db_session.commit()

    response = client.get("/api/auth/me", headers=headers)
    assert response.status_code == HTTPStatus.UNAUTHORIZED
    assert response.json()["error"] == "User not found"


def test_me_and_refresh(client, user_factory, auth_headers):
    user = user_factory(email="erin@example.com")
    headers = auth_headers(user)

    me = client.get("/api/auth/me", headers=headers)
    assert me.status_code == HTTPStatus.OK
    assert me.json()["data"]["email"] == "erin@example.com"

    refreshed = client.post("/api/auth/refresh", headers=headers)
    assert refreshed.status_code == HTTPStatus.OK
    claims = decode_access_token(refreshed.json()["data"]["token"])
    assert claims["id"] == str(user.id)


def test_logout(client, user_factory, auth_headers):
    response = client.post("/api/auth/logout", headers=auth_headers(user_factory()))
    assert response.status_code == HTTPStatus.OK
    assert response.json()["message"] == "Logged out successfully"


def test_change_password(client, user_factory, auth_headers):
    user = user_factory(email="frank@example.com")
    headers = auth_headers(user)

    wrong = client.put(
        "/api/auth/change-password",
        json={"currentPassword": "Nope1234", "newPassword": "Another123"},
        headers=headers,
    )
    assert wrong.status_code == HTTPStatus.BAD_REQUEST
    assert wrong.json()["error"] == "Current password is incorrect"

    ok = client.put(
        "/api/auth/change-password",
        json={"currentPassword": DEFAULT_PASSWORD, "newPassword": "Another123"},
        headers=headers,
    )
    assert ok.status_code == HTTPStatus.OK
    assert _login(client, "frank@example.com", "Another123").status_code == HTTPStatus.OK


def test_demo_cannot_change_password(client, demo_headers):
    response = client.put(
        "/api/auth/change-password",
        json={"currentPassword": "demo123", "newPassword": "Another123"},
        headers=demo_headers,
    )
    assert response.status_code == HTTPStatus.FORBIDDEN
