"""Tests for api/accounts.py -- registration, login and the current user."""

from typing import Any

from fastapi import FastAPI
from fastapi.testclient import TestClient

from auth import hash_password, verify_password
from models.schemas import UserSummary
from tests.conftest import auth_headers

PASSWORD = "correct horse"


def _register(client: TestClient, email: str = "dana@example.com") -> Any:
    return client.post(
        "/api/auth/register",
        json={"name": "Dana", "email": email, "password": PASSWORD},
    )


# =========================================================================
# Password hashing
# =========================================================================


class TestPasswordHashing:
    def test_hash_verifies_only_the_same_password(self) -> None:
        stored = hash_password(PASSWORD)

        assert stored != PASSWORD
        assert verify_password(stored, PASSWORD)
        assert not verify_password(stored, "wrong horse")

    def test_empty_or_garbage_hash_never_matches(self) -> None:
        assert not verify_password("", PASSWORD)
        assert not verify_password("not-an-argon2-hash", PASSWORD)


# =========================================================================
# Register
# =========================================================================


class TestRegister:
    def test_register_returns_usable_token(self, client: TestClient) -> None:
        resp = _register(client)

        assert resp.status_code == 201
        data = resp.json()
        assert data["message"] == "User created successfully"
        assert data["user"]["email"] == "dana@example.com"
        assert data["user"]["id"].startswith("usr_")

        headers = auth_headers(data["token"])
        created = client.post("/api/projects", json={"name": "Mine"}, headers=headers)
        assert created.status_code == 201
        assert created.json()["owner"]["id"] == data["user"]["id"]

    def test_registered_token_opens_realtime_channel(
        self, client: TestClient, app: FastAPI
    ) -> None:
        token = _register(client).json()["token"]

        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.send_json({"type": "ping", "timestamp": 1})
            assert ws.receive_json() == {"type": "pong", "timestamp": 1}
            assert app.state.registry.count() == 1

    def test_duplicate_email_rejected(self, client: TestClient) -> None:
        assert _register(client).status_code == 201

        resp = _register(client, email="DANA@example.com")

        assert resp.status_code == 400
        assert resp.json()["detail"] == "User already exists"

    def test_short_password_rejected(self, client: TestClient) -> None:
        resp = client.post(
            "/api/auth/register",
            json={"name": "Dana", "email": "dana@example.com", "password": "abc"},
        )
        assert resp.status_code == 422

    def test_password_is_not_stored_in_plain_text(
        self, client: TestClient, app: FastAPI
    ) -> None:
        _register(client)

        credentials = client.portal.call(app.state.store.get_credentials, "dana@example.com")

        assert credentials is not None
        user, stored = credentials
        assert user.name == "Dana"
        assert stored != PASSWORD
        assert verify_password(stored, PASSWORD)


# =========================================================================
# Login
# =========================================================================


class TestLogin:
    def test_login_with_correct_password(self, client: TestClient) -> None:
        registered = _register(client).json()

        resp = client.post(
            "/api/auth/login",
            json={"email": "Dana@Example.com", "password": PASSWORD},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Login successful"
        assert data["user"] == registered["user"]
        me = client.get("/api/auth/me", headers=auth_headers(data["token"]))
        assert me.json()["user"]["id"] == registered["user"]["id"]

    def test_wrong_password_rejected(self, client: TestClient) -> None:
        _register(client)

        resp = client.post(
            "/api/auth/login",
            json={"email": "dana@example.com", "password": "wrong horse"},
        )

        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid credentials"

    def test_unknown_email_rejected(self, client: TestClient) -> None:
        resp = client.post(
            "/api/auth/login",
            json={"email": "nobody@example.com", "password": PASSWORD},
        )

        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid credentials"

    def test_account_without_password_cannot_log_in(
        self, client: TestClient, users: dict[str, UserSummary]
    ) -> None:
        resp = client.post(
            "/api/auth/login",
            json={"email": users["alice"].email, "password": ""},
        )
        assert resp.status_code == 422

        resp = client.post(
            "/api/auth/login",
            json={"email": users["alice"].email, "password": PASSWORD},
        )
        assert resp.status_code == 401


# =========================================================================
# Current user
# =========================================================================


class TestCurrentUser:
    def test_me_returns_caller(
        self,
        client: TestClient,
        users: dict[str, UserSummary],
        tokens: dict[str, str],
    ) -> None:
        resp = client.get("/api/auth/me", headers=auth_headers(tokens["bob"]))

        assert resp.status_code == 200
        assert resp.json() == {"user": users["bob"].model_dump()}

    def test_me_requires_token(self, client: TestClient) -> None:
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
