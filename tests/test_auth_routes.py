"""
tests/test_auth_routes.py -- Integration tests for login, logout and /me.

Login sets the auth_token cookie on the shared TestClient; the autouse
fixture below clears the jar after every test so later tests in the module
are not silently authenticated.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from auth.models import Role, User
from auth.tokens import hash_password
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, OPERATOR_EMAIL, bearer


@pytest.fixture(autouse=True)
def _clear_cookies(api_client):
    yield
    api_client[0].cookies.clear()


class TestLogin:
    def test_login_valid_credentials(self, api_client: tuple[TestClient, str, str]) -> None:
        """Correct email/password returns 200, the user, a token and the session cookie."""
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["user"]["email"] == ADMIN_EMAIL
        assert body["data"]["user"]["role"] == "SUPERADMIN"
        assert "password" not in str(body["data"]["user"]).lower()
        assert body["data"]["token"]
        assert "auth_token" in resp.cookies
        assert resp.headers["Cache-Control"] == "no-store"

    def test_cookie_attributes(self, api_client: tuple[TestClient, str, str]) -> None:
        """The session cookie is HttpOnly, SameSite=Lax, path / and lives 2 hours."""
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        header = resp.headers["set-cookie"].lower()
        assert "httponly" in header
        assert "samesite=lax" in header
        assert "path=/" in header
        assert "max-age=7200" in header

    def test_email_is_case_insensitive(self, api_client: tuple[TestClient, str, str]) -> None:
        """Emails are matched lowercased."""
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL.upper(), "password": ADMIN_PASSWORD})
        assert resp.status_code == 200

    def test_wrong_password(self, api_client: tuple[TestClient, str, str]) -> None:
        """Wrong password is 401 with the generic message and no cookie."""
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL, "password": "nope-nope"})
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "msg": "Usuario o Contraseña incorrecta"}
        assert "auth_token" not in resp.cookies

    def test_unknown_email_same_message(self, api_client: tuple[TestClient, str, str]) -> None:
        """Unknown email gives exactly the same answer as a wrong password."""
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "ghost@granja.pe", "password": "whatever1"})
        assert resp.status_code == 401
        assert resp.json()["msg"] == "Usuario o Contraseña incorrecta"

    def test_inactive_user_refused(self, api_client: tuple[TestClient, str, str]) -> None:
        """An inactive user cannot log in even with the right password."""
        client, _, _ = api_client
        store = client.app.state.user_store
        uid = store.create_user(
            User(name="Ex", email="ex@granja.pe", role=Role.OPERADOR, hashed_password=hash_password("expass123"))
        )
        store.set_active(uid, False, actor_id=uid)
        resp = client.post("/api/v1/auth/login", json={"email": "ex@granja.pe", "password": "expass123"})
        assert resp.status_code == 401

    def test_missing_fields_is_400(self, api_client: tuple[TestClient, str, str]) -> None:
        """Shape errors come back as 400 with a message, not FastAPI's 422."""
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL})
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert resp.json()["msg"]


class TestSession:
    def test_me_with_bearer(self, api_client: tuple[TestClient, str, str]) -> None:
        """/me returns the caller's user record."""
        client, _, operator_token = api_client
        resp = client.get("/api/v1/auth/me", headers=bearer(operator_token))
        assert resp.status_code == 200
        assert resp.json()["data"]["email"] == OPERATOR_EMAIL

    def test_me_with_cookie_after_login(self, api_client: tuple[TestClient, str, str]) -> None:
        """The cookie set by login authenticates the next request."""
        client, _, _ = api_client
        client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json()["data"]["role"] == "SUPERADMIN"

    def test_logout_clears_cookie(self, api_client: tuple[TestClient, str, str]) -> None:
        """After logout the cookie is gone and /me is 401 again."""
        client, _, _ = api_client
        client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        resp = client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert client.get("/api/v1/auth/me").status_code == 401
