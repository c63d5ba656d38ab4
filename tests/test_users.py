"""
tests/test_users.py -- User management routes (SUPERADMIN only).

Coverage:
  - create/list/get/update with email normalization and conflicts
  - password hashes never serialized
  - the system always keeps one active SUPERADMIN
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import ADMIN_EMAIL, bearer


def _create(client: TestClient, token: str, **fields) -> dict:
    body = {"name": "Nuevo", "email": "nuevo@granja.pe", "password": "secreto1", "role": "OPERADOR", **fields}
    resp = client.post("/api/v1/users", json=body, headers=bearer(token))
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()["data"]


class TestUserCrud:
    def test_create_lowercases_email_and_hides_hash(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        user = _create(client, admin_token, email="MiXeD@Granja.PE")
        assert user["email"] == "mixed@granja.pe"
        assert "password_hash" not in user and "hashed_password" not in user

    def test_duplicate_active_email(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        resp = client.post(
            "/api/v1/users",
            json={"name": "X", "email": ADMIN_EMAIL.upper(), "password": "secreto1"},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 409
        assert resp.json()["msg"] == "Email ya registrado (activo)."

    def test_duplicate_inactive_email(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        user = _create(client, admin_token, email="baja@granja.pe")
        assert client.delete(f"/api/v1/users/{user['id']}", headers=bearer(admin_token)).status_code == 200
        resp = client.post(
            "/api/v1/users",
            json={"name": "X", "email": "baja@granja.pe", "password": "secreto1"},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 409
        assert resp.json()["msg"] == "Email existe inactivo. Considere restaurarlo."

    def test_short_password_rejected(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        resp = client.post(
            "/api/v1/users",
            json={"name": "X", "email": "corto@granja.pe", "password": "abc"},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 400

    def test_list_paginates_and_hides_inactive(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        resp = client.get("/api/v1/users?pageSize=2", headers=bearer(admin_token))
        body = resp.json()
        assert resp.status_code == 200
        assert body["pageSize"] == 2
        assert len(body["data"]) <= 2
        assert all(u["active"] for u in body["data"])
        assert body["pages"] == -(-body["total"] // 2)

    def test_get_and_404(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        user = _create(client, admin_token, email="get@granja.pe")
        assert client.get(f"/api/v1/users/{user['id']}", headers=bearer(admin_token)).json()["data"]["id"] == user["id"]
        resp = client.get("/api/v1/users/99999", headers=bearer(admin_token))
        assert resp.status_code == 404

    def test_bad_id(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        resp = client.get("/api/v1/users/abc", headers=bearer(admin_token))
        assert resp.status_code == 400
        assert resp.json()["msg"] == "ID inválido"

    def test_update_email_in_use(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        user = _create(client, admin_token, email="mover@granja.pe")
        resp = client.put(
            f"/api/v1/users/{user['id']}",
            json={"name": "Mover", "email": ADMIN_EMAIL, "role": "OPERADOR"},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 409
        assert resp.json()["msg"] == "Email en uso por otro activo."

    def test_update_keeps_password_when_blank(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        _create(client, admin_token, email="keep@granja.pe", password="keepme123")
        uid = client.app.state.user_store.get_by_email("keep@granja.pe").id
        resp = client.put(
            f"/api/v1/users/{uid}",
            json={"name": "Keep Renamed", "email": "keep@granja.pe", "role": "OPERADOR", "password": ""},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["name"] == "Keep Renamed"
        login = client.post("/api/v1/auth/login", json={"email": "keep@granja.pe", "password": "keepme123"})
        client.cookies.clear()
        assert login.status_code == 200


class TestLastSuperadmin:
    def test_cannot_demote_last_superadmin(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        admin = client.app.state.user_store.get_by_email(ADMIN_EMAIL)
        resp = client.put(
            f"/api/v1/users/{admin.id}",
            json={"name": admin.name, "email": ADMIN_EMAIL, "role": "OPERADOR"},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 400
        assert resp.json()["msg"] == "No puedes dejar el sistema sin SUPERADMIN."

    def test_cannot_inactivate_last_superadmin(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        admin = client.app.state.user_store.get_by_email(ADMIN_EMAIL)
        resp = client.patch(f"/api/v1/users/{admin.id}", json={"active": False}, headers=bearer(admin_token))
        assert resp.status_code == 400
        assert resp.json()["msg"] == "No puedes inactivar al último SUPERADMIN."

    def test_second_superadmin_allows_demotion(self, api_client: tuple[TestClient, str, str]) -> None:
        """With two active SUPERADMINs one of them may be demoted, then restored."""
        client, admin_token, _ = api_client
        other = _create(client, admin_token, email="jefe2@granja.pe", role="SUPERADMIN")
        resp = client.put(
            f"/api/v1/users/{other['id']}",
            json={"name": "Jefe 2", "email": "jefe2@granja.pe", "role": "OPERADOR"},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["role"] == "OPERADOR"

    def test_restore_user(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        user = _create(client, admin_token, email="vuelve@granja.pe")
        client.patch(f"/api/v1/users/{user['id']}", json={"active": False}, headers=bearer(admin_token))
        resp = client.patch(f"/api/v1/users/{user['id']}", json={"active": True}, headers=bearer(admin_token))
        assert resp.status_code == 200
        assert resp.json()["data"]["active"] is True
