"""
tests/test_records.py -- Feedings, losses and harvests through the API.

Coverage:
  - derived values (feeding total, rounding) on create and update
  - lookup names joined into responses
  - date-range filters and date DESC ordering
  - the recent-pass rule: an OPERADOR needs a verified approval code of the
    right kind for the very record; a SUPERADMIN never does
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from conftest import bearer


@pytest.fixture(scope="module")
def refs(api_client) -> dict:
    """One lot, pool and food type shared by the module."""
    client, admin_token, _ = api_client
    h = bearer(admin_token)
    lot = client.post("/api/v1/lots", json={"name": "Lote R"}, headers=h).json()["data"]
    pool = client.post("/api/v1/pools", json={"name": "Estanque R"}, headers=h).json()["data"]
    food = client.post("/api/v1/food-types", json={"name": "Pellet 3mm"}, headers=h).json()["data"]
    return {"lot_id": lot["id"], "pool_id": pool["id"], "food_type_id": food["id"]}


def _harvest(client: TestClient, token: str, refs: dict, **fields) -> dict:
    body = {"date": "2026-05-01", "lot_id": refs["lot_id"], "pool_id": refs["pool_id"], "fish_count": 100, "kilos": 50}
    body.update(fields)
    resp = client.post("/api/v1/harvests", json=body, headers=bearer(token))
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()["data"]


def _grant(client: TestClient, admin_token: str, operator_token: str, kind: str, table: str, record_id: int) -> None:
    """File, approve and verify a request so the operator holds a fresh pass."""
    created = client.post(
        f"/api/v1/{kind}-requests",
        json={"tabla": table, "registro_id": record_id, "motivo": "Corrección de digitación"},
        headers=bearer(operator_token),
    )
    assert created.status_code in (200, 201), created.text
    request_id = created.json()["data"]["id"]
    with patch("approvals.store.generate_code", return_value="4321"):
        decided = client.patch(
            f"/api/v1/{kind}-requests/{request_id}", json={"action": "approve"}, headers=bearer(admin_token)
        )
    assert decided.status_code == 200, decided.text
    verified = client.post(
        f"/api/v1/{kind}-requests/{request_id}/verify", json={"codigo": "4321"}, headers=bearer(operator_token)
    )
    assert verified.status_code == 200, verified.text


class TestDerivedValues:
    def test_feeding_total(self, api_client: tuple[TestClient, str, str], refs: dict) -> None:
        """unit_price rounds to 3 decimals; total = round(quantity * unit_price, 2)."""
        client, admin_token, _ = api_client
        body = {"date": "2026-04-10", "quantity": 4, "unit_price": 1.23456, **refs}
        resp = client.post("/api/v1/feedings", json=body, headers=bearer(admin_token))
        assert resp.status_code == 201, resp.text
        row = resp.json()["data"]
        assert row["unit_price"] == pytest.approx(1.235)
        assert row["total"] == pytest.approx(4.94)
        assert row["lot_name"] == "Lote R"
        assert row["food_type_name"] == "Pellet 3mm"
        assert row["provider_name"] is None

    def test_feeding_total_recomputed_on_update(self, api_client: tuple[TestClient, str, str], refs: dict) -> None:
        client, admin_token, _ = api_client
        h = bearer(admin_token)
        row = client.post(
            "/api/v1/feedings", json={"date": "2026-04-11", "quantity": 10, "unit_price": 2.5, **refs}, headers=h
        ).json()["data"]
        assert row["total"] == pytest.approx(25.0)
        resp = client.put(
            f"/api/v1/feedings/{row['id']}", json={"date": "2026-04-11", "quantity": 20, "unit_price": 2.5, **refs}, headers=h
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["total"] == pytest.approx(50.0)

    def test_harvest_decimal_comma_and_rounding(self, api_client: tuple[TestClient, str, str], refs: dict) -> None:
        client, admin_token, _ = api_client
        row = _harvest(client, admin_token, refs, kilos="12,3456", packages=3)
        assert row["kilos"] == pytest.approx(12.346)
        assert row["packages"] == 3

    def test_negative_quantity_rejected(self, api_client: tuple[TestClient, str, str], refs: dict) -> None:
        client, admin_token, _ = api_client
        resp = client.post(
            "/api/v1/losses", json={"date": "2026-04-12", "dead": -1, **{k: refs[k] for k in ("lot_id", "pool_id")}},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 400


class TestListing:
    def test_date_filters_and_order(self, api_client: tuple[TestClient, str, str], refs: dict) -> None:
        """desde/hasta bound the date; rows come back date DESC."""
        client, admin_token, _ = api_client
        lot_pool = {k: refs[k] for k in ("lot_id", "pool_id")}
        h = bearer(admin_token)
        for day in ("2025-01-05", "2025-01-20", "2025-02-03"):
            client.post("/api/v1/losses", json={"date": day, "dead": 1, **lot_pool}, headers=h)
        body = client.get("/api/v1/losses?desde=2025-01-01&hasta=2025-01-31", headers=h).json()
        assert [r["date"] for r in body["data"]] == ["2025-01-20", "2025-01-05"]
        assert body["pageSize"] == 50

    def test_record_page_size_cap(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        assert client.get("/api/v1/harvests?pageSize=1000", headers=bearer(admin_token)).json()["pageSize"] == 200

    def test_bad_date_filter(self, api_client: tuple[TestClient, str, str]) -> None:
        client, admin_token, _ = api_client
        assert client.get("/api/v1/harvests?desde=ayer", headers=bearer(admin_token)).status_code == 400


class TestRecentPass:
    def test_operator_can_create(self, api_client: tuple[TestClient, str, str], refs: dict) -> None:
        """Creating records needs no code."""
        client, _, operator_token = api_client
        _harvest(client, operator_token, refs)

    def test_operator_edit_without_pass_is_403(self, api_client: tuple[TestClient, str, str], refs: dict) -> None:
        client, _, operator_token = api_client
        row = _harvest(client, operator_token, refs)
        resp = client.put(
            f"/api/v1/harvests/{row['id']}",
            json={"date": "2026-05-01", "fish_count": 99, "kilos": 49, **refs},
            headers=bearer(operator_token),
        )
        assert resp.status_code == 403
        assert resp.json()["msg"] == "No autorizado: requiere código válido reciente de edición."

    def test_operator_edit_after_approve_and_verify(self, api_client: tuple[TestClient, str, str], refs: dict) -> None:
        """Approve + verify an edit request, then the same edit succeeds."""
        client, admin_token, operator_token = api_client
        row = _harvest(client, operator_token, refs)
        _grant(client, admin_token, operator_token, "edit", "harvests", row["id"])
        resp = client.put(
            f"/api/v1/harvests/{row['id']}",
            json={"date": "2026-05-01", "lot_id": refs["lot_id"], "pool_id": refs["pool_id"], "fish_count": 99, "kilos": 49},
            headers=bearer(operator_token),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["data"]["fish_count"] == 99
        assert resp.json()["data"]["updated_by"] is not None

    def test_edit_pass_does_not_cover_other_records(self, api_client: tuple[TestClient, str, str], refs: dict) -> None:
        client, admin_token, operator_token = api_client
        first = _harvest(client, operator_token, refs)
        second = _harvest(client, operator_token, refs)
        _grant(client, admin_token, operator_token, "edit", "harvests", first["id"])
        resp = client.put(
            f"/api/v1/harvests/{second['id']}",
            json={"date": "2026-05-01", "fish_count": 1, "kilos": 1, "lot_id": refs["lot_id"]},
            headers=bearer(operator_token),
        )
        assert resp.status_code == 403

    def test_edit_pass_does_not_cover_delete(self, api_client: tuple[TestClient, str, str], refs: dict) -> None:
        """DELETE needs an inactivation pass, not an edit pass."""
        client, admin_token, operator_token = api_client
        row = _harvest(client, operator_token, refs)
        _grant(client, admin_token, operator_token, "edit", "harvests", row["id"])
        resp = client.delete(f"/api/v1/harvests/{row['id']}", headers=bearer(operator_token))
        assert resp.status_code == 403
        assert resp.json()["msg"] == "No autorizado: requiere código válido reciente de inactivación/restauración."

    def test_inactivation_pass_allows_delete_and_restore(
        self, api_client: tuple[TestClient, str, str], refs: dict
    ) -> None:
        client, admin_token, operator_token = api_client
        row = _harvest(client, operator_token, refs)
        _grant(client, admin_token, operator_token, "inactivation", "harvests", row["id"])
        h = bearer(operator_token)
        assert client.delete(f"/api/v1/harvests/{row['id']}", headers=h).status_code == 200
        assert client.patch(f"/api/v1/harvests/{row['id']}", json={"active": True}, headers=h).status_code == 200

    def test_missing_record_is_404_not_403(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _, operator_token = api_client
        resp = client.delete("/api/v1/feedings/987654", headers=bearer(operator_token))
        assert resp.status_code == 404

    def test_superadmin_never_gated(self, api_client: tuple[TestClient, str, str], refs: dict) -> None:
        client, admin_token, operator_token = api_client
        row = _harvest(client, operator_token, refs)
        h = bearer(admin_token)
        resp = client.put(
            f"/api/v1/harvests/{row['id']}", json={"date": "2026-05-02", "fish_count": 7, "kilos": 3, **refs}, headers=h
        )
        assert resp.status_code == 200
        assert client.delete(f"/api/v1/harvests/{row['id']}", headers=h).status_code == 200
