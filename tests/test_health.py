"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response in the {success, ...} envelope with status, version, components
  - components.database reports 'ok' against the test database
  - No authentication required
  - Degraded status when the database probe fails
"""

from __future__ import annotations

from unittest.mock import patch


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_health_reports_degraded_database(api_client):
    """A failing SELECT 1 probe flips status to degraded instead of raising."""
    client, _, _ = api_client
    with patch("api.main.ping", return_value=False):
        data = client.get("/api/v1/health").json()
    assert data["success"] is True
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "unavailable"


def test_unknown_route_uses_envelope(api_client):
    """404s from the router come back in the {success, msg} envelope."""
    client, _, _ = api_client
    resp = client.get("/api/v1/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["success"] is False
