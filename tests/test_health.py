"""
tests/test_health.py -- Integration tests for GET /health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' when the auth DB answers
  - degraded status when the database check fails
  - No authentication required
"""

from __future__ import annotations

from sqlalchemy.exc import OperationalError


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.get("/health", headers={})
    assert resp.status_code == 200


def test_health_reports_degraded_database(api_client, monkeypatch):
    """A failing database check degrades the status instead of raising a 500."""

    def broken_ping():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(api_client.app.state.user_store, "ping", broken_ping)
    resp = api_client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"


def test_unknown_host_is_rejected(api_client):
    """TrustedHostMiddleware refuses Host headers outside ALLOWED_HOSTS."""
    resp = api_client.get("/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400
