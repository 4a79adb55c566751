"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version and database fields
  - database reports 'unavailable' (still 200) when the store does not answer
  - No authentication required
"""

from __future__ import annotations

from unittest.mock import patch

from sqlalchemy.exc import OperationalError


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, version and database."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": "1.0.0", "database": "ok"}


def test_health_reports_unreachable_store(api_client):
    client, service, _ = api_client
    with patch.object(service.store, "ping", side_effect=OperationalError("SELECT 1", {}, Exception("locked"))):
        resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["database"] == "unavailable"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
