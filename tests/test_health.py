import pytest

from api.routes import users
from core.server_metadata import get_server_metadata, merge_with_server_metadata
from domain.common.exceptions import DatabaseError


def test_health_check_verify(client):
    resp = client.get("/api/api-health-check/verify", headers={"X-Correlation-ID": "corr-health"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["routeCode"] == "API-001-SUC"
    assert body["message"] == "API health check successful"

    data = body["data"]
    assert data["status"] == "healthy"
    assert data["service"] == "APP_SERVICE"
    assert data["version"] == "1.0.0"
    assert data["environment"] == "test"
    assert data["uptime"] >= 0
    assert set(data["server"]) == {"pythonVersion", "platform", "arch"}
    assert data["request"]["correlationId"] == "corr-health"
    assert data["request"]["path"] == "/api/api-health-check/verify"


def test_server_fields_cannot_be_overridden(settings):
    merged = merge_with_server_metadata(
        {"status": "degraded", "version": "9.9.9", "server": "fake", "region": "eu"},
        settings,
    )
    assert merged["status"] == "degraded"
    assert merged["version"] == settings.VERSION
    assert isinstance(merged["server"], dict)
    assert merged["region"] == "eu"


def test_merge_without_custom_data(settings):
    merged = merge_with_server_metadata(None, settings)
    assert set(merged) >= {"version", "environment", "uptime", "server"}
    assert "status" not in merged
    assert get_server_metadata(settings)["environment"] == "test"


def test_list_users(client):
    resp = client.get("/api/users")
    assert resp.status_code == 200
    body = resp.json()
    assert body["routeCode"] == "USR-001-SUC"
    assert body["message"] == "Users retrieved successfully"
    assert body["data"]["count"] == 2


def test_get_user_by_id(client):
    resp = client.get("/api/users/2")
    assert resp.status_code == 200
    assert resp.json()["data"]["user"]["name"] == "Jane Smith"


def test_missing_user_returns_not_found(client):
    resp = client.get("/api/users/99")
    assert resp.status_code == 404
    body = resp.json()
    assert body["errorCode"] == "NF-001"
    assert body["message"] == "Failed to fetch users"


def test_empty_user_list(client, monkeypatch):
    async def no_users():
        return []

    monkeypatch.setattr(users, "load_users", no_users)
    resp = client.get("/api/users")
    assert resp.status_code == 200
    body = resp.json()
    assert body["routeCode"] == "USR-002-SUC"
    assert body["data"] == {"users": [], "count": 0}


@pytest.mark.parametrize("environment", ["test", "production"])
def test_user_list_database_error(make_app, monkeypatch, environment):
    from fastapi.testclient import TestClient

    async def broken():
        raise DatabaseError("connection refused")

    monkeypatch.setattr(users, "load_users", broken)
    with TestClient(make_app(ENVIRONMENT=environment)) as client:
        resp = client.get("/api/users")
    assert resp.status_code == 500
    body = resp.json()
    assert body["routeCode"] == "USR-002-ERR"
    assert body["errorCode"] == "DB-002"
    assert body["message"] == "Database error while fetching users"


def test_root(client):
    resp = client.get("/")
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Welcome to the API"
    assert body["data"]["health"] == "/api/api-health-check/verify"
