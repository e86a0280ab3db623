import pytest
from fastapi.testclient import TestClient

from domain.common.exceptions import (
    AppError,
    BusinessLogicError,
    ConflictError,
    DatabaseError,
    ExternalServiceError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from shared.codes import ErrorCategory, ErrorCode


def test_app_error_status_derived_from_category():
    err = AppError(ErrorCode.NF_001)
    assert err.category is ErrorCategory.NOT_FOUND
    assert err.status_code == 404
    assert err.message == "The requested resource was not found"
    assert err.is_operational is True

    err = AppError(ErrorCode.VAL_001, ErrorCategory.BAD_REQUEST, "bad input")
    assert err.status_code == 400
    assert err.message == "bad input"


def test_non_operational_errors():
    assert DatabaseError().is_operational is False
    assert ValidationError().is_operational is True


def test_to_dict_hides_stack_by_default():
    data = ConflictError("dup").to_dict()
    assert data["code"] == "BL-003"
    assert data["statusCode"] == 409
    assert data["timestamp"].endswith("Z")
    assert "stack" not in data
    assert "stack" in ConflictError("dup").to_dict(include_stack=True)


def _client_with_routes(make_app, **overrides):
    app = make_app(**overrides)

    @app.get("/api/raise/{kind}")
    async def raise_error(kind: str):
        errors = {
            "not-found": NotFoundError("Thing not found"),
            "validation": ValidationError("Bad field", ErrorCode.VAL_003),
            "unauthorized": UnauthorizedError(),
            "forbidden": ForbiddenError(),
            "conflict": ConflictError(),
            "business": BusinessLogicError(),
            "external": ExternalServiceError(),
            "database": DatabaseError("connection refused on 10.0.0.5"),
        }
        if kind in errors:
            raise errors[kind]
        raise ValueError("boom: secret internals")

    return TestClient(app)


@pytest.mark.parametrize(
    "kind,status,code",
    [
        ("not-found", 404, "NF-001"),
        ("validation", 400, "VAL-003"),
        ("unauthorized", 401, "AUT-005"),
        ("forbidden", 403, "AUTZ-002"),
        ("conflict", 409, "BL-003"),
        ("business", 409, "BL-000"),
        ("external", 502, "EXT-000"),
        ("database", 500, "DB-000"),
    ],
)
def test_dispatch_known_errors(make_app, kind, status, code):
    with _client_with_routes(make_app) as client:
        resp = client.get(f"/api/raise/{kind}")
    assert resp.status_code == status
    body = resp.json()
    assert body["errorCode"] == code
    assert body["requestId"] == resp.headers["X-Request-ID"]
    assert body["endpoint"] == f"/api/raise/{kind}"
    assert body["method"] == "GET"


def test_unauthorized_sets_www_authenticate(make_app):
    with _client_with_routes(make_app) as client:
        resp = client.get("/api/raise/unauthorized")
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_unknown_error_keeps_details_outside_production(make_app):
    with _client_with_routes(make_app) as client:
        resp = client.get("/api/raise/other")
    assert resp.status_code == 500
    body = resp.json()
    assert body["errorCode"] == "APP-001"
    assert body["message"] == "boom: secret internals"
    assert body["data"]["exception"] == "ValueError"
    assert "Traceback" in body["data"]["stack"]


def test_production_hides_unexpected_error_messages(make_app):
    with _client_with_routes(make_app, ENVIRONMENT="production") as client:
        unknown = client.get("/api/raise/other")
        database = client.get("/api/raise/database")
        not_found = client.get("/api/raise/not-found")

    assert unknown.status_code == 500
    assert unknown.json()["message"] == "Something went wrong."
    assert "data" not in unknown.json()
    assert "metadata" not in unknown.json()

    assert database.json()["message"] == "Something went wrong."
    # operational errors keep their message
    assert not_found.json()["message"] == "Thing not found"


def test_unmatched_route_returns_not_found_envelope(client):
    resp = client.get("/api/does-not-exist")
    assert resp.status_code == 404
    body = resp.json()
    assert body["errorCode"] == "NF-002"
    assert body["message"] == "Route not found"


def test_request_validation_error(client):
    resp = client.get("/api/users/not-a-number")
    assert resp.status_code == 400
    body = resp.json()
    assert body["errorCode"] == "VAL-000"
    assert body["data"]["errors"]


def test_method_not_allowed_keeps_status(client):
    resp = client.delete("/api/users")
    assert resp.status_code == 405
    assert resp.json()["errorCode"] == "VAL-000"
