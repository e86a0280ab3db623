import json

import anyio
import pytest
from fastapi import Request
from fastapi.testclient import TestClient


def _client(make_app, **overrides):
    app = make_app(**overrides)

    @app.post("/api/echo")
    async def echo(request: Request):
        return {"raw": (await request.body()).decode("utf-8")}

    @app.get("/api/slow")
    async def slow():
        await anyio.sleep(2)
        return {"done": True}

    @app.get("/api/fast")
    async def fast():
        return {"done": True}

    return TestClient(app)


def test_invalid_content_type_rejected(make_app):
    with _client(make_app) as client:
        resp = client.post("/api/echo", content=b"hello", headers={"Content-Type": "text/plain"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["errorCode"] == "VAL-001"
    assert body["message"].startswith("Invalid Content-Type")


def test_empty_body_skips_content_type_check(make_app):
    with _client(make_app) as client:
        resp = client.post("/api/echo", headers={"Content-Type": "text/plain"})
    assert resp.status_code == 200


def test_malformed_json_rejected(make_app):
    with _client(make_app) as client:
        resp = client.post("/api/echo", content=b"{bad json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["errorCode"] == "VAL-001"


def test_json_body_too_large(make_app):
    with _client(make_app, MAX_JSON_SIZE=64) as client:
        resp = client.post("/api/echo", json={"data": "x" * 200})
    assert resp.status_code == 413
    assert resp.json()["errorCode"] == "VAL-005"


def test_urlencoded_body_too_large(make_app):
    with _client(make_app, MAX_URLENCODED_SIZE=16) as client:
        resp = client.post(
            "/api/echo",
            content=b"field=" + b"y" * 64,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    assert resp.status_code == 413


def test_json_within_limit_passes(make_app):
    with _client(make_app, MAX_JSON_SIZE=64) as client:
        resp = client.post("/api/echo", json={"a": 1})
    assert resp.status_code == 200
    assert json.loads(resp.json()["raw"]) == {"a": 1}


def test_too_many_form_fields(make_app):
    with _client(make_app, MAX_PARAMETERS=3) as client:
        resp = client.post(
            "/api/echo",
            content=b"a=1&b=2&c=3&d=4",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    assert resp.status_code == 400
    body = resp.json()
    assert body["errorCode"] == "VAL-005"
    assert body["message"] == "Too many parameters. Maximum allowed: 3"


def test_query_plus_body_parameter_limit(make_app):
    with _client(make_app, MAX_PARAMETERS=3) as client:
        ok = client.post("/api/echo", params={"a": "1"}, json={"b": 1, "c": 2})
        too_many = client.post("/api/echo", params={"a": "1", "z": "2"}, json={"b": 1, "c": 2})
    assert ok.status_code == 200
    assert too_many.status_code == 400
    assert too_many.json()["errorCode"] == "VAL-005"


def test_request_timeout_sends_single_408(make_app):
    with _client(make_app, REQUEST_TIMEOUT_MS=50) as client:
        resp = client.get("/api/slow")
    # TestClient fails on a second response start, so one 408 means exactly one response
    assert resp.status_code == 408
    body = resp.json()
    assert set(body) == {"requestId", "message", "errorCode", "timestamp"}
    assert body["message"] == "Request timeout"
    assert body["errorCode"] == "REQUEST_TIMEOUT"
    assert body["requestId"] == resp.headers["X-Request-ID"]
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_fast_handler_not_affected_by_timeout(make_app):
    with _client(make_app, REQUEST_TIMEOUT_MS=1000) as client:
        resp = client.get("/api/fast")
    assert resp.status_code == 200
    assert resp.json() == {"done": True}


@pytest.mark.parametrize(
    "header,value",
    [
        ("X-Frame-Options", "DENY"),
        ("X-Content-Type-Options", "nosniff"),
        ("X-XSS-Protection", "1; mode=block"),
        ("Strict-Transport-Security", "max-age=31536000; includeSubDomains; preload"),
        ("Referrer-Policy", "no-referrer"),
        ("Cache-Control", "no-store, no-cache, must-revalidate, private"),
    ],
)
def test_security_headers_on_every_response(client, header, value):
    for path in ("/", "/api/missing"):
        resp = client.get(path)
        assert resp.headers[header] == value
    assert "default-src 'self'" in client.get("/").headers["Content-Security-Policy"]
