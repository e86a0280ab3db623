import pytest
from fastapi.testclient import TestClient

from api.middleware.rate_limiter import (
    RateLimiter,
    create_rate_limit_policy,
    default_rate_limit_policies,
)
from core.config import RateLimitSettings
from domain.common.exceptions import UnauthorizedError


def _client(make_app, **overrides):
    app = make_app(**overrides)

    @app.post("/api/auth/login")
    async def login():
        raise UnauthorizedError("Invalid credentials")

    @app.post("/api/auth/refresh")
    async def refresh():
        return {"ok": True}

    return app, TestClient(app)


def test_policies_most_specific_first(settings):
    limiter = RateLimiter.from_settings(settings)
    assert limiter.policy_for("/api/auth/password-reset/confirm").name == "password_reset"
    assert limiter.policy_for("/api/auth/login").name == "auth"
    assert limiter.policy_for("/api/users").name == "api"
    assert limiter.policy_for("/api").name == "api"
    assert limiter.policy_for("/apiary") is None
    assert limiter.policy_for("/") is None
    assert limiter.policy_for(settings.METRICS_PATH) is None


def test_default_policy_thresholds(make_settings):
    policies = {p.name: p for p in default_rate_limit_policies(make_settings())}
    assert policies["auth"].max_requests == 5
    assert policies["auth"].window_seconds == 900
    assert policies["auth"].skip_successful_requests
    assert policies["password_reset"].max_requests == 3
    assert policies["password_reset"].window_seconds == 3600
    assert policies["api"].max_requests == 1000

    production = {p.name: p for p in default_rate_limit_policies(make_settings(ENVIRONMENT="production"))}
    assert production["api"].max_requests == 100


def test_create_rate_limit_policy():
    policy = create_rate_limit_policy("uploads", 10, 60, path_prefixes=["/api/uploads"])
    assert policy.max_requests == 10
    assert policy.window_seconds == 60
    assert policy.error_code == "RATE_LIMIT_EXCEEDED"
    assert policy.matches("/api/uploads/1")

    limiter = RateLimiter([policy])
    assert all(limiter.hit(policy, "1.2.3.4") for _ in range(10))
    assert not limiter.hit(policy, "1.2.3.4")
    assert limiter.hit(policy, "5.6.7.8")


def test_sixth_failed_auth_attempt_is_limited(make_app):
    _, client = _client(make_app)
    with client:
        statuses = [client.post("/api/auth/login").status_code for _ in range(5)]
        resp = client.post("/api/auth/login")

    assert statuses == [401] * 5
    assert resp.status_code == 429
    body = resp.json()
    assert set(body) == {"requestId", "message", "errorCode", "timestamp"}
    assert body["errorCode"] == "AUTH_RATE_LIMIT_EXCEEDED"
    assert body["message"] == "Too many authentication attempts, please try again later."


def test_successful_auth_requests_not_counted(make_app):
    _, client = _client(make_app)
    with client:
        statuses = [client.post("/api/auth/refresh").status_code for _ in range(8)]
        failed = client.post("/api/auth/login")
    assert statuses == [200] * 8
    assert failed.status_code == 401


def test_limits_are_per_client_ip(make_app):
    _, client = _client(make_app)
    with client:
        for _ in range(5):
            client.post("/api/auth/login", headers={"X-Forwarded-For": "198.51.100.1"})
        blocked = client.post("/api/auth/login", headers={"X-Forwarded-For": "198.51.100.1"})
        other = client.post("/api/auth/login", headers={"X-Forwarded-For": "198.51.100.2"})
    assert blocked.status_code == 429
    assert other.status_code == 401


def test_password_reset_limit(make_app):
    _, client = _client(make_app)
    with client:
        statuses = [client.post("/api/auth/password-reset").status_code for _ in range(4)]
    assert statuses[:3] == [404] * 3
    assert statuses[3] == 429


def test_general_api_limit_headers_and_metrics(make_app):
    app, client = _client(make_app, rate_limit=RateLimitSettings(api_max=3))
    with client:
        responses = [client.get("/api/users") for _ in range(4)]

    assert [r.status_code for r in responses] == [200, 200, 200, 429]
    assert responses[0].headers["RateLimit-Limit"] == "3"
    assert responses[0].headers["RateLimit-Remaining"] == "2"
    assert int(responses[0].headers["RateLimit-Reset"]) <= 900

    limited = responses[3]
    assert limited.json()["errorCode"] == "RATE_LIMIT_EXCEEDED"
    assert limited.json()["message"] == "Too many requests from this IP, please try again later."
    assert limited.headers["X-Request-ID"]
    assert limited.headers["X-Content-Type-Options"] == "nosniff"

    registry = app.state.metrics.registry
    assert registry.get_sample_value(
        "rate_limit_hits_total", {"endpoint": "/api/users", "ip": "testclient"}
    ) == 1
    assert registry.get_sample_value(
        "security_events_total", {"event_type": "RATE_LIMIT", "endpoint": "/api/users"}
    ) == 1


def test_metrics_path_is_never_limited(make_app):
    _, client = _client(make_app, METRICS_PATH="/api/metrics", rate_limit=RateLimitSettings(api_max=1))
    with client:
        statuses = [client.get("/api/metrics").status_code for _ in range(5)]
    assert statuses == [200] * 5


@pytest.mark.parametrize("enabled,expected", [(True, 429), (False, 200)])
def test_rate_limit_can_be_disabled(make_app, enabled, expected):
    _, client = _client(make_app, rate_limit=RateLimitSettings(enabled=enabled, api_max=1))
    with client:
        client.get("/api/users")
        resp = client.get("/api/users")
    assert resp.status_code == expected


def test_policies_follow_custom_api_prefix(make_settings):
    limiter = RateLimiter.from_settings(make_settings(API_PREFIX="/v2"))
    assert limiter.policy_for("/v2/auth/password-reset").name == "password_reset"
    assert limiter.policy_for("/v2/auth/login").name == "auth"
    assert limiter.policy_for("/v2/orders").name == "api"
    assert limiter.policy_for("/api/auth/login") is None
