import time

import anyio
import anyio.to_thread
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.responses import PlainTextResponse

from api.middleware import RequestMetadataMiddleware, SecurityPipelineMiddleware
from api.middleware.request_limits import request_timeout_stage
from core.exceptions import register_exception_handlers


def _pipeline_app(settings, stages):
    app = FastAPI()
    app.state.settings = settings

    @app.get("/api/ping")
    async def ping():
        return {"ok": True}

    app.add_middleware(SecurityPipelineMiddleware, stages=stages, settings=settings)
    app.add_middleware(RequestMetadataMiddleware)
    register_exception_handlers(app)
    return app


def test_failing_stage_returns_error_envelope(settings):
    async def broken(ctx):
        raise RuntimeError("stage blew up")

    with TestClient(_pipeline_app(settings, [broken])) as client:
        resp = client.get("/api/ping")

    assert resp.status_code == 500
    body = resp.json()
    assert body["requestId"] == resp.headers["X-Request-ID"]
    assert body["errorCode"] == "APP-001"
    assert body["message"] == "stage blew up"


def test_failing_stage_masked_in_production(make_settings):
    async def broken(ctx):
        raise KeyError("internal detail")

    settings = make_settings(ENVIRONMENT="production")
    with TestClient(_pipeline_app(settings, [broken])) as client:
        resp = client.get("/api/ping")

    assert resp.status_code == 500
    assert resp.json()["message"] == "Something went wrong."


def test_stages_run_in_order_until_short_circuit(settings):
    calls = []

    def stage(name, response=None):
        async def run(ctx):
            calls.append(name)
            return response

        return run

    stages = [stage("first"), stage("second", PlainTextResponse("stop", status_code=403)), stage("third")]
    with TestClient(_pipeline_app(settings, stages)) as client:
        resp = client.get("/api/ping")

    assert resp.status_code == 403
    assert calls == ["first", "second"]


def _http_scope(path="/api/slow"):
    return {
        "type": "http",
        "scheme": "http",
        "method": "GET",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [],
    }


@pytest.mark.asyncio
async def test_timeout_sent_while_blocking_handler_still_running(make_settings):
    settings = make_settings(REQUEST_TIMEOUT_MS=50)

    async def blocking_app(scope, receive, send):
        # sync handlers run in a worker thread that cannot be cancelled
        await anyio.to_thread.run_sync(time.sleep, 0.5)
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"late"})

    middleware = SecurityPipelineMiddleware(blocking_app, [request_timeout_stage(settings)], settings=settings)

    started = time.perf_counter()
    sent = []

    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    async def send(message):
        sent.append((time.perf_counter() - started, message))

    await middleware(_http_scope(), receive, send)

    starts = [(elapsed, message) for elapsed, message in sent if message["type"] == "http.response.start"]
    assert len(starts) == 1
    elapsed, message = starts[0]
    assert message["status"] == 408
    assert elapsed < 0.4
    assert all(message.get("body") != b"late" for _, message in sent)


@pytest.mark.asyncio
async def test_response_started_before_deadline_is_kept(make_settings):
    settings = make_settings(REQUEST_TIMEOUT_MS=100)

    async def streaming_app(scope, receive, send):
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await anyio.sleep(0.3)
        await send({"type": "http.response.body", "body": b"done"})

    middleware = SecurityPipelineMiddleware(streaming_app, [request_timeout_stage(settings)], settings=settings)
    sent = []

    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    async def send(message):
        sent.append(message)

    await middleware(_http_scope(), receive, send)

    assert [m["type"] for m in sent] == ["http.response.start", "http.response.body"]
    assert sent[0]["status"] == 200
    assert sent[1]["body"] == b"done"
