"""
HTTP 指标中间件（纯 ASGI）

统计活跃请求数、请求耗时与请求总数。
"""
import time

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.metrics import MetricsCollector, route_label


class MetricsMiddleware:
    def __init__(self, app: ASGIApp, metrics: MetricsCollector):
        self.app = app
        self.metrics = metrics

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        self.metrics.http_active_requests.inc()
        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            self.metrics.http_active_requests.dec()
            self.metrics.observe_request(
                scope["method"],
                route_label(scope),
                status_code,
                time.perf_counter() - start_time,
            )
