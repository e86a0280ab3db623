"""
安全管道中间件

按固定顺序执行一组 stage 函数，任何 stage 都可以短路请求：

- 返回 ``None``：继续下一个 stage
- 返回 ``Response``：直接发送该响应，不再进入业务处理
- 抛出 ``AppError``：交给 ``dispatch_error`` 转换为统一错误响应

全部 stage 通过后，把（可能已被清洗的）请求体重放给应用。
"""
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence
from urllib.parse import urlencode

import anyio
from starlette.datastructures import MutableHeaders
from starlette.requests import ClientDisconnect, Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.config import Settings
from core.exceptions import dispatch_error
from core.logging_config import get_logger
from core.metrics import MetricsCollector, route_label
from core.response import minimal_error_body
from domain.common.exceptions import AppError, PayloadTooLargeError
from shared.codes import REQUEST_TIMEOUT


logger = get_logger(__name__)

TIMEOUT_MESSAGE = "Request timeout"

BODY_JSON = "json"
BODY_FORM = "form"


@dataclass
class PipelineContext:
    """单个请求在管道中的共享状态"""
    request: Request
    settings: Settings
    metrics: Optional[MetricsCollector] = None

    raw_body: Optional[bytes] = None
    body: Any = None
    body_kind: Optional[str] = None
    body_modified: bool = False

    # 由 security_headers 等 stage 排队，最终响应发送时统一写入
    response_headers: dict[str, str] = field(default_factory=dict)
    # 超时截止时间（anyio 时钟），None 表示不限制
    deadline: Optional[float] = None
    timed_out: bool = False
    # 响应状态确定后回调，例如认证限流只统计失败请求
    response_hooks: list[Callable[[int], None]] = field(default_factory=list)

    @property
    def metadata(self):
        return getattr(self.request.state, "metadata", None)

    @property
    def request_id(self) -> Optional[str]:
        return getattr(self.request.state, "request_id", None)

    @property
    def client_ip(self) -> str:
        metadata = self.metadata
        return getattr(metadata, "ip", None) or "unknown"

    @property
    def content_type(self) -> str:
        return (self.request.headers.get("content-type") or "").split(";")[0].strip().lower()

    async def read_body(self, limit: Optional[int] = None) -> bytes:
        """
        读取并缓存请求体

        Args:
            limit: 最大字节数，超过则抛出 PayloadTooLargeError
        """
        if self.raw_body is not None:
            return self.raw_body
        chunks: list[bytes] = []
        size = 0
        try:
            async for chunk in self.request.stream():
                size += len(chunk)
                if limit is not None and size > limit:
                    raise PayloadTooLargeError(f"Request body too large. Maximum allowed: {limit} bytes")
                chunks.append(chunk)
        except ClientDisconnect:
            logger.info("client_disconnected", path=self.request.url.path)
        self.raw_body = b"".join(chunks)
        return self.raw_body

    def set_body(self, body: Any) -> None:
        """替换解析后的请求体，重放时重新序列化"""
        self.body = body
        self.body_modified = True

    def serialized_body(self) -> bytes:
        if self.raw_body is None:
            return b""
        if not self.body_modified:
            return self.raw_body
        if self.body_kind == BODY_JSON:
            return json.dumps(self.body, ensure_ascii=False).encode("utf-8")
        if self.body_kind == BODY_FORM:
            return urlencode(self.body, doseq=True).encode("utf-8")
        return self.raw_body


Stage = Callable[[PipelineContext], Awaitable[Optional[Response]]]


class _ResponseGuard:
    """
    包装 ASGI send

    - 写入排队的响应头
    - 记录响应是否已开始、状态码
    - 超时响应发出后关闭，丢弃处理函数的后续消息
    """

    def __init__(self, ctx: PipelineContext, send: Send):
        self.ctx = ctx
        self.send = send
        self.started = False
        self.closed = False
        self.status: Optional[int] = None

    async def __call__(self, message: Message) -> None:
        if self.closed:
            return
        if message["type"] == "http.response.start":
            if self.started:
                return
            self.started = True
            self.status = message["status"]
            headers = MutableHeaders(scope=message)
            for name, value in self.ctx.response_headers.items():
                if name not in headers:
                    headers[name] = value
        elif not self.started:
            # 响应头已被丢弃，响应体一并丢弃
            return
        await self.send(message)


def _replay_receive(body: bytes, receive: Receive) -> Receive:
    replayed = False

    async def replay() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


def _set_content_length(scope: Scope, length: int) -> None:
    """重放后的请求体长度可能变化，同步修正 content-length"""
    headers = [(k, v) for k, v in scope.get("headers", []) if k.lower() != b"content-length"]
    if length or any(k.lower() == b"content-length" for k, _ in scope.get("headers", [])):
        headers.append((b"content-length", str(length).encode("latin-1")))
    scope["headers"] = headers


class SecurityPipelineMiddleware:
    """
    安全管道中间件

    stage 的顺序由调用方显式传入（见 ``build_default_stages``），
    由唯一的 runner 依次执行。非 HTTP 请求（websocket、lifespan）直接放行。
    """

    def __init__(
        self,
        app: ASGIApp,
        stages: Sequence[Stage],
        settings: Settings,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.app = app
        self.stages = list(stages)
        self.settings = settings
        self.metrics = metrics

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        await self.run_pipeline(scope, receive, send)

    async def run_pipeline(self, scope: Scope, receive: Receive, send: Send) -> None:
        ctx = PipelineContext(request=Request(scope, receive), settings=self.settings, metrics=self.metrics)
        guard = _ResponseGuard(ctx, send)

        try:
            response = await self._run_stages(ctx)
            if response is not None:
                await response(scope, receive, guard)
            else:
                await self._call_app(ctx, guard, scope, receive)
        finally:
            self._run_hooks(ctx, guard.status)

    async def _run_stages(self, ctx: PipelineContext) -> Optional[Response]:
        for stage in self.stages:
            try:
                response = await stage(ctx)
            except AppError as exc:
                return dispatch_error(ctx.request, exc)
            except Exception as exc:
                logger.error(
                    "pipeline_stage_failed",
                    stage=getattr(stage, "__name__", repr(stage)),
                    error=str(exc),
                    exc_info=exc,
                )
                return dispatch_error(ctx.request, exc)
            if response is not None:
                logger.debug(
                    "pipeline_short_circuit",
                    stage=getattr(stage, "__name__", repr(stage)),
                    status_code=response.status_code,
                )
                return response
        return None

    async def _call_app(self, ctx: PipelineContext, guard: _ResponseGuard, scope: Scope, receive: Receive) -> None:
        app_receive = receive
        if ctx.raw_body is not None:
            body = ctx.serialized_body()
            _set_content_length(scope, len(body))
            app_receive = _replay_receive(body, receive)

        async def call_app() -> None:
            try:
                await self.app(scope, app_receive, guard)
            except Exception as exc:
                if guard.started:
                    raise
                response = dispatch_error(Request(scope, app_receive), exc)
                await response(scope, app_receive, guard)

        if ctx.deadline is None:
            await call_app()
            return

        # 处理函数与超时看门狗并发执行；同步处理函数占用线程时无法立即取消，
        # 看门狗仍会按时发出 408，线程结束后的响应被丢弃
        app_scope = anyio.CancelScope()
        app_error: Optional[BaseException] = None

        async with anyio.create_task_group() as tg:

            async def run_app() -> None:
                nonlocal app_error
                try:
                    with app_scope:
                        await call_app()
                except Exception as exc:
                    app_error = exc
                finally:
                    if not guard.closed:
                        tg.cancel_scope.cancel()

            async def watchdog() -> None:
                await anyio.sleep_until(ctx.deadline)
                if guard.started:
                    return
                guard.closed = True
                app_scope.cancel()
                with anyio.CancelScope(shield=True):
                    await self._send_timeout(ctx, guard, scope, receive)

            tg.start_soon(run_app)
            tg.start_soon(watchdog)

        if app_error is not None:
            raise app_error

    async def _send_timeout(self, ctx: PipelineContext, guard: _ResponseGuard, scope: Scope, receive: Receive) -> None:
        logger.warning(
            "request_timeout",
            timeout_ms=ctx.settings.REQUEST_TIMEOUT_MS,
            path=ctx.request.url.path,
            method=ctx.request.method,
        )
        response = JSONResponse(
            status_code=408,
            content=minimal_error_body(ctx.request_id, TIMEOUT_MESSAGE, REQUEST_TIMEOUT),
        )
        await response(scope, receive, _ResponseGuard(ctx, guard.send))
        guard.status = 408
        ctx.timed_out = True
        if ctx.metrics is not None:
            ctx.metrics.record_error(ctx.request.method, route_label(scope), REQUEST_TIMEOUT)

    @staticmethod
    def _run_hooks(ctx: PipelineContext, status: Optional[int]) -> None:
        status_code = status if status is not None else 500
        for hook in ctx.response_hooks:
            hook(status_code)

