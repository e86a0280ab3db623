"""
Request Metadata 中间件
为每个请求生成/透传追踪ID，记录请求元数据与开始时间，并通过contextvars传递给日志系统
"""
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Optional

import structlog
from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.response import utc_timestamp


REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"
TRACE_ID_HEADER = "X-Trace-ID"

# 定义context变量，用于在请求生命周期内共享追踪信息
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)


@dataclass(frozen=True)
class RequestMetadata:
    """请求元数据（创建后只读）"""
    request_id: str
    correlation_id: str
    trace_id: str
    request_timestamp: str
    method: str
    path: str
    original_url: str
    ip: str
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    query_params: Optional[dict[str, Any]] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None


def get_client_ip_from_request(request: Request) -> str:
    """
    获取客户端真实IP

    优先级：X-Forwarded-For 第一个地址 > X-Real-IP > socket 地址 > "unknown"
    """
    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        # 取第一个IP（原始客户端IP）
        first = x_forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _parse_content_length(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _authenticated_user_id(scope: Scope) -> Optional[str]:
    user = scope.get("user")
    if user is not None and getattr(user, "is_authenticated", False):
        identity = getattr(user, "identity", None)
        return str(identity) if identity else None
    return None


def build_request_metadata(request: Request) -> RequestMetadata:
    scope = request.scope
    query_string = scope.get("query_string", b"").decode("latin-1")
    original_url = request.url.path + (f"?{query_string}" if query_string else "")
    query_params = dict(request.query_params)
    session = scope.get("session")
    session_id = session.get("id") if isinstance(session, dict) else None

    return RequestMetadata(
        request_id=str(uuid.uuid4()),
        correlation_id=request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4()),
        trace_id=request.headers.get(TRACE_ID_HEADER) or str(uuid.uuid4()),
        request_timestamp=utc_timestamp(),
        method=request.method,
        path=request.url.path,
        original_url=original_url,
        ip=get_client_ip_from_request(request),
        user_agent=request.headers.get("User-Agent"),
        referer=request.headers.get("Referer"),
        content_type=request.headers.get("Content-Type"),
        content_length=_parse_content_length(request.headers.get("Content-Length")),
        query_params=query_params or None,
        user_id=_authenticated_user_id(scope),
        session_id=str(session_id) if session_id else None,
    )


class RequestMetadataMiddleware:
    """
    请求元数据中间件（最先执行）

    功能：
    1. 生成request_id，透传或生成correlation_id/trace_id
    2. 把元数据与开始时间写入request.state，供后续中间件与响应构建使用
    3. 设置contextvars并绑定到structlog上下文
    4. 在每个响应头中返回三个追踪ID
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        metadata = build_request_metadata(request)

        # 设置到request.state以便在应用内部访问
        request.state.metadata = metadata
        request.state.request_id = metadata.request_id
        request.state.client_ip = metadata.ip
        request.state.start_time = time.perf_counter()

        request_id_var.set(metadata.request_id)
        correlation_id_var.set(metadata.correlation_id)
        trace_id_var.set(metadata.trace_id)
        client_ip_var.set(metadata.ip)

        # 绑定到structlog上下文
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=metadata.request_id,
            correlation_id=metadata.correlation_id,
            trace_id=metadata.trace_id,
            client_ip=metadata.ip,
            method=metadata.method,
            path=metadata.path,
        )

        async def send_with_trace_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers[REQUEST_ID_HEADER] = metadata.request_id
                headers[CORRELATION_ID_HEADER] = metadata.correlation_id
                headers[TRACE_ID_HEADER] = metadata.trace_id
            await send(message)

        await self.app(scope, receive, send_with_trace_headers)


def get_request_id() -> Optional[str]:
    """获取当前请求的request_id，不在请求上下文中则返回None"""
    return request_id_var.get()


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def get_trace_id() -> Optional[str]:
    return trace_id_var.get()


def get_client_ip() -> Optional[str]:
    """获取当前请求的客户端IP"""
    return client_ip_var.get()
