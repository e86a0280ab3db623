"""
统一响应格式定义

所有响应（成功或失败）都使用同一个信封结构，携带追踪字段与耗时信息。
处理函数返回 ``JSONResponse`` 对象而不是直接写 socket，因此每个请求最多发送一次。
"""
import time
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional, Union

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from core.config import Settings, get_settings
from shared.codes import ErrorCategory, ErrorCode, category_for_code
from shared.codes.route_codes import GENERIC_ERROR_MESSAGE, GENERIC_SUCCESS_MESSAGE, RouteCodeRegistry


class ResponseStatus(IntEnum):
    SUCCESS = 200
    CREATED = 201
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    REQUEST_TIMEOUT = 408
    CONFLICT = 409
    GONE = 410
    PAYLOAD_TOO_LARGE = 413
    TOO_MANY_REQUESTS = 429
    INTERNAL_ERROR = 500
    BAD_GATEWAY = 502


# 各状态的默认消息
DEFAULT_MESSAGES: dict[int, str] = {
    ResponseStatus.SUCCESS: "Success",
    ResponseStatus.CREATED: "Resource created successfully",
    ResponseStatus.NOT_FOUND: "Not Found",
    ResponseStatus.INTERNAL_ERROR: "Unknown error occurred",
}


def utc_timestamp(ts: Optional[datetime] = None) -> str:
    """序列化时间戳为 UTC ISO8601（毫秒精度），统一使用 Z 结尾"""
    ts = ts or datetime.now(timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    else:
        ts = ts.astimezone(timezone.utc)
    return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class EnvelopeMetadata(BaseModel):
    """调试信息（仅非生产环境）"""
    model_config = ConfigDict(populate_by_name=True)

    ip: Optional[str] = None
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    user_id: Optional[str] = Field(default=None, alias="userId")


class ResponseEnvelope(BaseModel):
    """统一响应模型"""
    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(alias="requestId")
    message: Union[str, dict[str, Any]]
    timestamp: str
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")
    trace_id: Optional[str] = Field(default=None, alias="traceId")
    request_timestamp: Optional[str] = Field(default=None, alias="requestTimestamp")
    processing_time: Optional[int] = Field(default=None, alias="processingTime", ge=0)
    endpoint: Optional[str] = None
    method: Optional[str] = None
    data: Optional[Any] = None
    error_code: Optional[str] = Field(default=None, alias="errorCode")
    route_code: Optional[str] = Field(default=None, alias="routeCode")
    metadata: Optional[EnvelopeMetadata] = None


def _resolve_settings(request: Request, settings: Optional[Settings]) -> Settings:
    if settings is not None:
        return settings
    app = request.scope.get("app")
    app_settings = getattr(getattr(app, "state", None), "settings", None)
    return app_settings or get_settings()


def get_processing_time(start_time: Optional[float]) -> Optional[int]:
    """计算处理耗时（毫秒）；未记录开始时间时返回 None"""
    if start_time is None:
        return None
    return max(0, round((time.perf_counter() - start_time) * 1000))


def build_envelope(
    request: Request,
    message: Union[str, dict[str, Any]],
    *,
    data: Any = None,
    error_code: Optional[Union[ErrorCode, str]] = None,
    route_code: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> dict[str, Any]:
    """
    构建响应信封

    Args:
        request: 当前请求（从 request.state 读取请求元数据与开始时间）
        message: 响应消息
        data: 返回数据
        error_code: 系统错误码
        route_code: 路由级响应码

    Returns:
        dict: 可直接序列化为 JSON 的信封
    """
    settings = _resolve_settings(request, settings)
    state = request.state
    metadata = getattr(state, "metadata", None)

    fields: dict[str, Any] = {
        "request_id": (metadata.request_id if metadata else None)
        or getattr(state, "request_id", None)
        or "unknown",
        "message": message,
        "timestamp": utc_timestamp(),
    }

    if metadata is not None:
        if metadata.correlation_id:
            fields["correlation_id"] = metadata.correlation_id
        if metadata.trace_id:
            fields["trace_id"] = metadata.trace_id
        if metadata.request_timestamp:
            fields["request_timestamp"] = metadata.request_timestamp
        if metadata.path:
            fields["endpoint"] = metadata.path
        if metadata.method:
            fields["method"] = metadata.method

    processing_time = get_processing_time(getattr(state, "start_time", None))
    if processing_time is not None:
        fields["processing_time"] = processing_time

    if data is not None:
        fields["data"] = data
    if error_code:
        fields["error_code"] = error_code.value if isinstance(error_code, ErrorCode) else error_code
    if route_code:
        fields["route_code"] = route_code

    if not settings.is_production and metadata is not None:
        debug: dict[str, Any] = {}
        if metadata.ip:
            debug["ip"] = metadata.ip
        if metadata.user_agent:
            debug["user_agent"] = metadata.user_agent
        if metadata.user_id:
            debug["user_id"] = metadata.user_id
        fields["metadata"] = EnvelopeMetadata(**debug)

    envelope = ResponseEnvelope(**fields)
    return envelope.model_dump(mode="json", by_alias=True, exclude_unset=True)


def resolve_status(status: Union[ResponseStatus, ErrorCategory, int]) -> int:
    if isinstance(status, ErrorCategory):
        return status.http_status
    return int(status)


def envelope_response(
    request: Request,
    status: Union[ResponseStatus, ErrorCategory, int],
    message: Optional[Union[str, dict[str, Any]]] = None,
    *,
    data: Any = None,
    error_code: Optional[Union[ErrorCode, str]] = None,
    route_code: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
    settings: Optional[Settings] = None,
) -> JSONResponse:
    """按状态（或错误类别）构建信封并返回 JSONResponse"""
    status_code = resolve_status(status)
    if message is None:
        message = DEFAULT_MESSAGES.get(status_code, "An error occurred")
    body = build_envelope(
        request,
        message,
        data=data,
        error_code=error_code,
        route_code=route_code,
        settings=settings,
    )
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def success_response(
    request: Request,
    data: Any = None,
    message: str = "Success",
    route_code: Optional[str] = None,
) -> JSONResponse:
    """创建成功响应"""
    return envelope_response(request, ResponseStatus.SUCCESS, message, data=data, route_code=route_code)


def created_response(
    request: Request,
    data: Any = None,
    message: str = "Resource created successfully",
    route_code: Optional[str] = None,
) -> JSONResponse:
    return envelope_response(request, ResponseStatus.CREATED, message, data=data, route_code=route_code)


def error_response(
    request: Request,
    category: ErrorCategory,
    message: str,
    error_code: Optional[Union[ErrorCode, str]] = None,
    route_code: Optional[str] = None,
    data: Any = None,
) -> JSONResponse:
    """创建错误响应，状态码由错误类别决定"""
    return envelope_response(
        request,
        category,
        message,
        data=data,
        error_code=error_code,
        route_code=route_code,
    )


def minimal_error_body(request_id: Optional[str], message: str, error_code: str) -> dict[str, Any]:
    """限流/超时/查询注入等短路响应使用的精简结构"""
    return {
        "requestId": request_id or "unknown",
        "message": message,
        "errorCode": error_code,
        "timestamp": utc_timestamp(),
    }


def route_success_response(
    request: Request,
    registry: RouteCodeRegistry,
    route_name: str,
    key: str,
    data: Any = None,
    message: Optional[str] = None,
) -> JSONResponse:
    """使用路由级成功码创建成功响应；未注册时回退到通用成功消息"""
    route_code = registry.get_success_code(route_name, key)
    if route_code is None:
        return success_response(request, data=data, message=message or GENERIC_SUCCESS_MESSAGE)
    return success_response(
        request,
        data=data,
        message=message or route_code.message,
        route_code=route_code.code,
    )


def route_error_response(
    request: Request,
    registry: RouteCodeRegistry,
    route_name: str,
    key: str,
    system_code: ErrorCode,
    message: Optional[str] = None,
) -> JSONResponse:
    """
    使用路由级错误码创建错误响应

    状态码由系统错误码的类别决定；路由码未注册时回退为 400 通用错误，不抛异常。
    """
    route_code = registry.get_error_code(route_name, key)
    if route_code is None:
        return error_response(
            request,
            ErrorCategory.BAD_REQUEST,
            message or GENERIC_ERROR_MESSAGE,
            error_code=system_code,
        )
    return error_response(
        request,
        category_for_code(system_code),
        message or route_code.message,
        error_code=system_code,
        route_code=route_code.code,
    )
