"""
错误分发与全局异常处理器

``dispatch_error`` 是把任意异常转换为统一响应信封的唯一入口：
FastAPI 异常处理器与安全管道都调用它。
"""
import traceback
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import Settings, get_settings
from core.logging_config import get_logger
from core.metrics import route_label
from core.response import envelope_response, utc_timestamp
from domain.common.exceptions import AppError, NotFoundError, ValidationError
from shared.codes import ErrorCategory, ErrorCode


logger = get_logger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong."

# HTTP状态码 → (错误码, 错误类别)
_HTTP_STATUS_ERRORS: dict[int, tuple[ErrorCode, ErrorCategory]] = {
    400: (ErrorCode.VAL_000, ErrorCategory.BAD_REQUEST),
    401: (ErrorCode.AUT_005, ErrorCategory.UNAUTHORIZED),
    403: (ErrorCode.AUTZ_002, ErrorCategory.FORBIDDEN),
    404: (ErrorCode.NF_002, ErrorCategory.NOT_FOUND),
    405: (ErrorCode.VAL_000, ErrorCategory.BAD_REQUEST),
    408: (ErrorCode.APP_003, ErrorCategory.REQUEST_TIMEOUT),
    409: (ErrorCode.BL_004, ErrorCategory.CONFLICT),
    413: (ErrorCode.VAL_005, ErrorCategory.PAYLOAD_TOO_LARGE),
    503: (ErrorCode.APP_002, ErrorCategory.INTERNAL),
}

_STARLETTE_DEFAULT_DETAILS = {"Not Found", "Method Not Allowed"}


def _settings_for(request: Request) -> Settings:
    app = request.scope.get("app")
    return getattr(getattr(app, "state", None), "settings", None) or get_settings()


def _from_http_exception(exc: StarletteHTTPException) -> AppError:
    code, category = _HTTP_STATUS_ERRORS.get(
        exc.status_code, (ErrorCode.APP_001, ErrorCategory.INTERNAL)
    )
    detail = exc.detail if isinstance(exc.detail, str) else None
    if exc.status_code == 404:
        # 未匹配路由（catch-all）使用 NF-002 的默认消息
        return NotFoundError(None if detail in _STARLETTE_DEFAULT_DETAILS else detail, code)
    return AppError(code, category, detail)


def _log_error(request: Request, error: AppError, status_code: int) -> None:
    metadata = getattr(request.state, "metadata", None)
    context: dict[str, Any] = {
        "code": error.code.value,
        "category": error.category.value,
        "status_code": status_code,
        "request_id": getattr(metadata, "request_id", None) or getattr(request.state, "request_id", None),
        "correlation_id": getattr(metadata, "correlation_id", None),
        "trace_id": getattr(metadata, "trace_id", None),
        "endpoint": getattr(metadata, "path", None) or request.url.path,
        "method": getattr(metadata, "method", None) or request.method,
        "ip": getattr(metadata, "ip", None),
        "user_agent": getattr(metadata, "user_agent", None),
        "user_id": getattr(metadata, "user_id", None),
        "timestamp": utc_timestamp(error.timestamp),
        "is_operational": error.is_operational,
    }
    if status_code >= 500 or not error.is_operational:
        logger.error("app_error", error=error.message, **context)
    else:
        logger.warning("app_error", error=error.message, **context)


def dispatch_error(request: Request, exc: Exception) -> JSONResponse:
    """
    把异常转换为统一错误响应

    - AppError：按类别决定状态码；生产环境下非预期错误隐藏原始消息
    - 参数校验异常：VAL-000 / 400
    - HTTP异常：按状态码映射错误码，保留原状态码
    - 其他异常：包装为内部错误 APP-001 / 500
    """
    settings = _settings_for(request)
    status_code: Optional[int] = None
    headers: Optional[dict[str, str]] = None
    data: Any = None

    if isinstance(exc, AppError):
        error = exc
    elif isinstance(exc, RequestValidationError):
        errors = exc.errors()
        first_error = errors[0] if errors else {}
        error = ValidationError(first_error.get("msg") or None, ErrorCode.VAL_000)
        data = {"errors": jsonable_encoder(errors)}
    elif isinstance(exc, StarletteHTTPException):
        error = _from_http_exception(exc)
        status_code = exc.status_code
        headers = getattr(exc, "headers", None)
    else:
        error = AppError(
            ErrorCode.APP_001,
            ErrorCategory.INTERNAL,
            str(exc) or None,
            is_operational=False,
        )
        error.__traceback__ = exc.__traceback__
        if not settings.is_production:
            # 非生产环境返回堆栈，便于排查
            data = {
                "exception": type(exc).__name__,
                "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            }

    status_code = status_code or error.status_code
    message = error.message
    if settings.is_production and not error.is_operational:
        message = GENERIC_ERROR_MESSAGE

    if status_code == 401 and headers is None:
        headers = {"WWW-Authenticate": "Bearer"}

    _log_error(request, error, status_code)

    metrics = getattr(getattr(request.scope.get("app"), "state", None), "metrics", None)
    if metrics is not None:
        metrics.record_error(request.method, route_label(request.scope), error.code.value)

    request.state.error_code = error.code.value
    return envelope_response(
        request,
        status_code,
        message,
        data=data,
        error_code=error.code,
        headers=headers,
        settings=settings,
    )


def register_exception_handlers(app: FastAPI):
    """
    注册全局异常处理器

    Args:
        app: FastAPI应用实例
    """

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        """处理应用错误"""
        return dispatch_error(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理参数验证异常"""
        return dispatch_error(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """处理HTTP异常（包括未匹配路由的404）"""
        return dispatch_error(request, exc)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """处理所有未捕获的异常"""
        logger.error("unhandled_exception", error=str(exc), exc_info=exc)
        return dispatch_error(request, exc)
