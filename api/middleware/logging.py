"""
请求/响应日志中间件
记录所有HTTP请求和响应，包括耗时统计
"""
import json
import time
from typing import Any, Optional
from urllib.parse import parse_qs

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import Settings
from core.logging_config import get_logger


logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    日志记录中间件

    功能：
    1. 记录请求信息（方法、路径、参数等）
    2. 记录响应信息（状态码、耗时等）
    3. 在响应头中返回处理时间 X-Process-Time
    """

    # 跳过日志的路径（指标路径在初始化时加入）
    SKIP_PATHS = {"/docs", "/redoc", "/openapi.json"}

    # 敏感字段，日志中需要脱敏
    SENSITIVE_FIELDS = {"password", "access_token", "refresh_token", "id_token", "token", "secret"}

    def __init__(self, app: ASGIApp, settings: Settings):
        super().__init__(app)
        self.settings = settings
        self.skip_paths = self.SKIP_PATHS | {settings.METRICS_PATH}
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.skip_paths:
            return await call_next(request)

        start_time = time.perf_counter()
        request_info = await self._get_request_info(request)
        logger.info("request_started", **request_info)

        response = await call_next(request)

        duration = time.perf_counter() - start_time
        self._log_response(request, response, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _get_request_info(self, request: Request) -> dict:
        """
        获取请求信息

        Args:
            request: FastAPI请求对象

        Returns:
            请求信息字典
        """
        info: dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
        }
        if request.query_params:
            info["query_params"] = self._sanitize_data(dict(request.query_params))

        if request.method in ["POST", "PUT", "PATCH"] and self._should_log_body(request):
            body_snippet = await self._extract_and_sanitize_body(request)
            if body_snippet is not None:
                info["body"] = body_snippet
            else:
                info["has_body"] = True

        metadata = getattr(request.state, "metadata", None)
        if metadata is not None:
            if metadata.user_agent:
                info["user_agent"] = metadata.user_agent
            if metadata.referer:
                info["referer"] = metadata.referer
            if metadata.content_length is not None:
                info["content_length"] = metadata.content_length

        return info

    def _should_log_body(self, request: Request) -> bool:
        # X-Log-Body: true/false 可按请求开启/关闭
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            enabled = True
        elif header in {"false", "0", "no"}:
            enabled = False
        else:
            enabled = self.enable_body_log_default and not self.settings.is_production
        if not enabled:
            return False
        # 只读取声明长度不超过上限的请求体，大请求体交给安全管道限制
        length = request.headers.get("content-length")
        return bool(length and length.isdigit() and int(length) <= self.max_body_log_bytes)

    async def _extract_and_sanitize_body(self, request: Request) -> Optional[Any]:
        body = await request.body()
        if not body:
            return None

        text = body.decode("utf-8", errors="ignore")
        content_type = request.headers.get("content-type", "").lower()
        parsed: Any
        if "application/json" in content_type:
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = text
        elif "application/x-www-form-urlencoded" in content_type:
            parsed = {k: v if len(v) > 1 else v[0] for k, v in parse_qs(text).items()}
        else:
            return None

        return self._sanitize_data(parsed)

    def _sanitize_data(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: ("***" if str(k).lower() in self.SENSITIVE_FIELDS else self._sanitize_data(v))
                for k, v in data.items()
            }
        if isinstance(data, list):
            return [self._sanitize_data(v) for v in data]
        return data

    def _log_response(self, request: Request, response: Response, duration: float, request_info: dict):
        """
        记录响应日志

        Args:
            request: 请求对象
            response: 响应对象
            duration: 请求处理时间（秒）
            request_info: 请求信息
        """
        status_code = response.status_code

        log_data = {
            "status_code": status_code,
            "duration": round(duration, 4),
            **request_info,
        }
        error_code = getattr(request.state, "error_code", None)
        if error_code:
            log_data["error_code"] = error_code

        if status_code < 400:
            logger.info("request_completed", **log_data)
        elif status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)
