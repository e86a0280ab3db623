"""
安全事件日志

记录可疑行为（扫描器 User-Agent、超长查询串）、认证失败、限流与注入尝试。
事件以 ``security_event`` 写入结构化日志，并计入 ``security_events_total``。
"""
import re
from enum import Enum
from typing import Any, Optional

from starlette.requests import Request
from starlette.responses import Response

from api.middleware.pipeline import PipelineContext, Stage
from core.config import Settings, get_settings
from core.logging_config import get_logger


logger = get_logger("security")


class SecurityEventType(str, Enum):
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    AUTH_FAILURE = "AUTH_FAILURE"
    RATE_LIMIT = "RATE_LIMIT"
    INJECTION_ATTEMPT = "INJECTION_ATTEMPT"


# 常见扫描器
SUSPICIOUS_USER_AGENTS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (r"sqlmap", r"nikto", r"nmap", r"masscan", r"scanner")
]


def _app_state(request: Request):
    return getattr(request.scope.get("app"), "state", None)


def log_security_event(
    request: Request,
    event_type: SecurityEventType,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """
    记录安全事件

    Args:
        request: 当前请求
        event_type: 事件类型
        details: 附加信息
    """
    state = _app_state(request)
    settings: Settings = getattr(state, "settings", None) or get_settings()
    if not settings.LOG_SECURITY_EVENTS:
        return

    metadata = getattr(request.state, "metadata", None)
    endpoint = getattr(metadata, "path", None) or request.url.path

    event: dict[str, Any] = {
        "event_type": event_type.value,
        "request_id": getattr(metadata, "request_id", None),
        "correlation_id": getattr(metadata, "correlation_id", None),
        "ip": getattr(metadata, "ip", None),
        "user_agent": getattr(metadata, "user_agent", None) or request.headers.get("user-agent"),
        "endpoint": endpoint,
        "method": request.method,
    }
    # 附加信息不能覆盖上面的标准字段
    for key, value in (details or {}).items():
        event.setdefault(key, value)
    logger.warning("security_event", **event)

    metrics = getattr(state, "metrics", None)
    if metrics is not None:
        metrics.record_security_event(event_type.value, endpoint)


def log_auth_failure(request: Request, reason: str, user_id: Optional[str] = None) -> None:
    log_security_event(request, SecurityEventType.AUTH_FAILURE, {"reason": reason, "user_id": user_id})


def log_rate_limit(request: Request, limit_type: str) -> None:
    log_security_event(request, SecurityEventType.RATE_LIMIT, {"limit_type": limit_type})


def log_injection_attempt(request: Request, injection_type: str, payload: Any) -> None:
    payload_text = payload if isinstance(payload, str) else repr(payload)
    log_security_event(
        request,
        SecurityEventType.INJECTION_ATTEMPT,
        {"injection_type": injection_type, "payload": payload_text[:200]},
    )


def is_suspicious_user_agent(user_agent: Optional[str]) -> bool:
    if not user_agent:
        return False
    return any(pattern.search(user_agent) for pattern in SUSPICIOUS_USER_AGENTS)


def security_logger_stage(settings: Settings) -> Stage:
    max_query_length = settings.SUSPICIOUS_QUERY_LENGTH

    async def security_logger(ctx: PipelineContext) -> Optional[Response]:
        request = ctx.request
        user_agent = request.headers.get("user-agent")
        if is_suspicious_user_agent(user_agent):
            log_security_event(
                request,
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                {"reason": "Suspicious user agent detected", "detected_user_agent": user_agent},
            )

        query_string = request.scope.get("query_string", b"")
        if len(query_string) > max_query_length:
            log_security_event(
                request,
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                {"reason": "Abnormally large query string", "query_length": len(query_string)},
            )
        return None

    return security_logger
