"""
默认安全管道的 stage 顺序

headers → body limits → timeout → content-type → parameter limit
→ rate limit → sanitization → security logging
"""
from typing import Optional

from api.middleware.input_sanitizer import injection_stage, xss_stage
from api.middleware.pipeline import Stage
from api.middleware.rate_limiter import RateLimiter, rate_limit_stage
from api.middleware.request_limits import (
    body_limits_stage,
    content_type_stage,
    parameter_limit_stage,
    request_timeout_stage,
)
from api.middleware.security_headers import security_headers_stage
from api.middleware.security_logger import security_logger_stage
from core.config import Settings
from core.metrics import MetricsCollector


def build_default_stages(
    settings: Settings,
    metrics: Optional[MetricsCollector] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> list[Stage]:
    """
    按固定顺序组装默认 stage 列表

    Args:
        settings: 应用配置
        metrics: 指标收集器（限流命中计数）
        rate_limiter: 自定义限流器；默认按配置创建，使用进程内存储
    """
    stages: list[Stage] = [
        security_headers_stage(settings),
        body_limits_stage(settings),
        request_timeout_stage(settings),
        content_type_stage(),
        parameter_limit_stage(settings),
    ]
    if settings.rate_limit.enabled:
        limiter = rate_limiter or RateLimiter.from_settings(settings)
        stages.append(rate_limit_stage(limiter, metrics))
    stages.extend([
        injection_stage(),
        xss_stage(),
        security_logger_stage(settings),
    ])
    return stages
