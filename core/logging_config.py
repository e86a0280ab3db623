"""
Structlog 日志配置模块
"""
import logging
import json
import structlog
from structlog.processors import TimeStamper, add_log_level, JSONRenderer
from structlog.dev import ConsoleRenderer
from structlog.contextvars import merge_contextvars
from structlog.stdlib import ProcessorFormatter
from typing import Any, List, Optional

from core.config import Settings, get_settings


def get_renderer(settings: Settings) -> Any:
    """根据环境选择渲染器 (JSON in production, Console otherwise).
    注意：structlog 会向 serializer 传入 default/sort_keys 等参数，需要适配。
    """
    if not settings.is_production:
        return ConsoleRenderer(colors=settings.DEBUG)

    def _dumps(obj, default=None, **kwargs):
        return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)
    return JSONRenderer(serializer=_dumps)


def configure_logging(settings: Optional[Settings] = None) -> None:
    """配置 structlog 并桥接标准库 logging 到同一处理链。"""
    settings = settings or get_settings()
    timestamper = TimeStamper(fmt="iso", utc=True)

    # 预处理链（同时用于 stdlib ProcessorFormatter 和 structlog.configure）
    shared_pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        timestamper,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            *shared_pre_chain,
            ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = ProcessorFormatter(
        foreign_pre_chain=shared_pre_chain,
        processors=[
            ProcessorFormatter.remove_processors_meta,
            get_renderer(settings),
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.INFO if settings.is_production else logging.DEBUG)


def log_settings_warnings(settings: Settings) -> None:
    """输出配置校验结果（回退到默认值的项以警告形式记录）。"""
    logger = get_logger("core.config")
    for warning in settings.warnings:
        logger.warning("env_warning", message=warning)
    if settings.warnings:
        logger.info(
            "env_validation",
            message="Environment variables validated with warnings. Application will continue.",
        )
    else:
        logger.info("env_validation", message="Environment variables validated successfully")


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """获取 structlog logger 实例。"""
    return structlog.get_logger(name)
