"""
服务器元数据

健康检查等响应中携带的服务器信息（版本、环境、运行时长、运行时与内存）。
这些字段由服务端生成，调用方只能覆盖 status / service。
"""
import platform
import sys
import time
from typing import Any, Optional

from core.config import Settings, get_settings

try:
    import resource
except ImportError:  # Windows
    resource = None


_PROCESS_START = time.monotonic()

SERVER_FIELDS = ("version", "environment", "uptime", "server", "memory")
CUSTOMIZABLE_FIELDS = ("status", "service")


def get_uptime() -> float:
    """进程运行时长（秒）"""
    return round(time.monotonic() - _PROCESS_START, 3)


def get_memory_usage() -> Optional[dict[str, float]]:
    """进程常驻内存峰值（MB），不支持的平台返回 None"""
    if resource is None:
        return None
    max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux 单位为 KB，macOS 为字节
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return {"maxRss": round(max_rss / divisor, 2)}


def get_server_metadata(settings: Optional[Settings] = None) -> dict[str, Any]:
    settings = settings or get_settings()
    metadata: dict[str, Any] = {
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "uptime": get_uptime(),
        "server": {
            "pythonVersion": platform.python_version(),
            "platform": sys.platform,
            "arch": platform.machine(),
        },
    }
    memory = get_memory_usage()
    if memory is not None:
        metadata["memory"] = memory
    return metadata


def merge_with_server_metadata(custom: Any = None, settings: Optional[Settings] = None) -> dict[str, Any]:
    """
    合并自定义数据与服务器元数据

    自定义数据可以设置 status / service 以及其他附加字段，
    但不能覆盖 version、environment、uptime、server、memory。
    """
    merged = get_server_metadata(settings)
    if not isinstance(custom, dict):
        return merged

    for field in CUSTOMIZABLE_FIELDS:
        if custom.get(field) is not None:
            merged[field] = str(custom[field])
    for key, value in custom.items():
        if key in SERVER_FIELDS or key in CUSTOMIZABLE_FIELDS:
            continue
        merged[key] = value
    return merged
