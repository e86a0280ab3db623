"""
API依赖项 - 从应用状态中获取共享对象
"""
from fastapi import Request

from core.config import Settings, get_settings
from core.metrics import MetricsCollector
from shared.codes.route_codes import RouteCodeRegistry


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_route_codes(request: Request) -> RouteCodeRegistry:
    """获取启动时构建的路由码注册表"""
    return request.app.state.route_codes


def get_metrics(request: Request) -> MetricsCollector:
    return request.app.state.metrics
