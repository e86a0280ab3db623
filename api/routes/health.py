"""
健康检查API路由
"""
from fastapi import APIRouter, Depends, Request

from api.dependencies import get_app_settings, get_route_codes
from api.route_codes import API_HEALTH_CHECK
from core.config import Settings
from core.response import route_success_response
from core.server_metadata import merge_with_server_metadata
from shared.codes.route_codes import RouteCodeRegistry

router = APIRouter(
    prefix="/api-health-check",
    tags=["Health"]
)


@router.get("/verify", summary="健康检查")
async def verify(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    registry: RouteCodeRegistry = Depends(get_route_codes),
):
    """
    返回服务状态、服务器元数据以及当前请求的上下文信息

    成功码：API-001-SUC
    """
    metadata = getattr(request.state, "metadata", None)
    health = merge_with_server_metadata(
        {
            "status": "healthy",
            "service": settings.SERVICE_NAME,
            "request": {
                "method": getattr(metadata, "method", None) or request.method,
                "path": getattr(metadata, "path", None) or request.url.path,
                "ip": getattr(metadata, "ip", None),
                "userAgent": getattr(metadata, "user_agent", None),
                "correlationId": getattr(metadata, "correlation_id", None),
                "traceId": getattr(metadata, "trace_id", None),
            },
        },
        settings,
    )
    return route_success_response(request, registry, API_HEALTH_CHECK, "VERIFY_SUCCESS", data=health)
