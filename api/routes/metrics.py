"""
Prometheus 指标路由
"""
from fastapi import APIRouter, Depends
from starlette.responses import Response

from api.dependencies import get_metrics
from core.metrics import MetricsCollector


async def metrics_endpoint(metrics: MetricsCollector = Depends(get_metrics)) -> Response:
    """Prometheus 文本格式的指标数据"""
    payload, content_type = metrics.render()
    return Response(content=payload, media_type=content_type)


def build_metrics_router(path: str = "/metrics") -> APIRouter:
    """按配置的路径挂载指标路由（不受限流影响）"""
    router = APIRouter(tags=["Monitoring"])
    router.add_api_route(path, metrics_endpoint, methods=["GET"], include_in_schema=False)
    return router
