"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import (
    LoggingMiddleware,
    MetricsMiddleware,
    RequestMetadataMiddleware,
    SecurityPipelineMiddleware,
    build_default_stages,
)
from api.middleware.rate_limiter import RateLimiter
from api.middleware.request_metadata import CORRELATION_ID_HEADER, REQUEST_ID_HEADER, TRACE_ID_HEADER
from api.route_codes import build_route_code_registry
from api.routes import health, users
from api.routes.metrics import build_metrics_router
from core.config import Settings, get_settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger, log_settings_warnings
from core.metrics import MetricsCollector
from core.response import success_response


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    settings: Settings = app.state.settings
    logger.info(
        "application_startup",
        service=settings.SERVICE_NAME,
        environment=settings.ENVIRONMENT,
        version=settings.VERSION,
        port=settings.PORT,
        route_codes=len(app.state.route_codes),
    )
    yield
    logger.info("application_shutdown", message="Application shutdown")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    创建应用实例

    Args:
        settings: 应用配置，默认读取环境变量（测试中显式传入）
    """
    settings = settings or get_settings()

    # 初始化日志：在入口处显式配置，避免模块导入时的副作用
    configure_logging(settings)
    log_settings_warnings(settings)

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )

    metrics = MetricsCollector()
    rate_limiter = RateLimiter.from_settings(settings)
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.rate_limiter = rate_limiter
    # 路由码在处理请求前注册完毕并冻结
    app.state.route_codes = build_route_code_registry()

    # 添加中间件（注意顺序：后添加的先执行）
    # 4. 安全管道（固定顺序的 stage 列表）
    app.add_middleware(
        SecurityPipelineMiddleware,
        stages=build_default_stages(settings, metrics, rate_limiter),
        settings=settings,
        metrics=metrics,
    )
    # 3. 指标与访问日志
    app.add_middleware(MetricsMiddleware, metrics=metrics)
    app.add_middleware(LoggingMiddleware, settings=settings)
    # 2. CORS中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Requested-With",
            REQUEST_ID_HEADER,
            CORRELATION_ID_HEADER,
            TRACE_ID_HEADER,
        ],
        expose_headers=[REQUEST_ID_HEADER, CORRELATION_ID_HEADER, TRACE_ID_HEADER],
        max_age=86400,
    )
    # 1. 请求元数据中间件（最先执行，为后续中间件提供request_id）
    app.add_middleware(RequestMetadataMiddleware)

    # 注册全局异常处理器
    register_exception_handlers(app)

    # 注册路由
    app.include_router(build_metrics_router(settings.METRICS_PATH))
    app.include_router(health.router, prefix=settings.API_PREFIX)
    app.include_router(users.router, prefix=settings.API_PREFIX)

    # 根路径
    @app.get("/", tags=["Root"])
    async def root(request: Request):
        """API根路径"""
        return success_response(
            request,
            data={
                "name": settings.SERVICE_NAME,
                "version": settings.VERSION,
                "environment": settings.ENVIRONMENT,
                "health": f"{settings.API_PREFIX}/api-health-check/verify",
                "metrics": settings.METRICS_PATH,
            },
            message="Welcome to the API",
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    current = get_settings()
    uvicorn.run(
        "main:app",
        host=current.HOST,
        port=current.PORT,
        reload=current.DEBUG,
        log_level="debug" if current.DEBUG else "info"
    )
