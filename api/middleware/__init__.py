
from .request_metadata import (
    RequestMetadata,
    RequestMetadataMiddleware,
    get_client_ip,
    get_correlation_id,
    get_request_id,
    get_trace_id,
)
from .logging import LoggingMiddleware
from .metrics import MetricsMiddleware
from .pipeline import PipelineContext, SecurityPipelineMiddleware
from .stages import build_default_stages

__all__ = [
    "RequestMetadata",
    "RequestMetadataMiddleware",
    "LoggingMiddleware",
    "MetricsMiddleware",
    "PipelineContext",
    "SecurityPipelineMiddleware",
    "build_default_stages",
    "get_request_id",
    "get_correlation_id",
    "get_trace_id",
    "get_client_ip",
]
