"""Prometheus metrics for the HTTP service.

Each application owns its own ``CollectorRegistry`` so tests can build
several apps in one process without duplicate-timeseries errors.
"""
from __future__ import annotations

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from prometheus_client import gc_collector, platform_collector, process_collector


class MetricsCollector:
    """Container for all HTTP/security metrics of the service."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, *, default_collectors: bool = True) -> None:
        self.registry = registry or CollectorRegistry()
        if default_collectors:
            # process_/python_ series, like the default registry exposes
            process_collector.ProcessCollector(registry=self.registry)
            platform_collector.PlatformCollector(registry=self.registry)
            gc_collector.GCCollector(registry=self.registry)

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            ["method", "route", "status_code"],
            buckets=(0.1, 0.3, 0.5, 0.7, 1, 3, 5, 7, 10),
            registry=self.registry,
        )
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total number of HTTP requests",
            ["method", "route", "status_code"],
            registry=self.registry,
        )
        self.http_active_requests = Gauge(
            "http_active_requests",
            "Number of active HTTP requests",
            registry=self.registry,
        )
        self.http_errors_total = Counter(
            "http_errors_total",
            "Total number of HTTP errors",
            ["method", "route", "error_code"],
            registry=self.registry,
        )
        self.security_events_total = Counter(
            "security_events_total",
            "Total number of security events",
            ["event_type", "endpoint"],
            registry=self.registry,
        )
        self.response_time = Histogram(
            "response_time_seconds",
            "Response time in seconds",
            ["endpoint", "method"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
            registry=self.registry,
        )
        self.rate_limit_hits = Counter(
            "rate_limit_hits_total",
            "Total number of rate limit hits",
            ["endpoint", "ip"],
            registry=self.registry,
        )

    def observe_request(self, method: str, route: str, status_code: int, duration: float) -> None:
        status = str(status_code)
        self.http_request_duration.labels(method=method, route=route, status_code=status).observe(duration)
        self.http_requests_total.labels(method=method, route=route, status_code=status).inc()
        self.response_time.labels(endpoint=route, method=method).observe(duration)

    def record_error(self, method: str, route: str, error_code: Optional[str]) -> None:
        self.http_errors_total.labels(method=method, route=route, error_code=error_code or "UNKNOWN").inc()

    def record_security_event(self, event_type: str, endpoint: Optional[str]) -> None:
        self.security_events_total.labels(event_type=event_type, endpoint=endpoint or "unknown").inc()

    def record_rate_limit_hit(self, endpoint: str, ip: str) -> None:
        self.rate_limit_hits.labels(endpoint=endpoint, ip=ip).inc()

    def render(self) -> tuple[bytes, str]:
        """Return the text exposition payload and its content type."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST


def route_label(scope) -> str:
    """
    Matched route template when routing already happened, else the raw path.

    Routes included with a router prefix may carry a template relative to
    that prefix; the prefix is recovered from the request path so that
    ``/api/users/{user_id}`` and ``/users/{user_id}`` never share a label.
    """
    path = scope.get("path") or ""
    route = scope.get("route")
    template = getattr(route, "path", None)
    if not template:
        return path or "unknown"

    regex = getattr(route, "path_regex", None)
    if regex is not None and not regex.match(path):
        for index, char in enumerate(path):
            if index and char == "/" and regex.match(path[index:]):
                return path[:index].rstrip("/") + template

    # Leading segments the template lacks are the mount prefix; :path params span segments
    if ":path}" not in template:
        path_parts = path.rstrip("/").split("/")
        template_parts = template.rstrip("/").split("/")
        extra = len(path_parts) - len(template_parts)
        if extra > 0:
            return "/".join(path_parts[: extra + 1]) + template
    return template
