"""
Rate limiting stage.

Fixed window per client IP, backed by the ``limits`` package (the engine
slowapi is built on). Policies are matched by path prefix, most specific
first: password reset, authentication, then the general API limiter.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional, Sequence

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter
from starlette.responses import JSONResponse, Response

from api.middleware.pipeline import PipelineContext, Stage
from api.middleware.security_logger import log_rate_limit
from core.config import Settings
from core.logging_config import get_logger
from core.metrics import MetricsCollector
from core.response import minimal_error_body
from shared.codes import (
    AUTH_RATE_LIMIT_EXCEEDED,
    PASSWORD_RESET_RATE_LIMIT_EXCEEDED,
    RATE_LIMIT_EXCEEDED,
)


logger = get_logger(__name__)

GENERAL_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."
AUTH_LIMIT_MESSAGE = "Too many authentication attempts, please try again later."
PASSWORD_RESET_LIMIT_MESSAGE = "Too many password reset attempts, please try again later."


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    item: RateLimitItem
    message: str
    error_code: str
    path_prefixes: tuple[str, ...] = ()
    # Only failed responses (status >= 400) consume the quota
    skip_successful_requests: bool = False
    standard_headers: bool = True

    @property
    def max_requests(self) -> int:
        return self.item.amount

    @property
    def window_seconds(self) -> int:
        return self.item.get_expiry()

    def matches(self, path: str) -> bool:
        return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in self.path_prefixes)

    def specificity(self) -> int:
        return max((len(prefix) for prefix in self.path_prefixes), default=0)


def create_rate_limit_policy(
    name: str,
    max_requests: int,
    window_seconds: int,
    message: str = GENERAL_LIMIT_MESSAGE,
    error_code: str = RATE_LIMIT_EXCEEDED,
    path_prefixes: Sequence[str] = (),
    skip_successful_requests: bool = False,
    standard_headers: bool = True,
) -> RateLimitPolicy:
    """Build a custom fixed-window policy: ``max_requests`` per ``window_seconds``."""
    return RateLimitPolicy(
        name=name,
        item=RateLimitItemPerSecond(max_requests, window_seconds),
        message=message,
        error_code=error_code,
        path_prefixes=tuple(path_prefixes),
        skip_successful_requests=skip_successful_requests,
        standard_headers=standard_headers,
    )


def default_rate_limit_policies(settings: Settings) -> list[RateLimitPolicy]:
    config = settings.rate_limit
    return [
        create_rate_limit_policy(
            "password_reset",
            config.password_reset_max,
            config.password_reset_window_seconds,
            message=PASSWORD_RESET_LIMIT_MESSAGE,
            error_code=PASSWORD_RESET_RATE_LIMIT_EXCEEDED,
            path_prefixes=settings.password_reset_rate_limit_paths,
        ),
        create_rate_limit_policy(
            "auth",
            config.auth_max,
            config.auth_window_seconds,
            message=AUTH_LIMIT_MESSAGE,
            error_code=AUTH_RATE_LIMIT_EXCEEDED,
            path_prefixes=settings.auth_rate_limit_paths,
            skip_successful_requests=True,
        ),
        create_rate_limit_policy(
            "api",
            settings.api_rate_limit_max,
            config.window_seconds,
            path_prefixes=[settings.API_PREFIX],
        ),
    ]


@dataclass
class RateLimiter:
    policies: list[RateLimitPolicy]
    storage: Storage = field(default_factory=MemoryStorage)
    exempt_paths: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        self.policies = sorted(self.policies, key=lambda p: p.specificity(), reverse=True)
        self._strategy = FixedWindowRateLimiter(self.storage)

    @classmethod
    def from_settings(cls, settings: Settings, storage: Optional[Storage] = None) -> "RateLimiter":
        return cls(
            policies=default_rate_limit_policies(settings),
            storage=storage or MemoryStorage(),
            exempt_paths=frozenset({settings.METRICS_PATH}),
        )

    def policy_for(self, path: str) -> Optional[RateLimitPolicy]:
        if path in self.exempt_paths:
            return None
        for policy in self.policies:
            if policy.matches(path):
                return policy
        return None

    def hit(self, policy: RateLimitPolicy, key: str) -> bool:
        return self._strategy.hit(policy.item, policy.name, key)

    def test(self, policy: RateLimitPolicy, key: str) -> bool:
        return self._strategy.test(policy.item, policy.name, key)

    def headers(self, policy: RateLimitPolicy, key: str) -> dict[str, str]:
        stats = self._strategy.get_window_stats(policy.item, policy.name, key)
        reset = max(0, int(stats.reset_time - time.time()))
        return {
            "RateLimit-Limit": str(policy.max_requests),
            "RateLimit-Remaining": str(max(0, stats.remaining)),
            "RateLimit-Reset": str(reset),
        }

    def reset(self) -> None:
        self.storage.reset()


def rate_limit_stage(
    limiter: RateLimiter,
    metrics: Optional[MetricsCollector] = None,
) -> Stage:
    async def rate_limit(ctx: PipelineContext) -> Optional[Response]:
        path = ctx.request.url.path
        policy = limiter.policy_for(path)
        if policy is None:
            return None

        key = ctx.client_ip
        if policy.skip_successful_requests:
            allowed = limiter.test(policy, key)
            if allowed:
                def count_failure(status_code: int) -> None:
                    if status_code >= 400:
                        limiter.hit(policy, key)

                ctx.response_hooks.append(count_failure)
        else:
            allowed = limiter.hit(policy, key)

        if policy.standard_headers:
            ctx.response_headers.update(limiter.headers(policy, key))

        if allowed:
            return None

        logger.warning("rate_limit_exceeded", policy=policy.name, ip=key, path=path)
        if metrics is not None:
            metrics.record_rate_limit_hit(path, key)
        log_rate_limit(ctx.request, policy.name)
        return JSONResponse(
            status_code=429,
            content=minimal_error_body(ctx.request_id, policy.message, policy.error_code),
        )

    return rate_limit
