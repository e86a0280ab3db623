"""
Secure HTTP headers stage.

Queues security-related headers on the pipeline context; the pipeline runner
writes them onto whatever response is finally sent, short-circuits included:
- X-Frame-Options
- X-Content-Type-Options
- X-XSS-Protection
- Content-Security-Policy
- Strict-Transport-Security
- Referrer-Policy
- Cache-Control / Pragma / Expires

Never rejects a request.
"""
from typing import Optional

from starlette.responses import Response

from api.middleware.pipeline import PipelineContext, Stage
from core.config import SecurityHeaderSettings, Settings


def build_security_headers(config: SecurityHeaderSettings) -> dict[str, str]:
    """Resolve the configured header values into a name -> value mapping."""
    hsts = f"max-age={config.hsts_max_age}"
    if config.hsts_include_subdomains:
        hsts += "; includeSubDomains"
    if config.hsts_preload:
        hsts += "; preload"

    headers = {
        "X-Frame-Options": config.frame_options,
        "X-Content-Type-Options": "nosniff",
        "X-XSS-Protection": config.xss_protection,
        "Content-Security-Policy": config.content_security_policy,
        "Strict-Transport-Security": hsts,
        "Referrer-Policy": config.referrer_policy,
    }
    if config.no_cache:
        headers.update({
            "Cache-Control": "no-store, no-cache, must-revalidate, private",
            "Pragma": "no-cache",
            "Expires": "0",
        })
    return headers


def security_headers_stage(settings: Settings) -> Stage:
    headers = build_security_headers(settings.security_headers)

    async def security_headers(ctx: PipelineContext) -> Optional[Response]:
        ctx.response_headers.update(headers)
        return None

    return security_headers
