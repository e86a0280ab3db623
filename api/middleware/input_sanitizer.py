"""
输入清洗 stage

- injection：请求体中以 ``$`` 开头或包含 ``.`` 的键被改写（``$`` 前缀 → ``_``，``.`` → ``_``）；
  查询参数不可修改，出现此类键直接拒绝（400 / VAL-001）
- xss：请求体中的字符串值做 HTML 转义；查询参数中的脚本特征只记录日志，不拦截
"""
import re
from typing import Any, Optional

from starlette.responses import JSONResponse, Response

from api.middleware.pipeline import PipelineContext, Stage
from api.middleware.security_logger import log_injection_attempt
from core.logging_config import get_logger
from core.response import minimal_error_body
from shared.codes import ErrorCode


logger = get_logger(__name__)

QUERY_INJECTION_MESSAGE = "Invalid query parameters detected. Operator injection attempt blocked."

_HTML_ESCAPES = {
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}
_HTML_ESCAPE_RE = re.compile("[<>\"'/]")

XSS_PATTERNS = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
]


def has_injection_key(key: str) -> bool:
    return key.startswith("$") or "." in key


def sanitize_key(key: str) -> str:
    if key.startswith("$"):
        key = "_" + key[1:]
    return key.replace(".", "_")


def sanitize_injection_keys(value: Any) -> tuple[Any, bool]:
    """
    递归改写危险键

    Returns:
        (清洗后的值, 是否有改动)
    """
    if isinstance(value, dict):
        changed = False
        result: dict[str, Any] = {}
        for key, item in value.items():
            clean_item, item_changed = sanitize_injection_keys(item)
            clean_key = sanitize_key(key) if isinstance(key, str) else key
            changed = changed or item_changed or clean_key != key
            result[clean_key] = clean_item
        return result, changed
    if isinstance(value, list):
        items = [sanitize_injection_keys(item) for item in value]
        return [item for item, _ in items], any(changed for _, changed in items)
    return value, False


def escape_html(text: str) -> str:
    return _HTML_ESCAPE_RE.sub(lambda m: _HTML_ESCAPES[m.group(0)], text)


def sanitize_xss(value: Any) -> tuple[Any, bool]:
    """递归转义所有字符串值（键不变）"""
    if isinstance(value, str):
        escaped = escape_html(value)
        return escaped, escaped != value
    if isinstance(value, dict):
        changed = False
        result: dict[Any, Any] = {}
        for key, item in value.items():
            result[key], item_changed = sanitize_xss(item)
            changed = changed or item_changed
        return result, changed
    if isinstance(value, list):
        items = [sanitize_xss(item) for item in value]
        return [item for item, _ in items], any(changed for _, changed in items)
    return value, False


def injection_stage() -> Stage:
    async def sanitize_injection(ctx: PipelineContext) -> Optional[Response]:
        bad_keys = [key for key in ctx.request.query_params.keys() if has_injection_key(key)]
        if bad_keys:
            log_injection_attempt(ctx.request, "query_operator", bad_keys)
            return JSONResponse(
                status_code=400,
                content=minimal_error_body(ctx.request_id, QUERY_INJECTION_MESSAGE, ErrorCode.VAL_001.value),
            )

        if ctx.body is None:
            return None
        body, changed = sanitize_injection_keys(ctx.body)
        if changed:
            logger.warning("request_body_keys_sanitized", path=ctx.request.url.path)
            log_injection_attempt(ctx.request, "body_operator", ctx.body)
            ctx.set_body(body)
        return None

    return sanitize_injection


def xss_stage() -> Stage:
    async def sanitize_xss_input(ctx: PipelineContext) -> Optional[Response]:
        for key, value in ctx.request.query_params.multi_items():
            if any(pattern.search(value) for pattern in XSS_PATTERNS):
                log_injection_attempt(ctx.request, "xss", f"{key}={value}")

        if ctx.body is None:
            return None
        body, changed = sanitize_xss(ctx.body)
        if changed:
            ctx.set_body(body)
        return None

    return sanitize_xss_input
