"""
请求限制相关 stage

- body_limits：请求体大小限制，解析 JSON / 表单请求体
- request_timeout：设置请求超时截止时间（由管道 runner 执行取消与 408 响应）
- content_type：带请求体的写请求只接受 JSON 或表单
- parameter_limit：查询参数 + 请求体字段总数限制
"""
import json
from typing import Any, Optional
from urllib.parse import parse_qsl

import anyio
from starlette.responses import Response

from api.middleware.pipeline import BODY_FORM, BODY_JSON, PipelineContext, Stage
from core.config import Settings
from domain.common.exceptions import BadRequestError, PayloadTooLargeError, ValidationError
from shared.codes import ErrorCode


JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# 不检查 Content-Type 的方法
SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}

INVALID_CONTENT_TYPE_MESSAGE = (
    "Invalid Content-Type. Expected application/json or application/x-www-form-urlencoded"
)


def body_kind_for(content_type: str) -> Optional[str]:
    if content_type == JSON_CONTENT_TYPE or content_type.endswith("+json"):
        return BODY_JSON
    if content_type == FORM_CONTENT_TYPE:
        return BODY_FORM
    return None


def _has_body(ctx: PipelineContext) -> bool:
    headers = ctx.request.headers
    if "transfer-encoding" in headers:
        return True
    try:
        return int(headers.get("content-length") or 0) > 0
    except ValueError:
        return False


def _too_many_parameters(limit: int) -> ValidationError:
    return ValidationError(f"Too many parameters. Maximum allowed: {limit}", ErrorCode.VAL_005)


def _form_to_dict(pairs: list[tuple[str, str]]) -> dict[str, Any]:
    """重复的字段合并为列表"""
    form: dict[str, Any] = {}
    for key, value in pairs:
        if key in form:
            existing = form[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                form[key] = [existing, value]
        else:
            form[key] = value
    return form


def body_limits_stage(settings: Settings) -> Stage:
    async def body_limits(ctx: PipelineContext) -> Optional[Response]:
        if not _has_body(ctx):
            return None

        kind = body_kind_for(ctx.content_type)
        limit = settings.MAX_URLENCODED_SIZE if kind == BODY_FORM else settings.MAX_JSON_SIZE

        declared = ctx.request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            raise PayloadTooLargeError(f"Request body too large. Maximum allowed: {limit} bytes")

        raw = await ctx.read_body(limit)
        ctx.body_kind = kind
        if not raw:
            return None

        if kind == BODY_JSON:
            try:
                ctx.body = json.loads(raw)
            except ValueError:
                raise BadRequestError("Invalid JSON payload", ErrorCode.VAL_001)
        elif kind == BODY_FORM:
            try:
                pairs = parse_qsl(
                    raw.decode("utf-8", errors="replace"),
                    keep_blank_values=True,
                    max_num_fields=settings.MAX_PARAMETERS,
                )
            except ValueError:
                raise _too_many_parameters(settings.MAX_PARAMETERS)
            ctx.body = _form_to_dict(pairs)
        return None

    return body_limits


def request_timeout_stage(settings: Settings) -> Stage:
    timeout = settings.request_timeout_seconds

    async def request_timeout(ctx: PipelineContext) -> Optional[Response]:
        ctx.deadline = anyio.current_time() + timeout
        return None

    return request_timeout


def content_type_stage() -> Stage:
    async def content_type(ctx: PipelineContext) -> Optional[Response]:
        if ctx.request.method in SAFE_METHODS:
            return None
        if not ctx.raw_body:
            return None
        if body_kind_for(ctx.content_type) is None:
            raise BadRequestError(INVALID_CONTENT_TYPE_MESSAGE, ErrorCode.VAL_001)
        return None

    return content_type


def count_parameters(ctx: PipelineContext) -> int:
    count = len(set(ctx.request.query_params.keys()))
    if isinstance(ctx.body, dict):
        count += len(ctx.body)
    return count


def parameter_limit_stage(settings: Settings) -> Stage:
    limit = settings.MAX_PARAMETERS

    async def parameter_limit(ctx: PipelineContext) -> Optional[Response]:
        if count_parameters(ctx) > limit:
            raise _too_many_parameters(limit)
        return None

    return parameter_limit
