"""
用户API路由（示例）

演示路由级成功码/错误码的用法，数据为内存中的示例数据。
"""
from fastapi import APIRouter, Depends, Request

from api.dependencies import get_route_codes
from api.route_codes import GET_USERS
from core.logging_config import get_logger
from core.response import route_error_response, route_success_response
from domain.common.exceptions import DatabaseError, NotFoundError
from shared.codes import ErrorCode
from shared.codes.route_codes import RouteCodeRegistry

logger = get_logger(__name__)

router = APIRouter(
    prefix="/users",
    tags=["用户管理"]
)

SAMPLE_USERS = (
    {"id": 1, "name": "John Doe", "email": "john@example.com"},
    {"id": 2, "name": "Jane Smith", "email": "jane@example.com"},
)


async def load_users() -> list[dict]:
    """示例数据源，替换为真实的仓储调用"""
    return [dict(user) for user in SAMPLE_USERS]


@router.get("", summary="获取用户列表")
async def list_users(
    request: Request,
    registry: RouteCodeRegistry = Depends(get_route_codes),
):
    """
    获取用户列表

    - 有数据：USR-001-SUC
    - 无数据：USR-002-SUC
    - 数据源错误：USR-002-ERR（DB-002）
    """
    try:
        users = await load_users()
    except DatabaseError as exc:
        logger.error("users_fetch_failed", error=exc.message)
        return route_error_response(request, registry, GET_USERS, "USERS_DB_ERROR", ErrorCode.DB_002)

    if not users:
        return route_success_response(request, registry, GET_USERS, "USERS_EMPTY", data={"users": [], "count": 0})
    return route_success_response(
        request,
        registry,
        GET_USERS,
        "USERS_RETRIEVED",
        data={"users": users, "count": len(users)},
    )


@router.get("/{user_id}", summary="获取用户详情")
async def get_user(
    user_id: int,
    request: Request,
    registry: RouteCodeRegistry = Depends(get_route_codes),
):
    """根据ID获取用户，不存在时返回 404（NF-001）"""
    users = await load_users()
    user = next((u for u in users if u["id"] == user_id), None)
    if user is None:
        error_code = registry.get_error_code(GET_USERS, "USERS_FETCH_FAILED")
        raise NotFoundError(error_code.message if error_code else None, ErrorCode.NF_001)
    return route_success_response(request, registry, GET_USERS, "USERS_RETRIEVED", data={"user": user})
