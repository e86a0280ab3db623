"""
路由级响应码定义

格式：ROUTE-NNN-TYPE
- ROUTE：路由标识（如 USR 表示用户，API 表示健康检查）
- NNN：序号
- TYPE：SUC（成功）或 ERR（错误）
"""
from shared.codes.route_codes import RouteCodeRegistry, RouteCodes, route_codes


API_HEALTH_CHECK = "api-health-check"
GET_USERS = "get-users"
CREATE_USER = "create-user"
UPDATE_USER = "update-user"
DELETE_USER = "delete-user"


ROUTE_CODE_DEFINITIONS: dict[str, RouteCodes] = {
    API_HEALTH_CHECK: route_codes(
        success={"VERIFY_SUCCESS": ("API-001-SUC", "API health check successful")},
        error={"VERIFY_FAILED": ("API-001-ERR", "API health check failed")},
    ),
    GET_USERS: route_codes(
        success={
            "USERS_RETRIEVED": ("USR-001-SUC", "Users retrieved successfully"),
            "USERS_EMPTY": ("USR-002-SUC", "No users found"),
        },
        error={
            "USERS_FETCH_FAILED": ("USR-001-ERR", "Failed to fetch users"),
            "USERS_DB_ERROR": ("USR-002-ERR", "Database error while fetching users"),
            "USERS_UNAUTHORIZED": ("USR-003-ERR", "Unauthorized to access users"),
        },
    ),
    CREATE_USER: route_codes(
        success={"USER_CREATED": ("USR-010-SUC", "User created successfully")},
        error={
            "USER_CREATION_FAILED": ("USR-010-ERR", "Failed to create user"),
            "USER_ALREADY_EXISTS": ("USR-011-ERR", "User already exists"),
            "USER_VALIDATION_FAILED": ("USR-012-ERR", "User validation failed"),
        },
    ),
    UPDATE_USER: route_codes(
        success={"USER_UPDATED": ("USR-020-SUC", "User updated successfully")},
        error={
            "USER_UPDATE_FAILED": ("USR-020-ERR", "Failed to update user"),
            "USER_NOT_FOUND": ("USR-021-ERR", "User not found"),
        },
    ),
    DELETE_USER: route_codes(
        success={"USER_DELETED": ("USR-030-SUC", "User deleted successfully")},
        error={
            "USER_DELETE_FAILED": ("USR-030-ERR", "Failed to delete user"),
            "USER_NOT_FOUND": ("USR-031-ERR", "User not found"),
        },
    ),
}


def build_route_code_registry() -> RouteCodeRegistry:
    """注册全部路由码并冻结，启动后只读"""
    registry = RouteCodeRegistry()
    for route_name, codes in ROUTE_CODE_DEFINITIONS.items():
        registry.register(route_name, codes)
    registry.freeze()
    return registry
