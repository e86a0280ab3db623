"""应用错误定义，供处理函数与中间件抛出。

核心（core）层仅负责把错误转换为统一响应，这里只描述错误本身：
错误码、类别以及是否属于可预期（operational）的错误。
"""
from __future__ import annotations

import traceback
from datetime import datetime, timezone
from typing import Any, Optional

from shared.codes import ErrorCategory, ErrorCode, ErrorPrefix, category_for_code


class AppError(Exception):
    """应用错误基类

    ``status_code`` 始终由 ``category`` 推导，不能单独设置。
    """

    def __init__(
        self,
        code: ErrorCode,
        category: Optional[ErrorCategory] = None,
        message: Optional[str] = None,
        is_operational: bool = True,
    ) -> None:
        self.code = ErrorCode(code)
        self.category = category or category_for_code(self.code)
        self.message = message or self.code.default_message or "An error occurred"
        self.timestamp = datetime.now(timezone.utc)
        self.is_operational = is_operational
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.category.http_status

    @property
    def prefix(self) -> ErrorPrefix:
        return self.code.prefix

    def to_dict(self, include_stack: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": type(self).__name__,
            "code": self.code.value,
            "type": self.category.value,
            "prefix": self.prefix.value,
            "message": self.message,
            "statusCode": self.status_code,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "isOperational": self.is_operational,
        }
        if include_stack:
            data["stack"] = "".join(traceback.format_exception(type(self), self, self.__traceback__))
        return data


class InternalError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.APP_001):
        super().__init__(code, ErrorCategory.INTERNAL, message)


class ValidationError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.VAL_000):
        super().__init__(code, ErrorCategory.VALIDATION, message)


class BadRequestError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.VAL_000):
        super().__init__(code, ErrorCategory.BAD_REQUEST, message)


class AuthenticationError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.AUT_000):
        super().__init__(code, ErrorCategory.AUTHENTICATION, message)


class UnauthorizedError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.AUT_005):
        super().__init__(code, ErrorCategory.UNAUTHORIZED, message)


class AuthorizationError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.AUTZ_000):
        super().__init__(code, ErrorCategory.AUTHORIZATION, message)


class ForbiddenError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.AUTZ_002):
        super().__init__(code, ErrorCategory.FORBIDDEN, message)


class DatabaseError(AppError):
    """数据库错误（非预期错误，生产环境不暴露原始信息）"""

    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.DB_000):
        super().__init__(code, ErrorCategory.DATABASE, message, is_operational=False)


class ExternalServiceError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.EXT_000):
        super().__init__(code, ErrorCategory.EXTERNAL, message)


class NotFoundError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.NF_001):
        super().__init__(code, ErrorCategory.NOT_FOUND, message)


class BusinessLogicError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.BL_000):
        super().__init__(code, ErrorCategory.BUSINESS_LOGIC, message)


class ConflictError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.BL_003):
        super().__init__(code, ErrorCategory.CONFLICT, message)


class SystemError(AppError):  # noqa: A001 - mirrors the error category name
    """系统错误（非预期错误）"""

    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.SYS_000):
        super().__init__(code, ErrorCategory.SYSTEM, message, is_operational=False)


class RequestTimeoutError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.APP_003):
        super().__init__(code, ErrorCategory.REQUEST_TIMEOUT, message)


class PayloadTooLargeError(AppError):
    def __init__(self, message: Optional[str] = None, code: ErrorCode = ErrorCode.VAL_005):
        super().__init__(code, ErrorCategory.PAYLOAD_TOO_LARGE, message)
