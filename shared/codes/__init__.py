"""
Shared error codes used across layers (Domain/Core/API).

Single source of truth for the ``PREFIX-NNN`` error codes, their default
messages, the error categories and the category → HTTP status mapping.
Route-specific codes live in ``shared.codes.route_codes``.
"""
from enum import Enum


class ErrorPrefix(str, Enum):
    """错误码前缀（每个前缀对应一个错误类别）"""

    APP = "APP"  # Application
    VAL = "VAL"  # Validation
    AUT = "AUT"  # Authentication
    AUTZ = "AUTZ"  # Authorization
    DB = "DB"  # Database
    EXT = "EXT"  # External service
    NF = "NF"  # Not found
    BL = "BL"  # Business logic
    SYS = "SYS"  # System


class ErrorCode(str, Enum):
    """Error codes in the form PREFIX-NNN."""

    # Application errors (APP-XXX)
    APP_000 = "APP-000"  # Unknown application error
    APP_001 = "APP-001"  # Internal server error
    APP_002 = "APP-002"  # Service unavailable
    APP_003 = "APP-003"  # Request timeout

    # Validation errors (VAL-XXX)
    VAL_000 = "VAL-000"
    VAL_001 = "VAL-001"  # Invalid input format
    VAL_002 = "VAL-002"
    VAL_003 = "VAL-003"
    VAL_004 = "VAL-004"
    VAL_005 = "VAL-005"  # Field length / limit exceeded

    # Authentication errors (AUT-XXX)
    AUT_000 = "AUT-000"
    AUT_001 = "AUT-001"
    AUT_002 = "AUT-002"
    AUT_003 = "AUT-003"
    AUT_004 = "AUT-004"
    AUT_005 = "AUT-005"

    # Authorization errors (AUTZ-XXX)
    AUTZ_000 = "AUTZ-000"
    AUTZ_001 = "AUTZ-001"
    AUTZ_002 = "AUTZ-002"
    AUTZ_003 = "AUTZ-003"

    # Database errors (DB-XXX)
    DB_000 = "DB-000"
    DB_001 = "DB-001"
    DB_002 = "DB-002"
    DB_003 = "DB-003"
    DB_004 = "DB-004"
    DB_005 = "DB-005"

    # External service errors (EXT-XXX)
    EXT_000 = "EXT-000"
    EXT_001 = "EXT-001"
    EXT_002 = "EXT-002"
    EXT_003 = "EXT-003"

    # Not found errors (NF-XXX)
    NF_000 = "NF-000"
    NF_001 = "NF-001"
    NF_002 = "NF-002"  # Route not found
    NF_003 = "NF-003"

    # Business logic errors (BL-XXX)
    BL_000 = "BL-000"
    BL_001 = "BL-001"
    BL_002 = "BL-002"
    BL_003 = "BL-003"  # Duplicate entry
    BL_004 = "BL-004"

    # System errors (SYS-XXX)
    SYS_000 = "SYS-000"
    SYS_001 = "SYS-001"
    SYS_002 = "SYS-002"
    SYS_003 = "SYS-003"

    @property
    def prefix(self) -> ErrorPrefix:
        return ErrorPrefix(self.value.split("-", 1)[0])

    @property
    def default_message(self) -> str:
        return ERROR_MESSAGES[self]


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.APP_000: "An unknown application error occurred",
    ErrorCode.APP_001: "Internal server error",
    ErrorCode.APP_002: "Service is currently unavailable",
    ErrorCode.APP_003: "Request timeout",

    ErrorCode.VAL_000: "Validation error occurred",
    ErrorCode.VAL_001: "Invalid input format",
    ErrorCode.VAL_002: "Missing required field",
    ErrorCode.VAL_003: "Invalid field value",
    ErrorCode.VAL_004: "Invalid data type",
    ErrorCode.VAL_005: "Field length exceeded",

    ErrorCode.AUT_000: "Authentication error occurred",
    ErrorCode.AUT_001: "Invalid credentials",
    ErrorCode.AUT_002: "Authentication token has expired",
    ErrorCode.AUT_003: "Invalid authentication token",
    ErrorCode.AUT_004: "Authentication token is missing",
    ErrorCode.AUT_005: "Authentication required",

    ErrorCode.AUTZ_000: "Authorization error occurred",
    ErrorCode.AUTZ_001: "Insufficient permissions",
    ErrorCode.AUTZ_002: "Access denied",
    ErrorCode.AUTZ_003: "Resource is forbidden",

    ErrorCode.DB_000: "Database error occurred",
    ErrorCode.DB_001: "Database connection failed",
    ErrorCode.DB_002: "Database query failed",
    ErrorCode.DB_003: "Database transaction failed",
    ErrorCode.DB_004: "Database constraint violation",
    ErrorCode.DB_005: "Record not found in database",

    ErrorCode.EXT_000: "External service error occurred",
    ErrorCode.EXT_001: "External service is unavailable",
    ErrorCode.EXT_002: "External service timeout",
    ErrorCode.EXT_003: "Invalid response from external service",

    ErrorCode.NF_000: "Resource not found",
    ErrorCode.NF_001: "The requested resource was not found",
    ErrorCode.NF_002: "Route not found",
    ErrorCode.NF_003: "Endpoint not found",

    ErrorCode.BL_000: "Business logic error occurred",
    ErrorCode.BL_001: "Invalid operation",
    ErrorCode.BL_002: "Business rule violation",
    ErrorCode.BL_003: "Duplicate entry detected",
    ErrorCode.BL_004: "State conflict occurred",

    ErrorCode.SYS_000: "System error occurred",
    ErrorCode.SYS_001: "Configuration error",
    ErrorCode.SYS_002: "Environment error",
    ErrorCode.SYS_003: "Memory error",
}


class ErrorCategory(str, Enum):
    """错误类别，决定 HTTP 状态码"""

    INTERNAL = "InternalError"
    VALIDATION = "ValidationError"
    AUTHENTICATION = "AuthenticationError"
    AUTHORIZATION = "AuthorizationError"
    DATABASE = "DatabaseError"
    EXTERNAL = "ExternalServiceError"
    NOT_FOUND = "NotFoundError"
    BUSINESS_LOGIC = "BusinessLogicError"
    SYSTEM = "SystemError"
    BAD_REQUEST = "BadRequest"
    UNAUTHORIZED = "Unauthorized"
    FORBIDDEN = "Forbidden"
    CONFLICT = "Conflict"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    REQUEST_TIMEOUT = "RequestTimeout"
    TOO_MANY_REQUESTS = "TooManyRequests"

    @property
    def http_status(self) -> int:
        return CATEGORY_HTTP_STATUS[self]


CATEGORY_HTTP_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.INTERNAL: 500,
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.AUTHENTICATION: 401,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.DATABASE: 500,
    ErrorCategory.EXTERNAL: 502,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.BUSINESS_LOGIC: 409,
    ErrorCategory.SYSTEM: 500,
    ErrorCategory.BAD_REQUEST: 400,
    ErrorCategory.UNAUTHORIZED: 401,
    ErrorCategory.FORBIDDEN: 403,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.PAYLOAD_TOO_LARGE: 413,
    ErrorCategory.REQUEST_TIMEOUT: 408,
    ErrorCategory.TOO_MANY_REQUESTS: 429,
}

# Prefix → the category an error code belongs to by default
PREFIX_CATEGORY: dict[ErrorPrefix, ErrorCategory] = {
    ErrorPrefix.APP: ErrorCategory.INTERNAL,
    ErrorPrefix.VAL: ErrorCategory.VALIDATION,
    ErrorPrefix.AUT: ErrorCategory.AUTHENTICATION,
    ErrorPrefix.AUTZ: ErrorCategory.AUTHORIZATION,
    ErrorPrefix.DB: ErrorCategory.DATABASE,
    ErrorPrefix.EXT: ErrorCategory.EXTERNAL,
    ErrorPrefix.NF: ErrorCategory.NOT_FOUND,
    ErrorPrefix.BL: ErrorCategory.BUSINESS_LOGIC,
    ErrorPrefix.SYS: ErrorCategory.SYSTEM,
}


def category_for_code(code: ErrorCode) -> ErrorCategory:
    """Return the default category of an error code (derived from its prefix)."""
    return PREFIX_CATEGORY[ErrorCode(code).prefix]


# Error codes emitted by pipeline short-circuits (not PREFIX-NNN by contract)
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
AUTH_RATE_LIMIT_EXCEEDED = "AUTH_RATE_LIMIT_EXCEEDED"
PASSWORD_RESET_RATE_LIMIT_EXCEEDED = "PASSWORD_RESET_RATE_LIMIT_EXCEEDED"
REQUEST_TIMEOUT = "REQUEST_TIMEOUT"


__all__ = [
    "ErrorPrefix",
    "ErrorCode",
    "ERROR_MESSAGES",
    "ErrorCategory",
    "CATEGORY_HTTP_STATUS",
    "PREFIX_CATEGORY",
    "category_for_code",
    "RATE_LIMIT_EXCEEDED",
    "AUTH_RATE_LIMIT_EXCEEDED",
    "PASSWORD_RESET_RATE_LIMIT_EXCEEDED",
    "REQUEST_TIMEOUT",
]
