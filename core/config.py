"""
配置文件 - 项目配置管理

环境变量在启动时校验；非法值不会导致启动失败，而是回退到默认值并记录警告
（见 ``Settings.warnings``，由应用启动时写入日志）。
"""
from functools import lru_cache
from typing import Any, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    PrivateAttr,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


ENVIRONMENTS = ("development", "production", "qa", "local", "test")

DEFAULT_DEV_ORIGINS = [
    "http://localhost:5001",
    "http://localhost:3001",
    "http://localhost:5173",
]

# 校验期间收集的回退警告；模型构造完成后转移到实例上
_pending_warnings: list[str] = []


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if value[:1] in {"'", '"'}:
        value = value[1:]
    if value[-1:] in {"'", '"'}:
        value = value[:-1]
    return value.strip()


class RateLimitSettings(BaseModel):
    enabled: bool = True

    # General API limiter; api_max overrides the per-environment defaults
    window_seconds: int = 15 * 60
    api_max: Optional[int] = None
    api_max_production: int = 100
    api_max_default: int = 1000

    # Authentication endpoints (failed attempts only)
    auth_window_seconds: int = 15 * 60
    auth_max: int = 5
    # 未配置时按 API_PREFIX 推导（见 Settings.auth_rate_limit_paths）
    auth_paths: Optional[list[str]] = None

    # Password reset endpoints
    password_reset_window_seconds: int = 60 * 60
    password_reset_max: int = 3
    password_reset_paths: Optional[list[str]] = None


class SecurityHeaderSettings(BaseModel):
    frame_options: str = "DENY"
    xss_protection: str = "1; mode=block"
    content_security_policy: str = (
        "default-src 'self'; style-src 'self' 'unsafe-inline'; script-src 'self'; "
        "img-src 'self' data: https:; connect-src 'self'; font-src 'self'; "
        "object-src 'none'; media-src 'self'; frame-src 'none'"
    )
    hsts_max_age: int = 31536000  # 1 year
    hsts_include_subdomains: bool = True
    hsts_preload: bool = True
    referrer_policy: str = "no-referrer"
    no_cache: bool = True


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    ENVIRONMENT: str = Field(
        default="development",
        validation_alias=AliasChoices("ENVIRONMENT", "APP_ENV", "NODE_ENV"),
    )
    SERVICE_NAME: str = Field(default="APP_SERVICE")
    VERSION: str = Field(default="1.0.0", validation_alias=AliasChoices("VERSION", "APP_VERSION"))
    DEBUG: bool = Field(default=False)
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=5001)
    API_PREFIX: str = Field(default="/api")
    METRICS_PATH: str = Field(default="/metrics")

    # CORS配置：生产环境只允许显式配置的来源
    CORS_ORIGINS: Union[list[str], str, None] = Field(
        default=None,
        validation_alias=AliasChoices("ALLOWED_ORIGINS", "CORS_ORIGINS"),
    )

    # 请求限制
    MAX_JSON_SIZE: int = Field(default=10 * 1024 * 1024)  # 10MB
    MAX_URLENCODED_SIZE: int = Field(default=1 * 1024 * 1024)  # 1MB
    MAX_PARAMETERS: int = Field(default=1000)
    REQUEST_TIMEOUT_MS: int = Field(
        default=30000,
        validation_alias=AliasChoices("REQUEST_TIMEOUT_MS", "REQUEST_TIMEOUT"),
    )

    # 安全日志
    LOG_SECURITY_EVENTS: bool = Field(default=True)
    SUSPICIOUS_QUERY_LENGTH: int = Field(default=10000)

    # 日志/请求体记录配置
    LOG_REQUEST_BODY_ENABLE_BY_DEFAULT: bool = Field(default=True)
    LOG_REQUEST_BODY_MAX_BYTES: int = Field(default=2048)

    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    security_headers: SecurityHeaderSettings = Field(default_factory=SecurityHeaderSettings)

    _warnings: list[str] = PrivateAttr(default_factory=list)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
        populate_by_name=True,
    )

    def __init__(self, **values: Any):
        # 回退警告在校验期间收集；校验失败时也不能遗留给下一个实例
        _pending_warnings.clear()
        try:
            super().__init__(**values)
        finally:
            _pending_warnings.clear()

    @field_validator(
        "ENVIRONMENT",
        "SERVICE_NAME",
        "PORT",
        "MAX_JSON_SIZE",
        "MAX_URLENCODED_SIZE",
        "MAX_PARAMETERS",
        "REQUEST_TIMEOUT_MS",
        "SUSPICIOUS_QUERY_LENGTH",
        mode="wrap",
    )
    @classmethod
    def _fallback_to_default(
        cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo
    ) -> Any:
        """非法值回退到默认值，而不是让启动失败。"""
        name = info.field_name
        default = cls.model_fields[name].get_default(call_default_factory=True)
        if isinstance(value, str):
            value = _strip_quotes(value)
        try:
            result = handler(value)
        except ValidationError:
            _pending_warnings.append(f"Invalid {name} value {value!r}. Using default: {default}")
            return default
        if name == "ENVIRONMENT":
            result = str(result).lower()
            if result not in ENVIRONMENTS:
                _pending_warnings.append(
                    f"Invalid {name} value {value!r}, must be one of: {', '.join(ENVIRONMENTS)}. "
                    f"Using default: {default}"
                )
                return default
        elif name == "SERVICE_NAME":
            if not result:
                _pending_warnings.append(f"{name} is empty. Using default: {default}")
                return default
        elif name == "PORT":
            if not 0 < result < 65536:
                _pending_warnings.append(f"Invalid {name} value {value!r}. Using default: {default}")
                return default
        elif result <= 0:
            _pending_warnings.append(f"{name} must be positive, got {value!r}. Using default: {default}")
            return default
        return result

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """允许 JSON 字符串或逗号分隔字符串两种格式。"""
        if v is None or isinstance(v, list):
            return v
        if isinstance(v, str):
            s = _strip_quotes(v)
            if not s:
                return []
            if s.startswith("[") and s.endswith("]"):
                import json
                try:
                    arr = json.loads(s)
                    if isinstance(arr, list):
                        return [str(item) for item in arr]
                except ValueError:
                    pass
            return [item.strip() for item in s.split(",") if item.strip()]
        return v

    @model_validator(mode="after")
    def _finalize(self):
        if self.CORS_ORIGINS is None:
            self.CORS_ORIGINS = [] if self.is_production else list(DEFAULT_DEV_ORIGINS)
        self._warnings = list(_pending_warnings)
        _pending_warnings.clear()
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def warnings(self) -> list[str]:
        """启动时校验产生的警告"""
        return list(self._warnings)

    @property
    def request_timeout_seconds(self) -> float:
        return self.REQUEST_TIMEOUT_MS / 1000.0

    @property
    def api_rate_limit_max(self) -> int:
        if self.rate_limit.api_max is not None:
            return self.rate_limit.api_max
        if self.is_production:
            return self.rate_limit.api_max_production
        return self.rate_limit.api_max_default

    @property
    def auth_rate_limit_paths(self) -> list[str]:
        if self.rate_limit.auth_paths is not None:
            return list(self.rate_limit.auth_paths)
        return [f"{self.API_PREFIX.rstrip('/')}/auth"]

    @property
    def password_reset_rate_limit_paths(self) -> list[str]:
        if self.rate_limit.password_reset_paths is not None:
            return list(self.rate_limit.password_reset_paths)
        prefix = self.API_PREFIX.rstrip("/")
        return [f"{prefix}/auth/password-reset", f"{prefix}/auth/forgot-password"]


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
