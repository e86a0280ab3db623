"""
Route-specific response codes.

Each route may register success/error codes in the form ``ROUTE-NNN-SUC`` /
``ROUTE-NNN-ERR`` layered on top of the system error codes. The registry is
built once at startup and only read while serving requests.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class RouteCode:
    code: str
    message: str


@dataclass(frozen=True)
class RouteCodes:
    success: dict[str, RouteCode] = field(default_factory=dict)
    error: dict[str, RouteCode] = field(default_factory=dict)


class RouteCodeRegistryFrozenError(RuntimeError):
    """Raised when codes are registered after the registry was frozen."""


class RouteCodeRegistry:
    """Registry of route name → success/error code bundles."""

    def __init__(self) -> None:
        self._routes: dict[str, RouteCodes] = {}
        self._frozen = False

    def register(self, route_name: str, codes: RouteCodes) -> RouteCodes:
        if self._frozen:
            raise RouteCodeRegistryFrozenError(
                f"Cannot register codes for '{route_name}': registry is frozen"
            )
        self._routes[route_name] = codes
        return codes

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get_success_code(self, route_name: str, key: str) -> Optional[RouteCode]:
        route = self._routes.get(route_name)
        return route.success.get(key) if route else None

    def get_error_code(self, route_name: str, key: str) -> Optional[RouteCode]:
        route = self._routes.get(route_name)
        return route.error.get(key) if route else None

    def get_route_codes(self, route_name: str) -> Optional[RouteCodes]:
        return self._routes.get(route_name)

    def has_route(self, route_name: str) -> bool:
        return route_name in self._routes

    def __len__(self) -> int:
        return len(self._routes)


def route_codes(
    success: Optional[dict[str, tuple[str, str]]] = None,
    error: Optional[dict[str, tuple[str, str]]] = None,
) -> RouteCodes:
    """Build a RouteCodes bundle from ``{key: (code, message)}`` mappings."""
    return RouteCodes(
        success={k: RouteCode(code=c, message=m) for k, (c, m) in (success or {}).items()},
        error={k: RouteCode(code=c, message=m) for k, (c, m) in (error or {}).items()},
    )


# Generic codes usable by any route
COMMON_RESPONSE_CODES: dict[str, RouteCode] = {
    "SUCCESS": RouteCode("SUC-000", "Operation completed successfully"),
    "CREATED": RouteCode("SUC-001", "Resource created successfully"),
    "UPDATED": RouteCode("SUC-002", "Resource updated successfully"),
    "DELETED": RouteCode("SUC-003", "Resource deleted successfully"),
    "RETRIEVED": RouteCode("SUC-004", "Resource retrieved successfully"),
    "NOT_FOUND": RouteCode("ERR-000", "Resource not found"),
    "VALIDATION_FAILED": RouteCode("ERR-001", "Validation failed"),
    "OPERATION_FAILED": RouteCode("ERR-002", "Operation failed"),
}

GENERIC_SUCCESS_MESSAGE = COMMON_RESPONSE_CODES["SUCCESS"].message
GENERIC_ERROR_MESSAGE = "An error occurred"


__all__ = [
    "RouteCode",
    "RouteCodes",
    "RouteCodeRegistry",
    "RouteCodeRegistryFrozenError",
    "route_codes",
    "COMMON_RESPONSE_CODES",
    "GENERIC_SUCCESS_MESSAGE",
    "GENERIC_ERROR_MESSAGE",
]
