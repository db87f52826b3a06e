"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class NotFoundError(DomainError):
    """Resource absent, or present but outside the caller's visibility scope."""

    def __init__(self, message: str = "Resource not found", *, code: str = "RESOURCE_NOT_FOUND"):
        super().__init__(code=code, http_status=404, message=message)


class AuthorizationError(DomainError):
    """Visible resource, disallowed action."""

    def __init__(
        self,
        message: str = "You are not authorized to perform this action",
        *,
        action: str | None = None,
        resource: str | None = None,
    ):
        details = None
        if action is not None:
            details = {"action": action, "resource": resource}
        super().__init__(code="AUTHORIZATION_ERROR", http_status=403, message=message, details=details)


class ValidationError(DomainError):
    """One or more field-level invariant violations."""

    def __init__(self, errors: list[dict[str, str]], message: str = "Validation failed"):
        self.errors = errors
        super().__init__(
            code="VALIDATION_ERROR",
            http_status=422,
            message=message,
            details={"errors": errors},
        )

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])


class ConflictError(DomainError):
    """Uniqueness violation, e.g. a duplicate order number under concurrent creation."""

    def __init__(self, message: str, *, code: str = "CONFLICT", details: dict[str, Any] | None = None):
        super().__init__(code=code, http_status=409, message=message, details=details)


class MissingParameterError(DomainError):
    """Malformed request shape."""

    def __init__(self, param: str):
        super().__init__(
            code="PARAMETER_MISSING",
            http_status=400,
            message=f"Required parameter missing: {param}",
            details={"param": param},
        )
