"""
Service Errors

Typed failures raised by the service layer. Routers translate them into
HTTP responses using status_code and error_code; `details` carries extra
machine-readable context (e.g. offending serial numbers).
"""

from typing import Any


class ServiceError(Exception):
    """Base exception for service errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(ServiceError):
    """Malformed input. Never retried automatically."""

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR", **details: Any):
        super().__init__(message, error_code, status_code=400, details=details)


class NotFoundError(ServiceError):
    """Unknown id or code."""

    def __init__(self, message: str, error_code: str = "NOT_FOUND", **details: Any):
        super().__init__(message, error_code, status_code=404, details=details)


class ForbiddenError(ServiceError):
    """The actor has no rights over this specific entity."""

    def __init__(self, message: str, error_code: str = "FORBIDDEN", **details: Any):
        super().__init__(message, error_code, status_code=403, details=details)


class InvalidStateError(ServiceError):
    """The operation is illegal in the entity's current lifecycle state."""

    def __init__(self, message: str, error_code: str = "INVALID_STATE", **details: Any):
        super().__init__(message, error_code, status_code=400, details=details)


class ConflictError(ServiceError):
    """Uniqueness violation such as a duplicate serial or an unavailable device."""

    def __init__(self, message: str, error_code: str = "CONFLICT", **details: Any):
        super().__init__(message, error_code, status_code=409, details=details)
