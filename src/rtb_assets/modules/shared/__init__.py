"""
Shared module - Declarative base mixin and the service error taxonomy.
"""

from rtb_assets.modules.shared.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from rtb_assets.modules.shared.models import BaseModel, pg_enum

__all__ = [
    "BaseModel",
    "pg_enum",
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "ForbiddenError",
    "InvalidStateError",
    "ConflictError",
]
