"""
Shared Schemas

Building blocks reused by list endpoints and bulk operations.
"""

from enum import Enum

from pydantic import BaseModel, Field


class SortOrder(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"


class BulkItemFailure(BaseModel):
    """One rejected item of a bulk request."""

    item: str = Field(..., description="Identifier of the item (serial number or position)")
    reason: str
