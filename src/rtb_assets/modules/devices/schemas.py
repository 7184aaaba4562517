"""
Device Schemas

Pydantic schemas for device requests, responses and bulk results.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from rtb_assets.modules.devices.models import DeviceCategory, DeviceCondition, DeviceStatus
from rtb_assets.modules.shared.schemas import BulkItemFailure, SortOrder


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class DeviceCreate(BaseModel):
    """Request body for creating one device (also one item of a bulk create)."""

    serial_number: str = Field(..., min_length=1, max_length=100)
    category: DeviceCategory
    brand: str = Field(..., min_length=1, max_length=100)
    model: str = Field(..., min_length=1, max_length=100)
    condition: DeviceCondition
    specifications: str | None = None
    status: DeviceStatus = DeviceStatus.AVAILABLE
    school_code: str | None = Field(None, max_length=50)

    @field_validator("serial_number", "brand", "model")
    @classmethod
    def strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("school_code", "specifications")
    @classmethod
    def strip_optional(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class DeviceUpdate(BaseModel):
    """
    Administrative edit of a device.

    Send school_code as an empty string (or null) to unbind the device from
    its school; omit it to leave the binding untouched.
    """

    serial_number: str | None = Field(None, min_length=1, max_length=100)
    category: DeviceCategory | None = None
    brand: str | None = Field(None, min_length=1, max_length=100)
    model: str | None = Field(None, min_length=1, max_length=100)
    condition: DeviceCondition | None = None
    specifications: str | None = None
    status: DeviceStatus | None = None
    school_code: str | None = Field(None, max_length=50)

    @field_validator("serial_number", "brand", "model", "school_code")
    @classmethod
    def strip_values(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class DeviceResponse(BaseModel):
    """Device as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    serial_number: str
    category: DeviceCategory
    brand: str
    model: str
    condition: DeviceCondition
    specifications: str | None = None
    status: DeviceStatus
    school_code: str | None = None
    asset_tag: str | None = None
    created_at: datetime
    updated_at: datetime


class BulkCreateRequest(BaseModel):
    """
    Request body for registering many devices.

    Items are kept raw here and validated one by one by the service, so a
    malformed item is reported as a failure instead of rejecting the batch.
    """

    devices: list[dict[str, Any]] = Field(..., min_length=1, max_length=500)


class BulkAssignRequest(BaseModel):
    """Request body for binding many devices to one school."""

    serial_numbers: list[str] = Field(..., min_length=1, max_length=500)
    school_code: str = Field(..., min_length=1, max_length=50)


class BulkDeviceResult(BaseModel):
    """Outcome of a bulk create or bulk assign."""

    successful: list[DeviceResponse] = Field(default_factory=list)
    failed: list[BulkItemFailure] = Field(default_factory=list)

    @computed_field
    @property
    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.successful) + len(self.failed),
            "successful": len(self.successful),
            "failed": len(self.failed),
        }


class DeviceSortField(str, Enum):
    """Columns devices can be sorted by."""

    CREATED_AT = "created_at"
    SERIAL_NUMBER = "serial_number"
    CATEGORY = "category"
    STATUS = "status"
    ASSET_TAG = "asset_tag"


class DeviceFilters(BaseModel):
    """Validated list filters. Only the fields declared here can be filtered or sorted on."""

    category: DeviceCategory | None = None
    status: DeviceStatus | None = None
    condition: DeviceCondition | None = None
    school_code: str | None = None
    search: str | None = Field(None, min_length=1, max_length=100)
    sort_by: DeviceSortField = DeviceSortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC
    skip: int = Field(0, ge=0)
    limit: int = Field(20, ge=1, le=100)


class DeviceListResponse(BaseModel):
    devices: list[DeviceResponse]
    total: int
    skip: int
    limit: int


class DeviceStats(BaseModel):
    """Device counts for the dashboard."""

    total: int
    by_status: dict[str, int]
    by_category: dict[str, int]
    by_condition: dict[str, int]
