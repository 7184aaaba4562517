"""
Device Application Schemas

Pydantic schemas for application requests and the read models returned
by the API. Detail and list views are assembled explicitly by the service
from the application row plus separately fetched school and user rows.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rtb_assets.modules.device_applications.models import ApplicationStatus
from rtb_assets.modules.shared.schemas import SortOrder

# ============================================
# Requests
# ============================================


class ApplicationCreate(BaseModel):
    """Form fields of a new application (the letter travels as a file part)."""

    purpose: str = Field(..., min_length=1, max_length=5000)
    justification: str | None = Field(None, max_length=5000)
    requested_laptops: int = 0
    requested_desktops: int = 0
    requested_tablets: int = 0
    requested_projectors: int = 0
    requested_others: int = 0

    @field_validator("purpose")
    @classmethod
    def strip_purpose(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Purpose is required")
        return value

    @field_validator(
        "requested_laptops",
        "requested_desktops",
        "requested_tablets",
        "requested_projectors",
        "requested_others",
    )
    @classmethod
    def clamp_quantity(cls, value: int) -> int:
        return max(0, value)


class ReviewDecision(str, Enum):
    """Statuses a reviewer may move an application to."""

    UNDER_REVIEW = ApplicationStatus.UNDER_REVIEW.value
    APPROVED = ApplicationStatus.APPROVED.value
    REJECTED = ApplicationStatus.REJECTED.value

    @property
    def status(self) -> ApplicationStatus:
        return ApplicationStatus(self.value)


class ReviewRequest(BaseModel):
    decision: ReviewDecision
    review_notes: str | None = Field(None, max_length=5000)
    eligibility_notes: str | None = Field(None, max_length=5000)


class EligibilityRequest(BaseModel):
    is_eligible: bool
    eligibility_notes: str | None = Field(None, max_length=5000)


class AssignDevicesRequest(BaseModel):
    """Devices chosen by the assigner. All of them are bound, or none."""

    device_ids: list[UUID] = Field(..., min_length=1, max_length=500)


class ConfirmReceiptRequest(BaseModel):
    confirmation_notes: str | None = Field(None, max_length=5000)


# ============================================
# Read models
# ============================================


class AssignedDeviceSnapshot(BaseModel):
    """A device as it was when it was assigned."""

    device_id: UUID
    serial_number: str
    category: str


class SchoolSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    school_code: str
    school_name: str
    district: str
    province: str


class UserSummary(BaseModel):
    id: UUID
    full_name: str
    email: str
    role: str


class ApplicationResponse(BaseModel):
    """Application row as returned after a lifecycle operation."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    school_id: UUID
    applicant_id: UUID
    purpose: str
    justification: str | None = None
    requested_laptops: int
    requested_desktops: int
    requested_tablets: int
    requested_projectors: int
    requested_others: int
    total_requested: int
    status: ApplicationStatus
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    is_eligible: bool
    eligibility_notes: str | None = None
    assigned_by: UUID | None = None
    assigned_at: datetime | None = None
    assigned_devices: list[AssignedDeviceSnapshot] | None = None
    confirmed_at: datetime | None = None
    confirmation_notes: str | None = None
    created_at: datetime
    updated_at: datetime


class ApplicationDetail(ApplicationResponse):
    """Application with its school and the people who acted on it."""

    school: SchoolSummary | None = None
    applicant: UserSummary | None = None
    reviewer: UserSummary | None = None
    assigner: UserSummary | None = None


class ApplicationListItem(BaseModel):
    """Condensed application for list views."""

    id: UUID
    status: ApplicationStatus
    school: SchoolSummary | None = None
    purpose: str
    total_requested: int
    is_eligible: bool
    device_count: int
    created_at: datetime
    reviewed_at: datetime | None = None
    assigned_at: datetime | None = None


class ApplicationSortField(str, Enum):
    """Columns applications can be sorted by."""

    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    STATUS = "status"
    REVIEWED_AT = "reviewed_at"
    ASSIGNED_AT = "assigned_at"


class ApplicationFilters(BaseModel):
    """Validated list filters. Only the fields declared here can be filtered or sorted on."""

    status: ApplicationStatus | None = None
    school_code: str | None = Field(None, min_length=1, max_length=50)
    sort_by: ApplicationSortField = ApplicationSortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC
    skip: int = Field(0, ge=0)
    limit: int = Field(20, ge=1, le=100)


class ApplicationListResponse(BaseModel):
    applications: list[ApplicationListItem]
    total: int
    skip: int
    limit: int
