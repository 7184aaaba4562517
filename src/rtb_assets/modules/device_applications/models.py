"""
Device Application Models

A school's request for devices, from submission through review,
assignment and receipt confirmation.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from rtb_assets.modules.shared import BaseModel, pg_enum


class ApplicationStatus(str, Enum):
    """Status of a device application."""

    PENDING = "Pending"
    UNDER_REVIEW = "Under Review"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    ASSIGNED = "Assigned"
    RECEIVED = "Received"
    CANCELLED = "Cancelled"


# A school may have at most one application in one of these states
LIVE_STATUSES = (
    ApplicationStatus.PENDING,
    ApplicationStatus.UNDER_REVIEW,
    ApplicationStatus.APPROVED,
    ApplicationStatus.ASSIGNED,
)
TERMINAL_STATUSES = (
    ApplicationStatus.REJECTED,
    ApplicationStatus.RECEIVED,
    ApplicationStatus.CANCELLED,
)

REQUESTED_FIELDS = (
    "requested_laptops",
    "requested_desktops",
    "requested_tablets",
    "requested_projectors",
    "requested_others",
)


class DeviceApplication(BaseModel):
    """
    Device application.

    assigned_devices is a snapshot taken at assignment time:
    [{device_id, serial_number, category}, ...]. It is never updated
    afterwards, so reports keep showing what was actually handed over.
    """

    __tablename__ = "device_applications"

    school_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("schools.id", ondelete="CASCADE"),
        nullable=False,
    )
    applicant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Request
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_laptops: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requested_desktops: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requested_tablets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requested_projectors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requested_others: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    letter_ref: Mapped[str] = mapped_column(String(500), nullable=False)

    status: Mapped[ApplicationStatus] = mapped_column(
        pg_enum(ApplicationStatus, "device_application_status"),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )

    # Review
    reviewed_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    eligibility_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Assignment
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_devices: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    # Receipt confirmation
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "requested_laptops >= 0 AND requested_desktops >= 0 AND requested_tablets >= 0 "
            "AND requested_projectors >= 0 AND requested_others >= 0",
            name="ck_device_applications_requested_non_negative",
        ),
        Index("ix_device_applications_status", "status"),
        Index("ix_device_applications_applicant_id", "applicant_id"),
        Index(
            "uq_device_applications_live_school",
            "school_id",
            unique=True,
            postgresql_where=text(
                "status IN ('Pending', 'Under Review', 'Approved', 'Assigned')"
            ),
        ),
    )

    @property
    def total_requested(self) -> int:
        return sum(getattr(self, name) for name in REQUESTED_FIELDS)

    def __repr__(self) -> str:
        return f"<DeviceApplication(id={self.id}, status={self.status.value})>"
