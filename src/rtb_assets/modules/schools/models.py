"""
School Models

Schools (TSS, VTC and other technical institutions) that receive devices.
Devices reference a school by its code; applications by its id.
"""

import uuid
from enum import Enum

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from rtb_assets.modules.shared import BaseModel, pg_enum


class SchoolCategory(str, Enum):
    """Type of institution."""

    TSS = "TSS"
    VTC = "VTC"
    OTHER = "Other"


class SchoolStatus(str, Enum):
    """Whether the school is currently served."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"


class School(BaseModel):
    """
    School directory entry.

    The representative is the single user allowed to apply for devices
    on the school's behalf.
    """

    __tablename__ = "schools"

    school_code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        index=True,
        nullable=False,
    )
    school_name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    category: Mapped[SchoolCategory] = mapped_column(
        pg_enum(SchoolCategory, "school_category"),
        nullable=False,
        default=SchoolCategory.OTHER,
    )

    # Administrative location
    province: Mapped[str] = mapped_column(String(50), nullable=False)
    district: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    sector: Mapped[str] = mapped_column(String(50), nullable=False)
    cell: Mapped[str | None] = mapped_column(String(50), nullable=True)
    village: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Contact
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ON DELETE SET NULL: the school stays when its representative account is removed
    representative_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    status: Mapped[SchoolStatus] = mapped_column(
        pg_enum(SchoolStatus, "school_status"),
        nullable=False,
        default=SchoolStatus.ACTIVE,
    )

    def __repr__(self) -> str:
        return f"<School(code={self.school_code}, name={self.school_name})>"
