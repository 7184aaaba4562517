"""
Device Models

Physical assets tracked by the registry, plus the per-school counter that
backs asset tag allocation.

Invariants enforced by the database:
- serial_number is globally unique
- (school_code, asset_tag) is unique, so two devices bound to the same
  school can never share a tag
- a tagged device is bound to a school
- an Available device is not bound to a school
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from rtb_assets.core.database import Base
from rtb_assets.modules.shared import BaseModel, pg_enum


class DeviceCategory(str, Enum):
    """Kinds of devices distributed to schools."""

    LAPTOP = "Laptop"
    DESKTOP = "Desktop"
    TABLET = "Tablet"
    PROJECTOR = "Projector"
    OTHERS = "Others"


class DeviceStatus(str, Enum):
    """Where a device is in its life."""

    AVAILABLE = "Available"
    ASSIGNED = "Assigned"
    MAINTENANCE = "Maintenance"
    WRITTEN_OFF = "Written Off"


class DeviceCondition(str, Enum):
    """Physical condition."""

    NEW = "New"
    GOOD = "Good"
    FAIR = "Fair"
    FAULTY = "Faulty"


SERIAL_NUMBER_CONSTRAINT = "uq_devices_serial_number"
ASSET_TAG_CONSTRAINT = "uq_devices_school_asset_tag"


class Device(BaseModel):
    """A device in the registry."""

    __tablename__ = "devices"

    serial_number: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[DeviceCategory] = mapped_column(
        pg_enum(DeviceCategory, "device_category"),
        nullable=False,
    )
    brand: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    specifications: Mapped[str | None] = mapped_column(Text, nullable=True)
    condition: Mapped[DeviceCondition] = mapped_column(
        pg_enum(DeviceCondition, "device_condition"),
        nullable=False,
    )
    status: Mapped[DeviceStatus] = mapped_column(
        pg_enum(DeviceStatus, "device_status"),
        nullable=False,
        default=DeviceStatus.AVAILABLE,
    )

    # Owning school, set only by assignment and cleared only by administrative edit
    school_code: Mapped[str | None] = mapped_column(
        String(50),
        ForeignKey("schools.school_code", onupdate="CASCADE"),
        nullable=True,
    )
    asset_tag: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("serial_number", name=SERIAL_NUMBER_CONSTRAINT),
        UniqueConstraint("school_code", "asset_tag", name=ASSET_TAG_CONSTRAINT),
        CheckConstraint(
            "asset_tag IS NULL OR school_code IS NOT NULL",
            name="ck_devices_tag_requires_school",
        ),
        CheckConstraint(
            "status <> 'Available' OR school_code IS NULL",
            name="ck_devices_available_unbound",
        ),
        Index("ix_devices_school_code", "school_code"),
        Index("ix_devices_status", "status"),
        Index("ix_devices_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Device(serial={self.serial_number}, status={self.status.value})>"


class AssetTagSequence(Base):
    """
    Last asset tag sequence number issued for a school.

    The row is locked (SELECT ... FOR UPDATE) by every transaction that
    binds devices to the school, which serialises tag allocation per school.
    """

    __tablename__ = "asset_tag_sequences"

    school_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("schools.school_code", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


ASSET_TAG_SEQUENCE_PKEY = "asset_tag_sequences_pkey"
