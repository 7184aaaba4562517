"""
Notification Models

In-app notifications shown in the user's notification bell.
"""

import uuid
from enum import Enum

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from rtb_assets.modules.shared import BaseModel, pg_enum


class NotificationType(str, Enum):
    """Kinds of notifications raised by the device application workflow."""

    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_REVIEWED = "application_reviewed"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"
    DEVICES_ASSIGNED = "devices_assigned"
    DEVICES_RECEIVED = "devices_received"
    SYSTEM_ALERT = "system_alert"


class Notification(BaseModel):
    """A notification addressed to one user."""

    __tablename__ = "notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[NotificationType] = mapped_column(
        pg_enum(NotificationType, "notification_type"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    extra: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    action_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (Index("ix_notifications_user_unread", "user_id", "is_read"),)
