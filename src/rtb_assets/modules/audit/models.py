"""
Audit Log Models

One row per audited action: who did what to which entity, whether it
succeeded and how long it took. Rows written during a tracked login
session are later stamped with the session's end and duration.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from rtb_assets.modules.shared import BaseModel, pg_enum


class AuditAction(str, Enum):
    """Kind of action performed."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    ASSIGN = "ASSIGN"
    CANCEL = "CANCEL"
    CONFIRM = "CONFIRM"
    IMPORT = "IMPORT"


class AuditTarget(str, Enum):
    """Entity the action was performed on."""

    SCHOOL = "School"
    DEVICE = "Device"
    DEVICE_APPLICATION = "DeviceApplication"


class AuditLog(BaseModel):
    """Audit trail entry."""

    __tablename__ = "audit_logs"

    # Actor (denormalised so entries survive user deletion)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Action
    action_type: Mapped[AuditAction] = mapped_column(
        pg_enum(AuditAction, "audit_action"),
        nullable=False,
    )
    action_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_entity: Mapped[AuditTarget] = mapped_column(
        pg_enum(AuditTarget, "audit_target"),
        nullable=False,
    )
    target_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    target_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Request context
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    session_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    session_duration: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Seconds"
    )
    execution_duration: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Milliseconds"
    )

    # Outcome
    is_success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # "metadata" is reserved on declarative classes
    extra: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_actor_id", "actor_id"),
        Index("ix_audit_logs_target", "target_entity", "target_id"),
        Index("ix_audit_logs_session_id", "session_id"),
        Index("ix_audit_logs_created_at", "created_at"),
    )
