"""create asset tracking tables

Revision ID: b7c8d9e0f1a2
Revises:
Create Date: 2026-10-19 09:00:00.000000

This migration:
1. Creates the enum types (values as stored, e.g. 'Under Review')
2. Creates users, schools, devices and the per-school asset tag counter
3. Creates device_applications with a partial unique index allowing at
   most one live application per school
4. Creates notifications and audit_logs

devices carries UNIQUE (school_code, asset_tag) so two devices bound to
the same school can never share a tag.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "b7c8d9e0f1a2"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


ENUMS: dict[str, tuple[str, ...]] = {
    "user_role": ("admin", "rtb-staff", "school"),
    "school_category": ("TSS", "VTC", "Other"),
    "school_status": ("Active", "Inactive"),
    "device_category": ("Laptop", "Desktop", "Tablet", "Projector", "Others"),
    "device_status": ("Available", "Assigned", "Maintenance", "Written Off"),
    "device_condition": ("New", "Good", "Fair", "Faulty"),
    "device_application_status": (
        "Pending",
        "Under Review",
        "Approved",
        "Rejected",
        "Assigned",
        "Received",
        "Cancelled",
    ),
    "notification_type": (
        "application_submitted",
        "application_reviewed",
        "application_approved",
        "application_rejected",
        "devices_assigned",
        "devices_received",
        "system_alert",
    ),
    "audit_action": (
        "CREATE",
        "UPDATE",
        "DELETE",
        "APPROVE",
        "REJECT",
        "ASSIGN",
        "CANCEL",
        "CONFIRM",
        "IMPORT",
    ),
    "audit_target": ("School", "Device", "DeviceApplication"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _base_columns() -> list[sa.Column]:
    """id, created_at, updated_at (from BaseModel)."""
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Create the asset tracking schema."""
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "users",
        *_base_columns(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("role", _enum("user_role"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "schools",
        *_base_columns(),
        sa.Column("school_code", sa.String(length=50), nullable=False),
        sa.Column("school_name", sa.String(length=200), nullable=False),
        sa.Column("category", _enum("school_category"), nullable=False),
        # Administrative location
        sa.Column("province", sa.String(length=50), nullable=False),
        sa.Column("district", sa.String(length=50), nullable=False),
        sa.Column("sector", sa.String(length=50), nullable=False),
        sa.Column("cell", sa.String(length=50), nullable=True),
        sa.Column("village", sa.String(length=50), nullable=True),
        # Contact
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone_number", sa.String(length=20), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column(
            "representative_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", _enum("school_status"), nullable=False),
    )
    op.create_index("ix_schools_school_code", "schools", ["school_code"], unique=True)
    op.create_index("ix_schools_district", "schools", ["district"])
    op.create_index("ix_schools_representative_id", "schools", ["representative_id"])

    op.create_table(
        "devices",
        *_base_columns(),
        sa.Column("serial_number", sa.String(length=100), nullable=False),
        sa.Column("category", _enum("device_category"), nullable=False),
        sa.Column("brand", sa.String(length=100), nullable=False),
        sa.Column("model", sa.String(length=100), nullable=False),
        sa.Column("specifications", sa.Text(), nullable=True),
        sa.Column("condition", _enum("device_condition"), nullable=False),
        sa.Column("status", _enum("device_status"), nullable=False),
        sa.Column(
            "school_code",
            sa.String(length=50),
            sa.ForeignKey("schools.school_code", onupdate="CASCADE"),
            nullable=True,
        ),
        sa.Column("asset_tag", sa.String(length=100), nullable=True),
        sa.UniqueConstraint("serial_number", name="uq_devices_serial_number"),
        sa.UniqueConstraint("school_code", "asset_tag", name="uq_devices_school_asset_tag"),
        sa.CheckConstraint(
            "asset_tag IS NULL OR school_code IS NOT NULL",
            name="ck_devices_tag_requires_school",
        ),
        sa.CheckConstraint(
            "status <> 'Available' OR school_code IS NULL",
            name="ck_devices_available_unbound",
        ),
    )
    op.create_index("ix_devices_school_code", "devices", ["school_code"])
    op.create_index("ix_devices_status", "devices", ["status"])
    op.create_index("ix_devices_category", "devices", ["category"])

    op.create_table(
        "asset_tag_sequences",
        sa.Column(
            "school_code",
            sa.String(length=50),
            sa.ForeignKey("schools.school_code", ondelete="CASCADE", onupdate="CASCADE"),
            nullable=False,
        ),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("school_code", name="asset_tag_sequences_pkey"),
    )

    op.create_table(
        "device_applications",
        *_base_columns(),
        sa.Column(
            "school_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("schools.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "applicant_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        # Request
        sa.Column("purpose", sa.Text(), nullable=False),
        sa.Column("justification", sa.Text(), nullable=True),
        sa.Column("requested_laptops", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requested_desktops", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requested_tablets", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requested_projectors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requested_others", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("letter_ref", sa.String(length=500), nullable=False),
        sa.Column("status", _enum("device_application_status"), nullable=False),
        # Review
        sa.Column(
            "reviewed_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("is_eligible", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("eligibility_notes", sa.Text(), nullable=True),
        # Assignment
        sa.Column(
            "assigned_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_devices", postgresql.JSONB(), nullable=True),
        # Receipt confirmation
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmation_notes", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "requested_laptops >= 0 AND requested_desktops >= 0 AND requested_tablets >= 0 "
            "AND requested_projectors >= 0 AND requested_others >= 0",
            name="ck_device_applications_requested_non_negative",
        ),
    )
    op.create_index("ix_device_applications_status", "device_applications", ["status"])
    op.create_index(
        "ix_device_applications_applicant_id", "device_applications", ["applicant_id"]
    )
    op.create_index(
        "uq_device_applications_live_school",
        "device_applications",
        ["school_id"],
        unique=True,
        postgresql_where=sa.text(
            "status IN ('Pending', 'Under Review', 'Approved', 'Assigned')"
        ),
    )

    op.create_table(
        "notifications",
        *_base_columns(),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", _enum("notification_type"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("action_url", sa.String(length=500), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_notifications_user_unread", "notifications", ["user_id", "is_read"])

    op.create_table(
        "audit_logs",
        *_base_columns(),
        # Actor (denormalised so entries survive user deletion)
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("actor_name", sa.String(length=255), nullable=True),
        sa.Column("actor_role", sa.String(length=100), nullable=True),
        # Action
        sa.Column("action_type", _enum("audit_action"), nullable=False),
        sa.Column("action_description", sa.Text(), nullable=True),
        sa.Column("target_entity", _enum("audit_target"), nullable=False),
        sa.Column("target_id", sa.String(length=255), nullable=True),
        sa.Column("target_name", sa.String(length=255), nullable=True),
        # Request context
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("session_id", sa.String(length=64), nullable=True),
        sa.Column("session_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("session_duration", sa.Integer(), nullable=True, comment="Seconds"),
        sa.Column("execution_duration", sa.Integer(), nullable=True, comment="Milliseconds"),
        # Outcome
        sa.Column("is_success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_target", "audit_logs", ["target_entity", "target_id"])
    op.create_index("ix_audit_logs_session_id", "audit_logs", ["session_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    """Drop the asset tracking schema."""
    op.drop_table("audit_logs")
    op.drop_table("notifications")
    op.drop_index("uq_device_applications_live_school", table_name="device_applications")
    op.drop_table("device_applications")
    op.drop_table("asset_tag_sequences")
    op.drop_table("devices")
    op.drop_table("schools")
    op.drop_table("users")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
