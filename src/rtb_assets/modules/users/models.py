"""
User Models

Accounts are provisioned by the identity service; this API reads them to
resolve applicants, reviewers and notification recipients.
"""

from enum import Enum

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from rtb_assets.modules.shared import BaseModel, pg_enum


class UserRole(str, Enum):
    """User roles in the system."""

    ADMIN = "admin"
    RTB_STAFF = "rtb-staff"
    SCHOOL = "school"


STAFF_ROLES = (UserRole.ADMIN, UserRole.RTB_STAFF)


class User(BaseModel):
    """
    User account.

    School users act on behalf of the school they represent
    (see School.representative_id). Admin and RTB staff review and
    assign device applications.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    phone: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )
    first_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    last_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    role: Mapped[UserRole] = mapped_column(
        pg_enum(UserRole, "user_role"),
        nullable=False,
        default=UserRole.SCHOOL,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role.value})>"

    @property
    def full_name(self) -> str:
        """Return user's full name."""
        return f"{self.first_name} {self.last_name}"
