"""
Shared Model Base

Every table gets a UUID primary key plus created/updated timestamps.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import ENUM, UUID
from sqlalchemy.orm import Mapped, mapped_column

from rtb_assets.core.database import Base


class BaseModel(Base):
    """Abstract base with id, created_at and updated_at."""

    __abstract__ = True
    # Load server-generated timestamps with RETURNING so flushed rows stay readable
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


def pg_enum(enum_cls: type[enum.Enum], name: str) -> ENUM:
    """PostgreSQL enum type persisting member values (not names)."""
    return ENUM(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )
