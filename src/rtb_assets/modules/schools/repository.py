"""
School Repository

Lookups into the school directory.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rtb_assets.modules.schools.models import School


class SchoolRepository:
    """Repository for school database operations."""

    @staticmethod
    async def get_by_id(db: AsyncSession, school_id: UUID) -> School | None:
        """Get a school by ID."""
        return await db.get(School, school_id)

    @staticmethod
    async def get_by_code(db: AsyncSession, school_code: str) -> School | None:
        """
        Get a school by its unique code.

        Args:
            db: Database session
            school_code: School code (e.g. "TSS-GAS-001")

        Returns:
            School instance or None if not found
        """
        result = await db.execute(select(School).where(School.school_code == school_code))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_representative(db: AsyncSession, user_id: UUID) -> list[School]:
        """Get every school the user represents."""
        result = await db.execute(select(School).where(School.representative_id == user_id))
        return list(result.scalars().all())

    @staticmethod
    async def get_many_by_ids(db: AsyncSession, school_ids: Iterable[UUID]) -> dict[UUID, School]:
        """Fetch several schools in one query, keyed by ID."""
        ids = set(school_ids)
        if not ids:
            return {}
        result = await db.execute(select(School).where(School.id.in_(ids)))
        return {school.id: school for school in result.scalars().all()}
