"""
User Repository

Read-only lookups used to resolve actors and notification recipients.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rtb_assets.modules.users.models import User, UserRole


class UserRepository:
    """Repository for user database operations."""

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: UUID) -> User | None:
        """Get a user by ID."""
        return await db.get(User, user_id)

    @staticmethod
    async def get_many_by_ids(db: AsyncSession, user_ids: Iterable[UUID]) -> dict[UUID, User]:
        """
        Fetch several users in one query.

        Args:
            db: Database session
            user_ids: IDs to load; None values are skipped

        Returns:
            Mapping of user ID to User for the IDs that exist
        """
        ids = {user_id for user_id in user_ids if user_id is not None}
        if not ids:
            return {}
        result = await db.execute(select(User).where(User.id.in_(ids)))
        return {user.id: user for user in result.scalars().all()}

    @staticmethod
    async def get_active_by_roles(db: AsyncSession, roles: Iterable[UserRole]) -> list[User]:
        """Get all active users holding any of the given roles."""
        result = await db.execute(
            select(User).where(User.role.in_(list(roles)), User.is_active.is_(True))
        )
        return list(result.scalars().all())
