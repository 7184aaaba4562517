"""
Notification Service

Creates in-app notifications and, when enabled, sends the e-mail copy.
Each call uses its own database session so notifications are independent
of the transaction that triggered them. Callers treat failures as
non-critical.
"""

import logging
from collections.abc import Iterable
from typing import Any
from uuid import UUID

from rtb_assets.core.config import settings
from rtb_assets.core.database import async_session_maker
from rtb_assets.core.email import send_notification_email
from rtb_assets.modules.notifications.models import Notification, NotificationType
from rtb_assets.modules.users.models import User, UserRole
from rtb_assets.modules.users.repository import UserRepository

logger = logging.getLogger(__name__)


async def _deliver(
    users: list[User],
    kind: NotificationType,
    title: str,
    message: str,
    metadata: dict[str, Any] | None,
    action_url: str | None,
) -> int:
    if not users:
        return 0

    async with async_session_maker() as db:
        for user in users:
            db.add(
                Notification(
                    user_id=user.id,
                    type=kind,
                    title=title,
                    message=message,
                    extra=metadata,
                    action_url=action_url,
                )
            )
        await db.commit()

    if settings.enable_email_notifications:
        for user in users:
            await send_notification_email(
                to_email=user.email,
                recipient_name=user.full_name,
                title=title,
                message=message,
                action_url=action_url,
            )

    logger.info(f"Sent {kind.value} notification to {len(users)} user(s)")
    return len(users)


async def notify_user(
    user_id: UUID,
    kind: NotificationType,
    title: str,
    message: str,
    metadata: dict[str, Any] | None = None,
    action_url: str | None = None,
) -> int:
    """
    Notify a single user.

    Returns:
        Number of notifications created (0 if the user no longer exists)
    """
    async with async_session_maker() as db:
        user = await UserRepository.get_by_id(db, user_id)

    if user is None:
        logger.warning(f"Cannot notify unknown user {user_id} ({kind.value})")
        return 0
    return await _deliver([user], kind, title, message, metadata, action_url)


async def notify_roles(
    roles: Iterable[UserRole],
    kind: NotificationType,
    title: str,
    message: str,
    metadata: dict[str, Any] | None = None,
    action_url: str | None = None,
) -> int:
    """
    Notify every active user holding one of the roles.

    Returns:
        Number of notifications created
    """
    async with async_session_maker() as db:
        users = await UserRepository.get_active_by_roles(db, roles)
    return await _deliver(users, kind, title, message, metadata, action_url)
