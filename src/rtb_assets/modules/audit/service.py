"""
Audit Service

Writes audit trail entries in their own session so an entry never shares
a transaction with the operation it describes.

record_audit_event raises on failure; emit_audit_event is the
fire-and-forget wrapper used by routers and services.
"""

import logging
from typing import Any
from uuid import UUID

from rtb_assets.core.auth import CurrentUser
from rtb_assets.core.config import settings
from rtb_assets.core.database import async_session_maker
from rtb_assets.modules.audit import repository
from rtb_assets.modules.audit.models import AuditAction, AuditTarget

logger = logging.getLogger(__name__)


async def record_audit_event(
    actor: CurrentUser | None,
    action: AuditAction,
    target_entity: AuditTarget,
    target_id: UUID | str | None,
    *,
    success: bool = True,
    duration_ms: int | None = None,
    description: str | None = None,
    target_name: str | None = None,
    metadata: dict[str, Any] | None = None,
    error_message: str | None = None,
) -> None:
    """
    Persist one audit entry.

    Args:
        actor: Caller, or None for system actions
        action: What was done
        target_entity: Kind of entity acted on
        target_id: ID of that entity, if known
        success: Outcome of the action
        duration_ms: Execution time of the action
        description: Human-readable summary
        target_name: Display name of the target (serial number, school name...)
        metadata: Extra structured context
        error_message: Failure reason when success is False
    """
    if not settings.enable_audit_logs:
        return

    async with async_session_maker() as db:
        await repository.create(
            db,
            actor_id=actor.id if actor else None,
            actor_name=(actor.name or actor.email) if actor else "system",
            actor_role=actor.role if actor else None,
            action_type=action,
            action_description=description,
            target_entity=target_entity,
            target_id=str(target_id) if target_id else None,
            target_name=target_name,
            ip_address=actor.ip_address if actor else None,
            session_id=actor.session_id if actor else None,
            execution_duration=duration_ms,
            is_success=success,
            error_message=error_message,
            extra=metadata,
        )
        await db.commit()


async def emit_audit_event(
    actor: CurrentUser | None,
    action: AuditAction,
    target_entity: AuditTarget,
    target_id: UUID | str | None,
    **kwargs: Any,
) -> None:
    """Record an audit entry, logging instead of raising on failure."""
    try:
        await record_audit_event(actor, action, target_entity, target_id, **kwargs)
    except Exception as e:
        # Non-critical - the audited operation already happened
        logger.error(
            f"Failed to record audit event {action.value} on "
            f"{target_entity.value} {target_id}: {e}",
            exc_info=True,
        )
