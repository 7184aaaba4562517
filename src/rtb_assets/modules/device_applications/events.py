"""
Lifecycle Events

Every successful status change of a device application produces exactly
one LifecycleEvent. emit_lifecycle_event fans it out to:

- Notifications: staff for submissions, receipts and cancellations; the
  applicant for review outcomes and assignment.
- Audit trail: one entry per transition.

Both collaborators are best-effort. Each is called independently and its
failure is logged, never raised, so a committed transition is never
reported to the caller as failed.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from rtb_assets.core.auth import CurrentUser
from rtb_assets.modules.audit.models import AuditAction, AuditTarget
from rtb_assets.modules.audit.service import record_audit_event
from rtb_assets.modules.device_applications.models import ApplicationStatus
from rtb_assets.modules.notifications.models import NotificationType
from rtb_assets.modules.notifications.service import notify_roles, notify_user
from rtb_assets.modules.users.models import STAFF_ROLES

logger = logging.getLogger(__name__)

STAFF_APPLICATIONS_URL = "/dashboard/applications"
APPLICANT_APPLICATIONS_URL = "/dashboard/my-applications"


def elapsed_ms(started: float) -> int:
    """Milliseconds since a time.perf_counter() reading."""
    return int((time.perf_counter() - started) * 1000)


@dataclass(frozen=True)
class LifecycleEvent:
    """
    One transition of one application.

    old_status is None for the submission that created the application.
    payload carries transition-specific context (school_name, notes,
    device_count).
    """

    application_id: UUID
    school_id: UUID
    applicant_id: UUID
    old_status: ApplicationStatus | None
    new_status: ApplicationStatus
    actor: CurrentUser
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    duration_ms: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def school_name(self) -> str:
        return self.payload.get("school_name") or "A school"


# new status -> (audit action, notification kind, notify staff instead of applicant)
EVENT_ROUTES: dict[ApplicationStatus, tuple[AuditAction, NotificationType, bool]] = {
    ApplicationStatus.PENDING: (AuditAction.CREATE, NotificationType.APPLICATION_SUBMITTED, True),
    ApplicationStatus.UNDER_REVIEW: (
        AuditAction.UPDATE,
        NotificationType.APPLICATION_REVIEWED,
        False,
    ),
    ApplicationStatus.APPROVED: (
        AuditAction.APPROVE,
        NotificationType.APPLICATION_APPROVED,
        False,
    ),
    ApplicationStatus.REJECTED: (
        AuditAction.REJECT,
        NotificationType.APPLICATION_REJECTED,
        False,
    ),
    ApplicationStatus.ASSIGNED: (AuditAction.ASSIGN, NotificationType.DEVICES_ASSIGNED, False),
    ApplicationStatus.RECEIVED: (AuditAction.CONFIRM, NotificationType.DEVICES_RECEIVED, True),
    ApplicationStatus.CANCELLED: (AuditAction.CANCEL, NotificationType.SYSTEM_ALERT, True),
}


def _with_notes(message: str, notes: str | None) -> str:
    return f"{message} Notes: {notes}" if notes else message


def build_notification(event: LifecycleEvent) -> tuple[str, str]:
    """Title and message for the event's notification."""
    notes = event.payload.get("notes")
    match event.new_status:
        case ApplicationStatus.PENDING:
            return (
                "New Device Application",
                f"{event.school_name} has submitted a new device application.",
            )
        case ApplicationStatus.UNDER_REVIEW:
            return (
                "Application Under Review",
                _with_notes("Your device application is being reviewed.", notes),
            )
        case ApplicationStatus.APPROVED:
            return (
                "Application Approved",
                _with_notes(
                    "Your device application has been approved. Devices will be assigned soon.",
                    notes,
                ),
            )
        case ApplicationStatus.REJECTED:
            return (
                "Application Rejected",
                _with_notes("Your device application has been rejected.", notes),
            )
        case ApplicationStatus.ASSIGNED:
            count = event.payload.get("device_count", 0)
            return (
                "Devices Assigned",
                f"{count} device(s) have been assigned to your school. "
                "Please confirm receipt once they arrive.",
            )
        case ApplicationStatus.RECEIVED:
            return (
                "Devices Received",
                _with_notes(f"{event.school_name} has confirmed receipt of its devices.", notes),
            )
        case ApplicationStatus.CANCELLED:
            return (
                "Application Cancelled",
                f"{event.school_name} has cancelled its device application.",
            )
    raise ValueError(f"No notification defined for status {event.new_status.value}")


def _describe(event: LifecycleEvent) -> str:
    if event.old_status is None:
        return f"Submitted device application for {event.school_name}"
    return (
        f"Device application moved from {event.old_status.value} "
        f"to {event.new_status.value}"
    )


async def _notify(event: LifecycleEvent, kind: NotificationType, to_staff: bool) -> None:
    title, message = build_notification(event)
    metadata = {
        "application_id": str(event.application_id),
        "status": event.new_status.value,
    }
    if to_staff:
        await notify_roles(
            STAFF_ROLES,
            kind,
            title,
            message,
            metadata=metadata,
            action_url=f"{STAFF_APPLICATIONS_URL}/{event.application_id}",
        )
    else:
        await notify_user(
            event.applicant_id,
            kind,
            title,
            message,
            metadata=metadata,
            action_url=f"{APPLICANT_APPLICATIONS_URL}/{event.application_id}",
        )


async def emit_lifecycle_event(event: LifecycleEvent) -> None:
    """Deliver an event to the notification and audit collaborators."""
    old = event.old_status.value if event.old_status else "-"
    logger.info(
        f"Application {event.application_id}: {old} -> {event.new_status.value} "
        f"by {event.actor.id} ({event.duration_ms}ms)"
    )

    action, kind, to_staff = EVENT_ROUTES[event.new_status]

    try:
        await _notify(event, kind, to_staff)
    except Exception as e:
        # Non-critical - the transition is already committed
        logger.error(
            f"Failed to send {kind.value} notification for application "
            f"{event.application_id}: {e}",
            exc_info=True,
        )

    try:
        await record_audit_event(
            event.actor,
            action,
            AuditTarget.DEVICE_APPLICATION,
            event.application_id,
            duration_ms=event.duration_ms,
            description=_describe(event),
            target_name=event.payload.get("school_name"),
            metadata={
                "old_status": event.old_status.value if event.old_status else None,
                "new_status": event.new_status.value,
                "school_id": str(event.school_id),
                **{k: v for k, v in event.payload.items() if k != "school_name"},
            },
        )
    except Exception as e:
        logger.error(
            f"Failed to record audit entry for application {event.application_id}: {e}",
            exc_info=True,
        )
