"""
Device Application Service

Business logic for the application lifecycle:

    Pending -> Under Review -> Approved | Rejected
    Approved -> Assigned -> Received
    Pending -> Cancelled

Every status change goes through repository.update_status, which checks
the transition table. Each operation runs in one transaction (committed
here, rolled back on any service error) and emits one LifecycleEvent
after commit. Device assignment lives in assignment.py.
"""

import logging
import time
from datetime import UTC, datetime
from pathlib import Path
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rtb_assets.core.auth import CurrentUser
from rtb_assets.core.storage import delete_letter, resolve_letter_path
from rtb_assets.modules.audit.models import AuditAction, AuditTarget
from rtb_assets.modules.audit.service import emit_audit_event
from rtb_assets.modules.device_applications import repository
from rtb_assets.modules.device_applications.events import (
    LifecycleEvent,
    elapsed_ms,
    emit_lifecycle_event,
)
from rtb_assets.modules.device_applications.models import ApplicationStatus, DeviceApplication
from rtb_assets.modules.device_applications.repository import InvalidStatusTransitionError
from rtb_assets.modules.device_applications.schemas import (
    ApplicationCreate,
    ApplicationDetail,
    ApplicationFilters,
    ApplicationListItem,
    ApplicationListResponse,
    ApplicationResponse,
    ConfirmReceiptRequest,
    EligibilityRequest,
    ReviewDecision,
    ReviewRequest,
    SchoolSummary,
    UserSummary,
)
from rtb_assets.modules.schools.models import School
from rtb_assets.modules.schools.repository import SchoolRepository
from rtb_assets.modules.shared.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from rtb_assets.modules.users.models import User, UserRole
from rtb_assets.modules.users.repository import UserRepository

logger = logging.getLogger(__name__)

LIVE_APPLICATION_INDEX = "uq_device_applications_live_school"
DELETABLE_STATUSES = (ApplicationStatus.CANCELLED, ApplicationStatus.REJECTED)


# ============================================
# Exceptions
# ============================================


class ApplicationNotFoundError(NotFoundError):
    """Raised when application is not found."""

    def __init__(self, application_id: UUID):
        super().__init__(
            f"Application {application_id} not found",
            error_code="APPLICATION_NOT_FOUND",
        )


class LiveApplicationExistsError(ConflictError):
    """Raised when the school already has an application in progress."""

    def __init__(self, school_name: str, existing: DeviceApplication | None = None):
        details = {}
        if existing is not None:
            details = {
                "application_id": str(existing.id),
                "status": existing.status.value,
            }
        super().__init__(
            f"{school_name} already has a device application in progress",
            error_code="LIVE_APPLICATION_EXISTS",
            **details,
        )


class NotRepresentativeError(ForbiddenError):
    """Raised when the caller does not represent any school."""

    def __init__(self):
        super().__init__(
            "You are not the representative of any school",
            error_code="NOT_A_REPRESENTATIVE",
        )


class NotApplicantError(ForbiddenError):
    """Raised when someone other than the applicant acts on an application."""

    def __init__(self, action: str):
        super().__init__(
            f"Only the applicant can {action} this application",
            error_code="NOT_APPLICANT",
        )


class InvalidApplicationStateError(InvalidStateError):
    """Raised when an operation is not allowed in the application's current status."""

    def __init__(self, message: str, current_status: ApplicationStatus):
        super().__init__(
            message,
            error_code="INVALID_APPLICATION_STATE",
            status=current_status.value,
        )


# ============================================
# Helpers
# ============================================


async def _get_for_update(db: AsyncSession, application_id: UUID) -> DeviceApplication:
    application = await repository.get_by_id(db, application_id, for_update=True)
    if not application:
        raise ApplicationNotFoundError(application_id)
    return application


async def _transition(
    db: AsyncSession,
    application: DeviceApplication,
    status: ApplicationStatus,
    **fields,
) -> None:
    try:
        await repository.update_status(db, application, status, **fields)
    except InvalidStatusTransitionError as e:
        raise InvalidApplicationStateError(
            f"Application cannot move from {e.current_status.value} to {e.new_status.value}",
            e.current_status,
        ) from e


def _ensure_applicant(application: DeviceApplication, actor: CurrentUser, action: str) -> None:
    if application.applicant_id != actor.id:
        logger.warning(
            f"User {actor.id} tried to {action} application {application.id} "
            f"owned by {application.applicant_id}"
        )
        raise NotApplicantError(action)


def _ensure_can_view(application: DeviceApplication, actor: CurrentUser) -> None:
    """Staff see everything; school users only their own applications."""
    if actor.role == UserRole.SCHOOL and application.applicant_id != actor.id:
        raise NotApplicantError("view")


async def _school_name(db: AsyncSession, school_id: UUID) -> str | None:
    school = await SchoolRepository.get_by_id(db, school_id)
    return school.school_name if school else None


def _event(
    application: DeviceApplication,
    old_status: ApplicationStatus | None,
    actor: CurrentUser,
    started: float,
    **payload,
) -> LifecycleEvent:
    return LifecycleEvent(
        application_id=application.id,
        school_id=application.school_id,
        applicant_id=application.applicant_id,
        old_status=old_status,
        new_status=application.status,
        actor=actor,
        duration_ms=elapsed_ms(started),
        payload={k: v for k, v in payload.items() if v is not None},
    )


def _school_summary(school: School | None) -> SchoolSummary | None:
    return SchoolSummary.model_validate(school) if school else None


def _user_summary(user: User | None) -> UserSummary | None:
    if user is None:
        return None
    return UserSummary(id=user.id, full_name=user.full_name, email=user.email, role=user.role.value)


def _to_list_item(application: DeviceApplication, school: School | None) -> ApplicationListItem:
    return ApplicationListItem(
        id=application.id,
        status=application.status,
        school=_school_summary(school),
        purpose=application.purpose,
        total_requested=application.total_requested,
        is_eligible=application.is_eligible,
        device_count=len(application.assigned_devices or []),
        created_at=application.created_at,
        reviewed_at=application.reviewed_at,
        assigned_at=application.assigned_at,
    )


async def _get_represented_school(db: AsyncSession, actor: CurrentUser) -> School:
    """The single school the caller represents."""
    schools = await SchoolRepository.get_by_representative(db, actor.id)
    if not schools:
        raise NotRepresentativeError()
    if len(schools) > 1:
        raise ValidationError(
            "You represent more than one school; an application cannot be attributed",
            error_code="AMBIGUOUS_SCHOOL",
            school_codes=sorted(school.school_code for school in schools),
        )
    return schools[0]


# ============================================
# Lifecycle operations
# ============================================


async def submit_application(
    db: AsyncSession,
    actor: CurrentUser,
    data: ApplicationCreate,
    letter_ref: str,
) -> DeviceApplication:
    """
    Create a Pending application for the school the caller represents.

    The letter must already be stored; if this raises, the caller deletes it.

    Raises:
        ForbiddenError: Caller is not a school user or represents no school
        ValidationError: Caller represents several schools
        LiveApplicationExistsError: The school has an application in progress
    """
    started = time.perf_counter()
    if actor.role != UserRole.SCHOOL:
        raise ForbiddenError(
            "Only school representatives can submit device applications",
            error_code="NOT_A_REPRESENTATIVE",
        )

    try:
        school = await _get_represented_school(db, actor)

        existing = await repository.get_live_for_school(db, school.id)
        if existing:
            raise LiveApplicationExistsError(school.school_name, existing)

        try:
            application = await repository.create(
                db,
                school_id=school.id,
                applicant_id=actor.id,
                letter_ref=letter_ref,
                status=ApplicationStatus.PENDING,
                **data.model_dump(),
            )
            await db.commit()
        except IntegrityError as e:
            # A concurrent submission for the same school won the race
            if LIVE_APPLICATION_INDEX in str(e.orig):
                raise LiveApplicationExistsError(school.school_name) from e
            raise
    except (ServiceError, IntegrityError):
        await db.rollback()
        raise

    logger.info(f"Application {application.id} submitted for school {school.school_code}")
    await emit_lifecycle_event(
        _event(application, None, actor, started, school_name=school.school_name)
    )
    return application


async def review_application(
    db: AsyncSession,
    application_id: UUID,
    actor: CurrentUser,
    data: ReviewRequest,
) -> DeviceApplication:
    """
    Record a review decision (Under Review, Approved or Rejected).

    Legal from Pending and Under Review. Approving marks the application
    eligible; eligibility can be overridden later with set_eligibility.

    Raises:
        ApplicationNotFoundError, InvalidApplicationStateError
    """
    started = time.perf_counter()
    try:
        application = await _get_for_update(db, application_id)
        old_status = application.status

        fields = {
            "reviewed_by": actor.id,
            "reviewed_at": datetime.now(UTC),
            "review_notes": data.review_notes,
        }
        if data.eligibility_notes is not None:
            fields["eligibility_notes"] = data.eligibility_notes
        if data.decision == ReviewDecision.APPROVED:
            fields["is_eligible"] = True

        await _transition(db, application, data.decision.status, **fields)
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise

    await emit_lifecycle_event(
        _event(application, old_status, actor, started, notes=data.review_notes)
    )
    return application


async def set_eligibility(
    db: AsyncSession,
    application_id: UUID,
    actor: CurrentUser,
    data: EligibilityRequest,
) -> DeviceApplication:
    """
    Override the eligibility flag. The status does not change.

    Raises:
        ApplicationNotFoundError
        InvalidApplicationStateError: Still Pending (not reviewed yet) or Cancelled
    """
    started = time.perf_counter()
    try:
        application = await _get_for_update(db, application_id)
        if application.status == ApplicationStatus.PENDING:
            raise InvalidApplicationStateError(
                "Application must be reviewed before eligibility can be set",
                application.status,
            )
        if application.status == ApplicationStatus.CANCELLED:
            raise InvalidApplicationStateError(
                "Eligibility cannot be set on a cancelled application",
                application.status,
            )

        application.is_eligible = data.is_eligible
        if data.eligibility_notes is not None:
            application.eligibility_notes = data.eligibility_notes
        await db.flush()
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise

    logger.info(
        f"Application {application_id} eligibility set to {data.is_eligible} by {actor.id}"
    )
    await emit_audit_event(
        actor,
        AuditAction.UPDATE,
        AuditTarget.DEVICE_APPLICATION,
        application_id,
        duration_ms=elapsed_ms(started),
        description=f"Set eligibility to {data.is_eligible}",
        metadata={"is_eligible": data.is_eligible, "notes": data.eligibility_notes},
    )
    return application


async def confirm_receipt(
    db: AsyncSession,
    application_id: UUID,
    actor: CurrentUser,
    data: ConfirmReceiptRequest,
) -> DeviceApplication:
    """
    The applicant confirms the assigned devices arrived.

    Raises:
        ApplicationNotFoundError
        NotApplicantError: Caller is not the applicant
        InvalidApplicationStateError: Application is not Assigned (including
            a second confirmation)
    """
    started = time.perf_counter()
    try:
        application = await _get_for_update(db, application_id)
        _ensure_applicant(application, actor, "confirm receipt of")
        old_status = application.status
        if old_status != ApplicationStatus.ASSIGNED:
            raise InvalidApplicationStateError(
                "Receipt can only be confirmed for assigned applications "
                f"(status: {old_status.value})",
                old_status,
            )

        await _transition(
            db,
            application,
            ApplicationStatus.RECEIVED,
            confirmed_at=datetime.now(UTC),
            confirmation_notes=data.confirmation_notes,
        )
        await db.commit()
        school_name = await _school_name(db, application.school_id)
    except ServiceError:
        await db.rollback()
        raise

    await emit_lifecycle_event(
        _event(
            application,
            old_status,
            actor,
            started,
            school_name=school_name,
            notes=data.confirmation_notes,
        )
    )
    return application


async def cancel_application(
    db: AsyncSession,
    application_id: UUID,
    actor: CurrentUser,
) -> DeviceApplication:
    """
    The applicant withdraws a Pending application.

    Raises:
        ApplicationNotFoundError, NotApplicantError, InvalidApplicationStateError
    """
    started = time.perf_counter()
    try:
        application = await _get_for_update(db, application_id)
        _ensure_applicant(application, actor, "cancel")
        old_status = application.status
        if old_status != ApplicationStatus.PENDING:
            raise InvalidApplicationStateError(
                f"Only pending applications can be cancelled (status: {old_status.value})",
                old_status,
            )

        await _transition(db, application, ApplicationStatus.CANCELLED)
        await db.commit()
        school_name = await _school_name(db, application.school_id)
    except ServiceError:
        await db.rollback()
        raise

    await emit_lifecycle_event(
        _event(application, old_status, actor, started, school_name=school_name)
    )
    return application


async def delete_application(
    db: AsyncSession,
    application_id: UUID,
    actor: CurrentUser,
) -> None:
    """
    The applicant deletes a Cancelled or Rejected application.

    The supporting letter is removed after commit; failing to remove it
    leaves an orphan file but does not fail the deletion.

    Raises:
        ApplicationNotFoundError, NotApplicantError, InvalidApplicationStateError
    """
    started = time.perf_counter()
    try:
        application = await _get_for_update(db, application_id)
        _ensure_applicant(application, actor, "delete")
        if application.status not in DELETABLE_STATUSES:
            raise InvalidApplicationStateError(
                "Only cancelled or rejected applications can be deleted",
                application.status,
            )
        letter_ref = application.letter_ref
        status = application.status
        await repository.delete(db, application)
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise

    try:
        await delete_letter(letter_ref)
    except Exception as e:
        # Non-critical - the application row is already gone
        logger.error(f"Failed to delete letter {letter_ref}: {e}", exc_info=True)

    logger.info(f"Application {application_id} deleted by {actor.id}")
    await emit_audit_event(
        actor,
        AuditAction.DELETE,
        AuditTarget.DEVICE_APPLICATION,
        application_id,
        duration_ms=elapsed_ms(started),
        description=f"Deleted {status.value.lower()} device application",
    )


# ============================================
# Read side
# ============================================


async def get_application_detail(
    db: AsyncSession,
    application_id: UUID,
    actor: CurrentUser,
) -> ApplicationDetail:
    """
    Assemble the detail view: the application, its school, and the
    applicant, reviewer and assigner, each fetched explicitly.
    """
    application = await repository.get_by_id(db, application_id)
    if not application:
        raise ApplicationNotFoundError(application_id)
    _ensure_can_view(application, actor)

    school = await SchoolRepository.get_by_id(db, application.school_id)
    users = await UserRepository.get_many_by_ids(
        db,
        [application.applicant_id, application.reviewed_by, application.assigned_by],
    )

    return ApplicationDetail(
        **ApplicationResponse.model_validate(application).model_dump(),
        school=_school_summary(school),
        applicant=_user_summary(users.get(application.applicant_id)),
        reviewer=_user_summary(users.get(application.reviewed_by)),
        assigner=_user_summary(users.get(application.assigned_by)),
    )


async def list_applications(
    db: AsyncSession, filters: ApplicationFilters
) -> ApplicationListResponse:
    applications, total = await repository.list_applications(db, filters)
    schools = await SchoolRepository.get_many_by_ids(db, {a.school_id for a in applications})
    return ApplicationListResponse(
        applications=[_to_list_item(a, schools.get(a.school_id)) for a in applications],
        total=total,
        skip=filters.skip,
        limit=filters.limit,
    )


async def list_my_applications(db: AsyncSession, actor: CurrentUser) -> list[ApplicationListItem]:
    applications = await repository.list_by_applicant(db, actor.id)
    schools = await SchoolRepository.get_many_by_ids(db, {a.school_id for a in applications})
    return [_to_list_item(a, schools.get(a.school_id)) for a in applications]


async def get_letter_path(
    db: AsyncSession,
    application_id: UUID,
    actor: CurrentUser,
) -> Path:
    """Location of the application's supporting letter on disk."""
    application = await repository.get_by_id(db, application_id)
    if not application:
        raise ApplicationNotFoundError(application_id)
    _ensure_can_view(application, actor)

    path = resolve_letter_path(application.letter_ref)
    if not path.is_file():
        logger.error(f"Letter {application.letter_ref} missing for application {application_id}")
        raise NotFoundError("Letter not found", error_code="LETTER_NOT_FOUND")
    return path
