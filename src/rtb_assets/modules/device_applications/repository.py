"""
Device Applications Repository

Database operations for device applications. Functions only flush; the
service layer owns commits so a whole lifecycle step (including device
writes during assignment) lands in one transaction.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rtb_assets.modules.schools.models import School
from rtb_assets.modules.shared.schemas import SortOrder

from .models import LIVE_STATUSES, ApplicationStatus, DeviceApplication
from .schemas import ApplicationFilters, ApplicationSortField

SORT_COLUMNS = {
    ApplicationSortField.CREATED_AT: DeviceApplication.created_at,
    ApplicationSortField.UPDATED_AT: DeviceApplication.updated_at,
    ApplicationSortField.STATUS: DeviceApplication.status,
    ApplicationSortField.REVIEWED_AT: DeviceApplication.reviewed_at,
    ApplicationSortField.ASSIGNED_AT: DeviceApplication.assigned_at,
}


async def create(db: AsyncSession, **fields) -> DeviceApplication:
    """Insert an application and return it with server defaults loaded."""
    application = DeviceApplication(**fields)
    db.add(application)
    await db.flush()
    await db.refresh(application)
    return application


async def get_by_id(
    db: AsyncSession, id: UUID, for_update: bool = False
) -> DeviceApplication | None:
    """Get application by ID, optionally locking the row until commit."""
    query = select(DeviceApplication).where(DeviceApplication.id == id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_live_for_school(db: AsyncSession, school_id: UUID) -> DeviceApplication | None:
    """Get the school's application that has not reached a terminal state, if any."""
    result = await db.execute(
        select(DeviceApplication).where(
            DeviceApplication.school_id == school_id,
            DeviceApplication.status.in_(LIVE_STATUSES),
        )
    )
    return result.scalars().first()


async def list_applications(
    db: AsyncSession, filters: ApplicationFilters
) -> tuple[list[DeviceApplication], int]:
    """
    List applications matching the filters.

    Returns:
        (page of applications, total matching count)
    """
    conditions = []
    if filters.status:
        conditions.append(DeviceApplication.status == filters.status)
    if filters.school_code:
        conditions.append(
            DeviceApplication.school_id.in_(
                select(School.id).where(School.school_code == filters.school_code)
            )
        )

    total_result = await db.execute(
        select(func.count(DeviceApplication.id)).where(*conditions)
    )
    total = total_result.scalar_one()

    sort_column = SORT_COLUMNS[filters.sort_by]
    order = sort_column.asc() if filters.sort_order == SortOrder.ASC else sort_column.desc()

    result = await db.execute(
        select(DeviceApplication)
        .where(*conditions)
        .order_by(order.nulls_last(), DeviceApplication.id)
        .offset(filters.skip)
        .limit(filters.limit)
    )
    return list(result.scalars().all()), total


async def list_by_applicant(db: AsyncSession, applicant_id: UUID) -> list[DeviceApplication]:
    """Applications submitted by one user, newest first."""
    result = await db.execute(
        select(DeviceApplication)
        .where(DeviceApplication.applicant_id == applicant_id)
        .order_by(DeviceApplication.created_at.desc())
    )
    return list(result.scalars().all())


async def delete(db: AsyncSession, application: DeviceApplication) -> None:
    await db.delete(application)
    await db.flush()


# Valid status transitions - every lifecycle operation goes through this table
VALID_STATUS_TRANSITIONS: dict[ApplicationStatus, set[ApplicationStatus]] = {
    ApplicationStatus.PENDING: {
        ApplicationStatus.UNDER_REVIEW,  # Reviewer picked it up
        ApplicationStatus.APPROVED,  # Fast-track approval
        ApplicationStatus.REJECTED,  # Fast-track rejection
        ApplicationStatus.CANCELLED,  # Withdrawn by the applicant
    },
    ApplicationStatus.UNDER_REVIEW: {
        ApplicationStatus.UNDER_REVIEW,  # Review notes updated
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
    },
    ApplicationStatus.APPROVED: {
        ApplicationStatus.ASSIGNED,  # Devices handed over
    },
    ApplicationStatus.ASSIGNED: {
        ApplicationStatus.RECEIVED,  # Applicant confirmed receipt
    },
    # Terminal states - no transitions allowed
    ApplicationStatus.REJECTED: set(),
    ApplicationStatus.RECEIVED: set(),
    ApplicationStatus.CANCELLED: set(),
}


class InvalidStatusTransitionError(ValueError):
    """Raised when an invalid status transition is attempted."""

    def __init__(
        self,
        current_status: ApplicationStatus,
        new_status: ApplicationStatus,
    ):
        self.current_status = current_status
        self.new_status = new_status
        valid_transitions = VALID_STATUS_TRANSITIONS.get(current_status, set())
        super().__init__(
            f"Invalid status transition: {current_status.value} -> {new_status.value}. "
            f"Valid transitions: {sorted(s.value for s in valid_transitions)}"
        )


def can_transition(current: ApplicationStatus, new: ApplicationStatus) -> bool:
    return new in VALID_STATUS_TRANSITIONS.get(current, set())


async def update_status(
    db: AsyncSession,
    application: DeviceApplication,
    status: ApplicationStatus,
    **kwargs,
) -> DeviceApplication:
    """
    Move an application to a new status and set optional fields.

    Self-transitions are only allowed where the table lists them
    (Under Review -> Under Review); terminal states accept nothing.

    Args:
        db: Database session
        application: Application loaded in this session (ideally locked)
        status: New status to set
        **kwargs: Additional fields to update (e.g., reviewed_by, assigned_at)

    Returns:
        The updated application (flushed, not committed)

    Raises:
        InvalidStatusTransitionError: If status transition is not allowed
    """
    current_status = application.status
    if not can_transition(current_status, status):
        raise InvalidStatusTransitionError(current_status, status)

    application.status = status
    for key, value in kwargs.items():
        if hasattr(application, key):
            setattr(application, key, value)

    await db.flush()
    return application
