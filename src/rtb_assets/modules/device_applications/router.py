"""
Device Applications Router

API endpoints for the device application lifecycle.

Endpoints:
- POST /applications - Submit an application with its supporting letter (school)
- GET /applications - List applications with filters and pagination (staff)
- GET /applications/my - List the caller's applications (school)
- GET /applications/{id} - Application detail
- GET /applications/{id}/letter - Download the supporting letter
- PUT /applications/{id}/review - Record a review decision (staff)
- PUT /applications/{id}/eligibility - Override eligibility (staff)
- POST /applications/{id}/assign - Assign devices (staff)
- POST /applications/{id}/confirm - Confirm receipt of devices (applicant)
- POST /applications/{id}/cancel - Cancel a pending application (applicant)
- DELETE /applications/{id} - Delete a cancelled or rejected application (applicant)

Failed lifecycle operations are recorded in the audit trail as well.
"""

import logging
from typing import NoReturn
from uuid import UUID

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)
from fastapi.responses import FileResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from rtb_assets.core.auth import CurrentUser, get_current_user, require_roles
from rtb_assets.core.config import settings
from rtb_assets.core.database import get_db
from rtb_assets.core.storage import delete_letter, store_letter
from rtb_assets.modules.audit.models import AuditAction, AuditTarget
from rtb_assets.modules.audit.service import emit_audit_event
from rtb_assets.modules.device_applications import assignment, service
from rtb_assets.modules.device_applications.models import ApplicationStatus
from rtb_assets.modules.device_applications.schemas import (
    ApplicationCreate,
    ApplicationDetail,
    ApplicationFilters,
    ApplicationListItem,
    ApplicationListResponse,
    ApplicationResponse,
    ApplicationSortField,
    AssignDevicesRequest,
    ConfirmReceiptRequest,
    EligibilityRequest,
    ReviewRequest,
)
from rtb_assets.modules.shared.exceptions import ServiceError
from rtb_assets.modules.shared.schemas import SortOrder
from rtb_assets.modules.users.models import UserRole

logger = logging.getLogger(__name__)

router = APIRouter()

require_staff = require_roles(UserRole.ADMIN.value, UserRole.RTB_STAFF.value)
require_school = require_roles(UserRole.SCHOOL.value)


# ============================================
# Helper Functions
# ============================================


async def _handle_service_error(
    e: ServiceError,
    actor: CurrentUser | None = None,
    action: AuditAction | None = None,
    application_id: UUID | None = None,
) -> NoReturn:
    """Record the failure (for lifecycle actions) and convert it to an HTTPException."""
    if action is not None:
        await emit_audit_event(
            actor,
            action,
            AuditTarget.DEVICE_APPLICATION,
            application_id,
            success=False,
            error_message=e.message,
            metadata={"error_code": e.error_code},
        )
    raise HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
            **e.details,
        },
    ) from e


def _internal_error(e: Exception, context: str) -> HTTPException:
    logger.exception(f"Unexpected error {context}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


async def _discard_letter(letter_ref: str | None) -> None:
    """Remove a letter stored for a submission that did not go through."""
    if not letter_ref:
        return
    try:
        await delete_letter(letter_ref)
    except Exception as e:
        logger.error(f"Failed to remove orphaned letter {letter_ref}: {e}", exc_info=True)


# ============================================
# Submission
# ============================================


@router.post(
    "",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit Device Application",
    description="""
Submit a device application for the school the caller represents.

Multipart form: the requested quantities, a purpose, an optional
justification and the supporting letter (`letter`, PDF, max 10MB).

**Rules:**
- The caller must represent exactly one school
- A school can only have one application in progress at a time
- Negative quantities are treated as 0

**Access:** School representatives
""",
    responses={
        201: {"description": "Application submitted", "model": ApplicationResponse},
        400: {"description": "Invalid letter or form fields"},
        403: {"description": "Caller does not represent a school"},
        409: {
            "description": "The school already has an application in progress",
            "content": {
                "application/json": {
                    "example": {
                        "detail": {
                            "error": "LIVE_APPLICATION_EXISTS",
                            "message": "GS Kigali already has a device application in progress",
                        }
                    }
                }
            },
        },
    },
)
async def submit_application(
    purpose: str = Form(..., description="What the devices will be used for"),
    justification: str | None = Form(None),
    requested_laptops: int = Form(0),
    requested_desktops: int = Form(0),
    requested_tablets: int = Form(0),
    requested_projectors: int = Form(0),
    requested_others: int = Form(0),
    letter: UploadFile = File(..., description="Supporting letter (PDF)"),
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_school),
) -> ApplicationResponse:
    try:
        data = ApplicationCreate(
            purpose=purpose,
            justification=justification,
            requested_laptops=requested_laptops,
            requested_desktops=requested_desktops,
            requested_tablets=requested_tablets,
            requested_projectors=requested_projectors,
            requested_others=requested_others,
        )
    except PydanticValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "VALIDATION_ERROR", "message": e.errors()[0]["msg"]},
        ) from e

    letter_ref = None
    try:
        # One byte past the limit is enough for store_letter to reject the upload
        content = await letter.read(settings.max_letter_size_bytes + 1)
        letter_ref = await store_letter(content, letter.content_type)
        application = await service.submit_application(db, actor, data, letter_ref)
        return ApplicationResponse.model_validate(application)

    except ServiceError as e:
        logger.warning(f"Application submission by {actor.id} rejected: {e.message}")
        await _discard_letter(letter_ref)
        await _handle_service_error(e, actor, AuditAction.CREATE)
    except Exception as e:
        await _discard_letter(letter_ref)
        raise _internal_error(e, "submitting application") from e


# ============================================
# Read endpoints
# ============================================


@router.get(
    "",
    response_model=ApplicationListResponse,
    summary="List Applications",
    description="""
Paginated list of device applications.

**Filters:** `status`, `school_code`

**Sorting:** `sort_by` (created_at, updated_at, status, reviewed_at,
assigned_at), `sort_order` (asc, desc). Default: newest first.

**Access:** Admin and RTB staff
""",
)
async def list_applications(
    status_filter: ApplicationStatus | None = Query(
        None, alias="status", description="Filter by application status"
    ),
    school_code: str | None = Query(None, min_length=1, max_length=50),
    sort_by: ApplicationSortField = Query(ApplicationSortField.CREATED_AT),
    sort_order: SortOrder = Query(SortOrder.DESC),
    skip: int = Query(0, ge=0, description="Records to skip"),
    limit: int = Query(20, ge=1, le=100, description="Maximum records to return"),
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_staff),
) -> ApplicationListResponse:
    filters = ApplicationFilters(
        status=status_filter,
        school_code=school_code,
        sort_by=sort_by,
        sort_order=sort_order,
        skip=skip,
        limit=limit,
    )
    try:
        result = await service.list_applications(db, filters)
        logger.info(
            f"User {actor.id} listed applications: "
            f"total={result.total}, returned={len(result.applications)}"
        )
        return result
    except ServiceError as e:
        await _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, "listing applications") from e


@router.get(
    "/my",
    response_model=list[ApplicationListItem],
    summary="My Applications",
    description="Applications submitted by the caller, newest first.",
)
async def list_my_applications(
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_school),
) -> list[ApplicationListItem]:
    try:
        return await service.list_my_applications(db, actor)
    except Exception as e:
        raise _internal_error(e, "listing own applications") from e


@router.get(
    "/{application_id}",
    response_model=ApplicationDetail,
    summary="Get Application Details",
    description="""
Application with its school, applicant, reviewer and assigner.

**Access:** Staff, or the applicant
""",
    responses={
        403: {"description": "School user reading someone else's application"},
        404: {"description": "Application not found"},
    },
)
async def get_application(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(get_current_user),
) -> ApplicationDetail:
    try:
        return await service.get_application_detail(db, application_id, actor)
    except ServiceError as e:
        await _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, f"loading application {application_id}") from e


@router.get(
    "/{application_id}/letter",
    response_class=FileResponse,
    summary="Download Supporting Letter",
    responses={404: {"description": "Application or letter not found"}},
)
async def download_letter(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(get_current_user),
) -> FileResponse:
    try:
        path = await service.get_letter_path(db, application_id, actor)
    except ServiceError as e:
        await _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, f"loading letter of application {application_id}") from e

    return FileResponse(
        path,
        media_type="application/pdf",
        filename=f"application-{application_id}-letter.pdf",
    )


# ============================================
# Review and eligibility (staff)
# ============================================


@router.put(
    "/{application_id}/review",
    response_model=ApplicationResponse,
    summary="Review Application",
    description="""
Record a review decision: `Under Review`, `Approved` or `Rejected`.

**Requirements:**
- Application must be `Pending` or `Under Review`

**Effects:**
- Reviewer and review time recorded
- `Approved` marks the application eligible
- The applicant is notified

**Access:** Admin and RTB staff
""",
    responses={
        400: {"description": "Application cannot be reviewed in its current status"},
        404: {"description": "Application not found"},
    },
)
async def review_application(
    application_id: UUID,
    request: ReviewRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_staff),
) -> ApplicationResponse:
    action = {
        "Approved": AuditAction.APPROVE,
        "Rejected": AuditAction.REJECT,
    }.get(request.decision.value, AuditAction.UPDATE)
    try:
        application = await service.review_application(db, application_id, actor, request)
        return ApplicationResponse.model_validate(application)
    except ServiceError as e:
        logger.warning(f"Cannot review application {application_id}: {e.message}")
        await _handle_service_error(e, actor, action, application_id)
    except Exception as e:
        raise _internal_error(e, f"reviewing application {application_id}") from e


@router.put(
    "/{application_id}/eligibility",
    response_model=ApplicationResponse,
    summary="Set Eligibility",
    description="""
Override the eligibility flag of a reviewed application. Devices can only
be assigned to applications that are both `Approved` and eligible.

**Access:** Admin and RTB staff
""",
    responses={
        400: {"description": "Application not reviewed yet, or cancelled"},
        404: {"description": "Application not found"},
    },
)
async def set_eligibility(
    application_id: UUID,
    request: EligibilityRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_staff),
) -> ApplicationResponse:
    try:
        application = await service.set_eligibility(db, application_id, actor, request)
        return ApplicationResponse.model_validate(application)
    except ServiceError as e:
        await _handle_service_error(e, actor, AuditAction.UPDATE, application_id)
    except Exception as e:
        raise _internal_error(e, f"setting eligibility of application {application_id}") from e


# ============================================
# Assignment (staff)
# ============================================


@router.post(
    "/{application_id}/assign",
    response_model=ApplicationResponse,
    summary="Assign Devices",
    description="""
Assign devices to an approved, eligible application.

This is an atomic operation:
1. Every device must exist and be `Available`
2. Each device is bound to the school and receives an asset tag
3. The application moves to `Assigned` with a snapshot of the devices

If any device is unknown (404) or unavailable (409), nothing changes.

**Access:** Admin and RTB staff
""",
    responses={
        400: {"description": "Application not approved or not eligible"},
        404: {"description": "Application or some devices not found"},
        409: {
            "description": "Some devices are not available",
            "content": {
                "application/json": {
                    "example": {
                        "detail": {
                            "error": "DEVICES_UNAVAILABLE",
                            "message": "Devices not available for assignment: SN-001",
                            "serial_numbers": ["SN-001"],
                        }
                    }
                }
            },
        },
    },
)
async def assign_devices(
    application_id: UUID,
    request: AssignDevicesRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_staff),
) -> ApplicationResponse:
    try:
        application = await assignment.assign_devices(
            db, application_id, actor, request.device_ids
        )
        return ApplicationResponse.model_validate(application)
    except ServiceError as e:
        await _handle_service_error(e, actor, AuditAction.ASSIGN, application_id)
    except Exception as e:
        raise _internal_error(e, f"assigning devices to application {application_id}") from e


# ============================================
# Applicant actions
# ============================================


@router.post(
    "/{application_id}/confirm",
    response_model=ApplicationResponse,
    summary="Confirm Receipt",
    description="The applicant confirms the assigned devices were received.",
    responses={
        400: {"description": "Application is not Assigned"},
        403: {"description": "Caller is not the applicant"},
        404: {"description": "Application not found"},
    },
)
async def confirm_receipt(
    application_id: UUID,
    request: ConfirmReceiptRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_school),
) -> ApplicationResponse:
    try:
        application = await service.confirm_receipt(db, application_id, actor, request)
        return ApplicationResponse.model_validate(application)
    except ServiceError as e:
        await _handle_service_error(e, actor, AuditAction.CONFIRM, application_id)
    except Exception as e:
        raise _internal_error(e, f"confirming receipt for application {application_id}") from e


@router.post(
    "/{application_id}/cancel",
    response_model=ApplicationResponse,
    summary="Cancel Application",
    description="The applicant withdraws an application that is still `Pending`.",
    responses={
        400: {"description": "Application is no longer Pending"},
        403: {"description": "Caller is not the applicant"},
        404: {"description": "Application not found"},
    },
)
async def cancel_application(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_school),
) -> ApplicationResponse:
    try:
        application = await service.cancel_application(db, application_id, actor)
        return ApplicationResponse.model_validate(application)
    except ServiceError as e:
        await _handle_service_error(e, actor, AuditAction.CANCEL, application_id)
    except Exception as e:
        raise _internal_error(e, f"cancelling application {application_id}") from e


@router.delete(
    "/{application_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Application",
    description="The applicant deletes a `Cancelled` or `Rejected` application and its letter.",
    responses={
        400: {"description": "Application is still in progress"},
        403: {"description": "Caller is not the applicant"},
        404: {"description": "Application not found"},
    },
)
async def delete_application(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_school),
) -> Response:
    try:
        await service.delete_application(db, application_id, actor)
    except ServiceError as e:
        await _handle_service_error(e, actor, AuditAction.DELETE, application_id)
    except Exception as e:
        raise _internal_error(e, f"deleting application {application_id}") from e

    return Response(status_code=status.HTTP_204_NO_CONTENT)
