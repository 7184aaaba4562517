"""
Devices Router

API endpoints for the device registry. All endpoints are restricted to
admin and RTB staff.

Endpoints:
- POST /devices - Register a device
- POST /devices/bulk - Register many devices (per-item results)
- POST /devices/bulk-assign - Bind devices to a school by serial number
- GET /devices - List devices with filters and pagination
- GET /devices/stats - Counts by status, category and condition
- GET /devices/{id} - Get a device
- PATCH /devices/{id} - Administrative edit (including unbinding)
- DELETE /devices/{id} - Remove a device
"""

import logging
import time
from typing import NoReturn
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from rtb_assets.core.auth import CurrentUser, require_roles
from rtb_assets.core.database import get_db
from rtb_assets.modules.audit.models import AuditAction, AuditTarget
from rtb_assets.modules.audit.service import emit_audit_event
from rtb_assets.modules.devices import service
from rtb_assets.modules.devices.models import DeviceCategory, DeviceCondition, DeviceStatus
from rtb_assets.modules.devices.schemas import (
    BulkAssignRequest,
    BulkCreateRequest,
    BulkDeviceResult,
    DeviceCreate,
    DeviceFilters,
    DeviceListResponse,
    DeviceResponse,
    DeviceSortField,
    DeviceStats,
    DeviceUpdate,
)
from rtb_assets.modules.shared.exceptions import ServiceError
from rtb_assets.modules.shared.schemas import SortOrder
from rtb_assets.modules.users.models import UserRole

logger = logging.getLogger(__name__)

router = APIRouter()

require_staff = require_roles(UserRole.ADMIN.value, UserRole.RTB_STAFF.value)


# ============================================
# Helper Functions
# ============================================


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


async def _handle_service_error(
    e: ServiceError,
    actor: CurrentUser | None = None,
    action: AuditAction | None = None,
    device_id: UUID | None = None,
) -> NoReturn:
    """Record the failure (for write actions) and convert it to an HTTPException."""
    if action is not None:
        await emit_audit_event(
            actor,
            action,
            AuditTarget.DEVICE,
            device_id,
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


# ============================================
# Registration
# ============================================


@router.post(
    "",
    response_model=DeviceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register Device",
    description="""
Register one device.

When `school_code` is given the device is bound to that school right away:
its status becomes `Assigned` and it receives the school's next asset tag
(e.g. `LAP/KIC/GAS/0007`).

**Access:** Admin and RTB staff
""",
    responses={
        404: {"description": "School not found"},
        409: {"description": "Serial number already registered"},
    },
)
async def create_device(
    request: DeviceCreate,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_staff),
) -> DeviceResponse:
    started = time.perf_counter()
    try:
        device = await service.create_device(db, request)
    except ServiceError as e:
        await _handle_service_error(e, actor, AuditAction.CREATE)
    except Exception as e:
        raise _internal_error(e, "creating device") from e

    await emit_audit_event(
        actor,
        AuditAction.CREATE,
        AuditTarget.DEVICE,
        device.id,
        duration_ms=_elapsed_ms(started),
        target_name=device.serial_number,
        description=f"Registered {device.category.value} {device.serial_number}",
        metadata={"school_code": device.school_code, "asset_tag": device.asset_tag},
    )
    return DeviceResponse.model_validate(device)


@router.post(
    "/bulk",
    response_model=BulkDeviceResult,
    summary="Bulk Register Devices",
    description="""
Register many devices at once. Each item is validated and inserted on its
own; failures are reported per item and never abort the batch.

**Response:** `successful` devices, `failed` items with a reason, and a
`summary` of the counts.

**Access:** Admin and RTB staff
""",
)
async def bulk_create_devices(
    request: BulkCreateRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_staff),
) -> BulkDeviceResult:
    started = time.perf_counter()
    try:
        result = await service.bulk_create_devices(db, request.devices)
    except ServiceError as e:
        await _handle_service_error(e, actor, AuditAction.IMPORT)
    except Exception as e:
        raise _internal_error(e, "bulk creating devices") from e

    await emit_audit_event(
        actor,
        AuditAction.IMPORT,
        AuditTarget.DEVICE,
        None,
        duration_ms=_elapsed_ms(started),
        description=f"Bulk registered {len(result.successful)} device(s)",
        metadata=result.summary,
    )
    return result


@router.post(
    "/bulk-assign",
    response_model=BulkDeviceResult,
    summary="Bulk Assign Devices to School",
    description="""
Bind devices to a school by serial number. Tags are issued in sequence
from the school's counter.

Items that are unknown, already bound to a school or not `Available`
are reported in `failed` and left untouched.

**Access:** Admin and RTB staff
""",
    responses={404: {"description": "School not found"}},
)
async def bulk_assign_devices(
    request: BulkAssignRequest,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_staff),
) -> BulkDeviceResult:
    started = time.perf_counter()
    try:
        result = await service.bulk_assign_devices(
            db, request.serial_numbers, request.school_code
        )
    except ServiceError as e:
        await _handle_service_error(e, actor, AuditAction.ASSIGN)
    except Exception as e:
        raise _internal_error(e, f"bulk assigning devices to {request.school_code}") from e

    await emit_audit_event(
        actor,
        AuditAction.ASSIGN,
        AuditTarget.DEVICE,
        None,
        duration_ms=_elapsed_ms(started),
        target_name=request.school_code,
        description=f"Assigned {len(result.successful)} device(s) to {request.school_code}",
        metadata=result.summary,
    )
    return result


# ============================================
# Read endpoints
# ============================================


@router.get(
    "",
    response_model=DeviceListResponse,
    summary="List Devices",
    description="""
Paginated list of devices.

**Filters:** `category`, `status`, `condition`, `school_code`, `search`
(serial number, brand, model, asset tag)

**Sorting:** `sort_by` (created_at, serial_number, category, status,
asset_tag), `sort_order` (asc, desc). Default: newest first.
""",
)
async def list_devices(
    category: DeviceCategory | None = Query(None),
    status_filter: DeviceStatus | None = Query(None, alias="status"),
    condition: DeviceCondition | None = Query(None),
    school_code: str | None = Query(None, min_length=1, max_length=50),
    search: str | None = Query(None, min_length=1, max_length=100),
    sort_by: DeviceSortField = Query(DeviceSortField.CREATED_AT),
    sort_order: SortOrder = Query(SortOrder.DESC),
    skip: int = Query(0, ge=0, description="Records to skip"),
    limit: int = Query(20, ge=1, le=100, description="Maximum records to return"),
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_staff),
) -> DeviceListResponse:
    filters = DeviceFilters(
        category=category,
        status=status_filter,
        condition=condition,
        school_code=school_code,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        skip=skip,
        limit=limit,
    )
    try:
        result = await service.list_devices(db, filters)
    except Exception as e:
        raise _internal_error(e, "listing devices") from e

    return DeviceListResponse(
        devices=[DeviceResponse.model_validate(device) for device in result["devices"]],
        total=result["total"],
        skip=result["skip"],
        limit=result["limit"],
    )


@router.get(
    "/stats",
    response_model=DeviceStats,
    summary="Device Statistics",
)
async def get_device_stats(
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_staff),
) -> DeviceStats:
    try:
        return await service.get_device_stats(db)
    except Exception as e:
        raise _internal_error(e, "computing device stats") from e


@router.get(
    "/{device_id}",
    response_model=DeviceResponse,
    summary="Get Device",
    responses={404: {"description": "Device not found"}},
)
async def get_device(
    device_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_staff),
) -> DeviceResponse:
    try:
        device = await service.get_device(db, device_id)
        return DeviceResponse.model_validate(device)
    except ServiceError as e:
        await _handle_service_error(e)
    except Exception as e:
        raise _internal_error(e, f"loading device {device_id}") from e


# ============================================
# Administrative edit
# ============================================


@router.patch(
    "/{device_id}",
    response_model=DeviceResponse,
    summary="Update Device",
    description="""
Administrative edit of a device.

- Changing `school_code` binds the device to that school with a fresh tag
- Sending `school_code` as `""` or `null` unbinds it and clears its tag
- An `Available` device can never belong to a school

**Access:** Admin and RTB staff
""",
    responses={
        400: {"description": "Edit would leave the device in an invalid state"},
        404: {"description": "Device or school not found"},
        409: {"description": "Serial number already registered"},
    },
)
async def update_device(
    device_id: UUID,
    request: DeviceUpdate,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_staff),
) -> DeviceResponse:
    started = time.perf_counter()
    try:
        device = await service.update_device(db, device_id, request)
    except ServiceError as e:
        await _handle_service_error(e, actor, AuditAction.UPDATE, device_id)
    except Exception as e:
        raise _internal_error(e, f"updating device {device_id}") from e

    await emit_audit_event(
        actor,
        AuditAction.UPDATE,
        AuditTarget.DEVICE,
        device.id,
        duration_ms=_elapsed_ms(started),
        target_name=device.serial_number,
        description=f"Updated device {device.serial_number}",
        metadata={"fields": sorted(request.model_fields_set)},
    )
    return DeviceResponse.model_validate(device)


@router.delete(
    "/{device_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Device",
    responses={404: {"description": "Device not found"}},
)
async def delete_device(
    device_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: CurrentUser = Depends(require_staff),
) -> Response:
    started = time.perf_counter()
    try:
        device = await service.delete_device(db, device_id)
    except ServiceError as e:
        await _handle_service_error(e, actor, AuditAction.DELETE, device_id)
    except Exception as e:
        raise _internal_error(e, f"deleting device {device_id}") from e

    await emit_audit_event(
        actor,
        AuditAction.DELETE,
        AuditTarget.DEVICE,
        device_id,
        duration_ms=_elapsed_ms(started),
        target_name=device.serial_number,
        description=f"Deleted device {device.serial_number}",
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
