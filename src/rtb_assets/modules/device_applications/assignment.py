"""
Device Assignment

Hands devices over to an approved, eligible application in one transaction:

1. Lock the application and check it is Approved and eligible.
2. Lock every requested device (in ID order). Unknown IDs fail the whole
   request with NotFound; devices that are not Available fail it with
   Conflict listing their serial numbers. Nothing has been written yet.
3. Lock the school's tag counter and bind each device: school, status
   Assigned, fresh asset tag.
4. Move the application to Assigned with the assigner, timestamp and a
   snapshot of the devices.
5. Commit, then emit a single "devices assigned" event.

Any failure rolls back the lot, so the caller can retry with the same list.
"""

import logging
import time
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from rtb_assets.core.auth import CurrentUser
from rtb_assets.modules.device_applications import repository
from rtb_assets.modules.device_applications.events import (
    LifecycleEvent,
    elapsed_ms,
    emit_lifecycle_event,
)
from rtb_assets.modules.device_applications.models import ApplicationStatus, DeviceApplication
from rtb_assets.modules.device_applications.service import (
    ApplicationNotFoundError,
    InvalidApplicationStateError,
)
from rtb_assets.modules.devices import asset_tags
from rtb_assets.modules.devices import repository as device_repository
from rtb_assets.modules.devices.models import DeviceStatus
from rtb_assets.modules.schools.repository import SchoolRepository
from rtb_assets.modules.shared.exceptions import (
    ConflictError,
    NotFoundError,
    ServiceError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class DevicesNotFoundError(NotFoundError):
    """Raised when some requested devices do not exist."""

    def __init__(self, device_ids: list[UUID]):
        super().__init__(
            f"{len(device_ids)} device(s) not found",
            error_code="DEVICES_NOT_FOUND",
            device_ids=[str(device_id) for device_id in device_ids],
        )


class DevicesUnavailableError(ConflictError):
    """Raised when some requested devices are not Available."""

    def __init__(self, serial_numbers: list[str]):
        super().__init__(
            f"Devices not available for assignment: {', '.join(serial_numbers)}",
            error_code="DEVICES_UNAVAILABLE",
            serial_numbers=serial_numbers,
        )


def _validate_device_ids(device_ids: list[UUID]) -> None:
    if not device_ids:
        raise ValidationError("At least one device must be selected", error_code="NO_DEVICES")
    if len(set(device_ids)) != len(device_ids):
        raise ValidationError(
            "The same device was selected more than once",
            error_code="DUPLICATE_DEVICES",
        )


async def assign_devices(
    db: AsyncSession,
    application_id: UUID,
    actor: CurrentUser,
    device_ids: list[UUID],
) -> DeviceApplication:
    """
    Bind the devices to the application's school and mark it Assigned.

    All or nothing: either every device and the application end up
    Assigned, or nothing changes.

    Raises:
        ValidationError: Empty or repeated device IDs
        ApplicationNotFoundError
        InvalidApplicationStateError: Not Approved, or not eligible
        DevicesNotFoundError: Some IDs are unknown
        DevicesUnavailableError: Some devices are not Available
        TagAllocationConflictError: Tag allocation kept colliding
    """
    started = time.perf_counter()
    _validate_device_ids(device_ids)

    async def unit() -> tuple[DeviceApplication, str]:
        application = await repository.get_by_id(db, application_id, for_update=True)
        if not application:
            raise ApplicationNotFoundError(application_id)
        if application.status != ApplicationStatus.APPROVED:
            raise InvalidApplicationStateError(
                f"Devices can only be assigned to approved applications "
                f"(status: {application.status.value})",
                application.status,
            )
        if not application.is_eligible:
            raise InvalidApplicationStateError(
                "Application is not marked eligible for devices",
                application.status,
            )

        school = await SchoolRepository.get_by_id(db, application.school_id)
        if school is None:
            raise NotFoundError(
                f"School {application.school_id} not found", error_code="SCHOOL_NOT_FOUND"
            )

        locked = {
            device.id: device
            for device in await device_repository.get_many_for_update(db, device_ids)
        }
        missing = [device_id for device_id in device_ids if device_id not in locked]
        if missing:
            raise DevicesNotFoundError(missing)

        devices = [locked[device_id] for device_id in device_ids]
        unavailable = [
            device.serial_number
            for device in devices
            if device.status != DeviceStatus.AVAILABLE or device.school_code
        ]
        if unavailable:
            raise DevicesUnavailableError(unavailable)

        sequence = await asset_tags.open_tag_sequence(db, school)
        snapshot = []
        for device in devices:
            device.school_code = school.school_code
            device.status = DeviceStatus.ASSIGNED
            device.asset_tag = sequence.next_tag(device.category)
            snapshot.append(
                {
                    "device_id": str(device.id),
                    "serial_number": device.serial_number,
                    "category": device.category.value,
                }
            )
        await asset_tags.save_tag_sequence(db, sequence)

        await repository.update_status(
            db,
            application,
            ApplicationStatus.ASSIGNED,
            assigned_by=actor.id,
            assigned_at=datetime.now(UTC),
            assigned_devices=snapshot,
        )
        await db.commit()
        return application, school.school_name

    try:
        application, school_name = await asset_tags.run_tag_allocation(db, unit)
    except ServiceError as e:
        await db.rollback()
        logger.warning(f"Assignment for application {application_id} failed: {e.message}")
        raise

    device_count = len(device_ids)
    logger.info(
        f"Assigned {device_count} device(s) to application {application_id} by {actor.id}"
    )
    await emit_lifecycle_event(
        LifecycleEvent(
            application_id=application.id,
            school_id=application.school_id,
            applicant_id=application.applicant_id,
            old_status=ApplicationStatus.APPROVED,
            new_status=ApplicationStatus.ASSIGNED,
            actor=actor,
            duration_ms=elapsed_ms(started),
            payload={"school_name": school_name, "device_count": device_count},
        )
    )
    return application
