"""
Device Registry Service

Business logic for the device registry:

1. Single create: unique serial number; a device created for a school is
   bound immediately (status Assigned, fresh asset tag).
2. Bulk create: every item is validated and inserted independently inside
   its own SAVEPOINT; failures are collected, never raised.
3. Bulk assign: binds devices (by serial number) to one school. The school's
   tag counter is opened once before the loop and advanced in memory.
4. Administrative edit: serial re-check, re-binding with a fresh tag, or
   unbinding (tag cleared, Assigned devices return to Available).
5. Read side: get, filtered list, dashboard stats, delete.

Every path that issues tags goes through asset_tags.open_tag_sequence, so
single and bulk operations share the same locked per-school counter.
"""

import logging
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rtb_assets.modules.devices import asset_tags, repository
from rtb_assets.modules.devices.asset_tags import TagSequence
from rtb_assets.modules.devices.models import (
    SERIAL_NUMBER_CONSTRAINT,
    Device,
    DeviceCategory,
    DeviceCondition,
    DeviceStatus,
)
from rtb_assets.modules.devices.schemas import (
    BulkDeviceResult,
    DeviceCreate,
    DeviceFilters,
    DeviceResponse,
    DeviceStats,
    DeviceUpdate,
)
from rtb_assets.modules.schools.models import School
from rtb_assets.modules.schools.repository import SchoolRepository
from rtb_assets.modules.shared.exceptions import (
    ConflictError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from rtb_assets.modules.shared.schemas import BulkItemFailure

logger = logging.getLogger(__name__)


class DeviceNotFoundError(NotFoundError):
    """Raised when a device does not exist."""

    def __init__(self, identifier: UUID | str):
        super().__init__(f"Device {identifier} not found", error_code="DEVICE_NOT_FOUND")


class SchoolNotFoundError(NotFoundError):
    """Raised when a school code does not match any school."""

    def __init__(self, school_code: str):
        super().__init__(
            f"School with code {school_code} not found",
            error_code="SCHOOL_NOT_FOUND",
            school_code=school_code,
        )


class DuplicateSerialNumberError(ConflictError):
    """Raised when a serial number is already registered."""

    def __init__(self, serial_number: str):
        super().__init__(
            f"Device with serial number {serial_number} already exists",
            error_code="DUPLICATE_SERIAL_NUMBER",
            serial_number=serial_number,
        )


def _is_serial_conflict(error: IntegrityError) -> bool:
    return SERIAL_NUMBER_CONSTRAINT in str(error.orig)


async def _get_school(db: AsyncSession, school_code: str) -> School:
    school = await SchoolRepository.get_by_code(db, school_code)
    if not school:
        raise SchoolNotFoundError(school_code)
    return school


async def _insert_device(
    db: AsyncSession,
    data: DeviceCreate,
    sequence: TagSequence | None,
) -> Device:
    """
    Insert one device, binding it to the sequence's school when given.

    A device without a school can never be Assigned, so that status is
    normalised to Available.
    """
    if await repository.get_by_serial(db, data.serial_number):
        raise DuplicateSerialNumberError(data.serial_number)

    fields = data.model_dump(exclude={"school_code", "status"})
    if sequence is not None:
        fields["school_code"] = sequence.school_code
        fields["status"] = DeviceStatus.ASSIGNED
        fields["asset_tag"] = sequence.next_tag(data.category)
    else:
        fields["status"] = (
            DeviceStatus.AVAILABLE if data.status == DeviceStatus.ASSIGNED else data.status
        )

    return await repository.create(db, **fields)


# ============================================
# Create
# ============================================


async def create_device(db: AsyncSession, data: DeviceCreate) -> Device:
    """
    Register one device.

    Raises:
        DuplicateSerialNumberError: Serial number already registered
        SchoolNotFoundError: school_code given but unknown
        TagAllocationConflictError: Tag allocation kept colliding
    """

    async def unit() -> Device:
        sequence = None
        if data.school_code:
            school = await _get_school(db, data.school_code)
            sequence = await asset_tags.open_tag_sequence(db, school)

        device = await _insert_device(db, data, sequence)
        if sequence is not None:
            await asset_tags.save_tag_sequence(db, sequence)
        await db.commit()
        return device

    try:
        device = await asset_tags.run_tag_allocation(db, unit, data.school_code)
    except ServiceError:
        await db.rollback()
        raise
    except IntegrityError as e:
        if _is_serial_conflict(e):
            raise DuplicateSerialNumberError(data.serial_number) from e
        raise

    logger.info(
        f"Created device {device.id} ({device.serial_number}), "
        f"school={device.school_code}, tag={device.asset_tag}"
    )
    return device


def _item_identifier(raw: object, index: int) -> str:
    if isinstance(raw, dict) and raw.get("serial_number"):
        return str(raw["serial_number"])
    return f"item {index + 1}"


def _first_validation_message(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first['msg']}" if location else first["msg"]


async def bulk_create_devices(db: AsyncSession, items: list[dict]) -> BulkDeviceResult:
    """
    Register many devices, each independently.

    Items are validated one by one so a malformed item is reported rather
    than rejecting the request. Each insert runs inside its own SAVEPOINT;
    a database failure rolls back only that item. One commit persists every
    successful item.

    Returns:
        BulkDeviceResult with successful devices and per-item failures
    """
    result = BulkDeviceResult()
    sequences: dict[str, TagSequence] = {}
    seen_serials: set[str] = set()

    for index, raw in enumerate(items):
        identifier = _item_identifier(raw, index)

        try:
            data = DeviceCreate.model_validate(raw)
        except PydanticValidationError as e:
            result.failed.append(
                BulkItemFailure(item=identifier, reason=_first_validation_message(e))
            )
            continue

        if data.serial_number in seen_serials:
            result.failed.append(
                BulkItemFailure(item=identifier, reason="Duplicate serial number in batch")
            )
            continue
        seen_serials.add(data.serial_number)

        try:
            sequence = None
            if data.school_code:
                # Opened in a savepoint of its own, before the item's, so the counter
                # lock survives item rollbacks and a counter race never aborts the batch
                sequence = sequences.get(data.school_code)
                if sequence is None:
                    school = await _get_school(db, data.school_code)
                    sequence = await asset_tags.open_tag_sequence_in_savepoint(db, school)
                    sequences[data.school_code] = sequence

            async with db.begin_nested():
                device = await _insert_device(db, data, sequence)
            result.successful.append(DeviceResponse.model_validate(device))
        except ServiceError as e:
            result.failed.append(BulkItemFailure(item=identifier, reason=e.message))
        except IntegrityError as e:
            reason = (
                f"Device with serial number {data.serial_number} already exists"
                if _is_serial_conflict(e)
                else "Device violates a uniqueness constraint"
            )
            result.failed.append(BulkItemFailure(item=identifier, reason=reason))

    for sequence in sequences.values():
        await asset_tags.save_tag_sequence(db, sequence)
    await db.commit()

    logger.info(
        f"Bulk device create: {len(result.successful)} created, {len(result.failed)} failed"
    )
    return result


# ============================================
# Bulk assign
# ============================================


async def bulk_assign_devices(
    db: AsyncSession,
    serial_numbers: list[str],
    school_code: str,
) -> BulkDeviceResult:
    """
    Bind devices to a school by serial number.

    The school's counter is locked and read once; tags are then issued in
    memory per item, so one batch always produces strictly increasing tags.
    Items that are unknown, already bound, or not Available are reported as
    failures and left untouched.

    Raises:
        SchoolNotFoundError: Unknown school (the whole batch fails)
    """

    async def unit() -> BulkDeviceResult:
        school = await _get_school(db, school_code)
        sequence = await asset_tags.open_tag_sequence(db, school)
        result = BulkDeviceResult()
        bound: list[Device] = []

        for raw_serial in serial_numbers:
            serial_number = raw_serial.strip()
            device = await repository.get_by_serial(db, serial_number, for_update=True)
            if device is None:
                result.failed.append(BulkItemFailure(item=raw_serial, reason="Device not found"))
                continue
            if device.school_code:
                result.failed.append(
                    BulkItemFailure(
                        item=raw_serial,
                        reason=f"Already assigned to school {device.school_code}",
                    )
                )
                continue
            if device.status != DeviceStatus.AVAILABLE:
                result.failed.append(
                    BulkItemFailure(item=raw_serial, reason=f"Device is {device.status.value}")
                )
                continue

            device.school_code = school.school_code
            device.status = DeviceStatus.ASSIGNED
            device.asset_tag = sequence.next_tag(device.category)
            bound.append(device)

        await asset_tags.save_tag_sequence(db, sequence)
        await db.flush()
        result.successful = [DeviceResponse.model_validate(device) for device in bound]
        await db.commit()
        return result

    result = await asset_tags.run_tag_allocation(db, unit, school_code)
    logger.info(
        f"Bulk assign to {school_code}: {len(result.successful)} assigned, "
        f"{len(result.failed)} failed"
    )
    return result


# ============================================
# Administrative edit
# ============================================


async def update_device(db: AsyncSession, device_id: UUID, data: DeviceUpdate) -> Device:
    """
    Apply an administrative edit.

    - A changed serial number must stay unique.
    - A new school_code binds the device to that school with a fresh tag.
    - An empty school_code unbinds the device and clears its tag; an
      Assigned device goes back to Available.
    - The result must satisfy: Available devices have no school, Assigned
      devices have one.

    Raises:
        DeviceNotFoundError, DuplicateSerialNumberError, SchoolNotFoundError,
        ValidationError
    """
    changes = data.model_dump(exclude_unset=True)
    # Serial reported on a uniqueness race; the device is expired after rollback
    conflicting_serial = changes.get("serial_number")

    async def unit() -> Device:
        nonlocal conflicting_serial
        device = await repository.get_by_id(db, device_id, for_update=True)
        if not device:
            raise DeviceNotFoundError(device_id)

        new_serial = changes.get("serial_number")
        conflicting_serial = new_serial or device.serial_number
        if new_serial and new_serial != device.serial_number:
            if await repository.get_by_serial(db, new_serial):
                raise DuplicateSerialNumberError(new_serial)

        for field in ("serial_number", "category", "brand", "model", "condition", "status"):
            if changes.get(field) is not None:
                setattr(device, field, changes[field])
        if "specifications" in changes:
            device.specifications = changes["specifications"]

        if "school_code" in changes:
            new_code = changes["school_code"]
            if new_code is None:
                if device.school_code:
                    logger.info(f"Unbinding device {device.id} from {device.school_code}")
                device.school_code = None
                device.asset_tag = None
                if device.status == DeviceStatus.ASSIGNED:
                    device.status = DeviceStatus.AVAILABLE
            elif new_code != device.school_code:
                school = await _get_school(db, new_code)
                sequence = await asset_tags.open_tag_sequence(db, school)
                device.school_code = school.school_code
                device.asset_tag = sequence.next_tag(device.category)
                device.status = DeviceStatus.ASSIGNED
                await asset_tags.save_tag_sequence(db, sequence)

        if device.status == DeviceStatus.AVAILABLE and device.school_code:
            raise ValidationError(
                "An Available device cannot belong to a school; unbind it first",
                error_code="INVALID_DEVICE_STATE",
            )
        if device.status == DeviceStatus.ASSIGNED and not device.school_code:
            raise ValidationError(
                "An Assigned device must belong to a school",
                error_code="INVALID_DEVICE_STATE",
            )

        await db.commit()
        await db.refresh(device)
        return device

    try:
        device = await asset_tags.run_tag_allocation(db, unit, changes.get("school_code"))
    except ServiceError:
        await db.rollback()
        raise
    except IntegrityError as e:
        if _is_serial_conflict(e):
            raise DuplicateSerialNumberError(conflicting_serial or "") from e
        raise

    logger.info(f"Updated device {device.id}: fields={sorted(changes)}")
    return device


# ============================================
# Read side
# ============================================


async def get_device(db: AsyncSession, device_id: UUID) -> Device:
    device = await repository.get_by_id(db, device_id)
    if not device:
        raise DeviceNotFoundError(device_id)
    return device


async def list_devices(db: AsyncSession, filters: DeviceFilters) -> dict:
    devices, total = await repository.list_devices(db, filters)
    return {
        "devices": devices,
        "total": total,
        "skip": filters.skip,
        "limit": filters.limit,
    }


async def get_device_stats(db: AsyncSession) -> DeviceStats:
    """Counts by status, category and condition (zero-filled)."""
    by_status = await repository.count_grouped(db, Device.status)
    by_category = await repository.count_grouped(db, Device.category)
    by_condition = await repository.count_grouped(db, Device.condition)

    return DeviceStats(
        total=sum(by_status.values()),
        by_status={s.value: by_status.get(s.value, 0) for s in DeviceStatus},
        by_category={c.value: by_category.get(c.value, 0) for c in DeviceCategory},
        by_condition={c.value: by_condition.get(c.value, 0) for c in DeviceCondition},
    )


async def delete_device(db: AsyncSession, device_id: UUID) -> Device:
    """Remove a device from the registry. Application snapshots keep their copy."""
    device = await repository.get_by_id(db, device_id, for_update=True)
    if not device:
        raise DeviceNotFoundError(device_id)
    await repository.delete(db, device)
    await db.commit()
    logger.info(f"Deleted device {device_id} ({device.serial_number})")
    return device
