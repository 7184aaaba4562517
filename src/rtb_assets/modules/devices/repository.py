"""
Device Repository

Database operations for devices and the per-school asset tag counter.
Functions only flush; the service layer owns commits.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rtb_assets.modules.shared.schemas import SortOrder

from .models import AssetTagSequence, Device
from .schemas import DeviceFilters, DeviceSortField

SORT_COLUMNS = {
    DeviceSortField.CREATED_AT: Device.created_at,
    DeviceSortField.SERIAL_NUMBER: Device.serial_number,
    DeviceSortField.CATEGORY: Device.category,
    DeviceSortField.STATUS: Device.status,
    DeviceSortField.ASSET_TAG: Device.asset_tag,
}


async def create(db: AsyncSession, **fields) -> Device:
    """Insert a device and return it with server defaults loaded."""
    device = Device(**fields)
    db.add(device)
    await db.flush()
    await db.refresh(device)
    return device


async def get_by_id(db: AsyncSession, id: UUID, for_update: bool = False) -> Device | None:
    """Get a device by ID, optionally locking the row."""
    query = select(Device).where(Device.id == id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_by_serial(
    db: AsyncSession, serial_number: str, for_update: bool = False
) -> Device | None:
    """Get a device by serial number, optionally locking the row."""
    query = select(Device).where(Device.serial_number == serial_number)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_many_for_update(db: AsyncSession, ids: Sequence[UUID]) -> list[Device]:
    """
    Lock and return the devices with the given IDs.

    Rows are locked in ID order so concurrent assigners always acquire
    locks in the same order.
    """
    if not ids:
        return []
    result = await db.execute(
        select(Device).where(Device.id.in_(ids)).order_by(Device.id).with_for_update()
    )
    return list(result.scalars().all())


async def list_school_tags(db: AsyncSession, school_code: str) -> list[str | None]:
    """Asset tags of every device currently bound to the school."""
    result = await db.execute(select(Device.asset_tag).where(Device.school_code == school_code))
    return list(result.scalars().all())


async def delete(db: AsyncSession, device: Device) -> None:
    await db.delete(device)
    await db.flush()


async def list_devices(db: AsyncSession, filters: DeviceFilters) -> tuple[list[Device], int]:
    """
    List devices matching the filters.

    Returns:
        (page of devices, total matching count)
    """
    conditions = []
    if filters.category:
        conditions.append(Device.category == filters.category)
    if filters.status:
        conditions.append(Device.status == filters.status)
    if filters.condition:
        conditions.append(Device.condition == filters.condition)
    if filters.school_code:
        conditions.append(Device.school_code == filters.school_code)
    if filters.search:
        pattern = f"%{filters.search}%"
        conditions.append(
            or_(
                Device.serial_number.ilike(pattern),
                Device.brand.ilike(pattern),
                Device.model.ilike(pattern),
                Device.asset_tag.ilike(pattern),
            )
        )

    total_result = await db.execute(select(func.count(Device.id)).where(*conditions))
    total = total_result.scalar_one()

    sort_column = SORT_COLUMNS[filters.sort_by]
    order = sort_column.asc() if filters.sort_order == SortOrder.ASC else sort_column.desc()

    result = await db.execute(
        select(Device)
        .where(*conditions)
        .order_by(order, Device.id)
        .offset(filters.skip)
        .limit(filters.limit)
    )
    return list(result.scalars().all()), total


async def count_grouped(db: AsyncSession, column) -> dict[str, int]:
    """Count devices grouped by an enum column, keyed by the enum value."""
    result = await db.execute(select(column, func.count(Device.id)).group_by(column))
    return {value.value: count for value, count in result.all()}


# ============================================
# Asset tag counter
# ============================================


async def lock_tag_sequence(db: AsyncSession, school_code: str) -> int | None:
    """
    Lock the school's counter row for the rest of the transaction.

    Returns:
        The last issued sequence number, or None if the school has no counter yet
    """
    result = await db.execute(
        select(AssetTagSequence.last_value)
        .where(AssetTagSequence.school_code == school_code)
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def insert_tag_sequence(db: AsyncSession, school_code: str, last_value: int) -> None:
    """
    Create the school's counter row.

    A concurrent insert for the same school blocks on the primary key and
    then fails with IntegrityError once the first transaction commits.
    """
    await db.execute(
        insert(AssetTagSequence).values(school_code=school_code, last_value=last_value)
    )


async def save_tag_sequence(db: AsyncSession, school_code: str, last_value: int) -> None:
    await db.execute(
        update(AssetTagSequence)
        .where(AssetTagSequence.school_code == school_code)
        .values(last_value=last_value)
    )
