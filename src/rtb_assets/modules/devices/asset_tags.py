"""
Asset Tag Allocation

Asset tags identify a device within the school it is bound to:

    CAT/DIS/SCH/NNNN   e.g. LAP/KIC/GAS/0007

CAT, DIS and SCH are the first three letters (upper-cased) of the device
category, the school's district and the school's name. NNNN is a
zero-padded sequence number scoped to the school.

Allocation:
1. Lock the school's row in asset_tag_sequences (created on first use).
2. Reconcile it with the highest sequence found on the school's current
   devices, so tags written before the counter existed are never reused.
3. Hand out max + 1, max + 2, ... in memory for the rest of the transaction.
4. Write the new high-water mark back before commit.

Because the row stays locked until commit, two transactions binding
devices to the same school are serialised and can never observe the same
maximum. The (school_code, asset_tag) unique constraint backs this up;
run_tag_allocation retries a whole unit of work that trips it.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rtb_assets.core.config import settings
from rtb_assets.modules.devices import repository
from rtb_assets.modules.devices.models import (
    ASSET_TAG_CONSTRAINT,
    ASSET_TAG_SEQUENCE_PKEY,
    DeviceCategory,
)
from rtb_assets.modules.schools.models import School
from rtb_assets.modules.shared.exceptions import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TAG_SEPARATOR = "/"
TAG_SEGMENTS = 4
SEGMENT_LENGTH = 3
SEQUENCE_WIDTH = 4


class TagAllocationConflictError(ConflictError):
    """Raised when a unit of work keeps colliding on asset tags."""

    def __init__(self, school_code: str | None = None):
        super().__init__(
            "Could not allocate a unique asset tag, please retry",
            error_code="ASSET_TAG_CONFLICT",
            school_code=school_code,
        )


def tag_segment(value: str) -> str:
    """First three letters of a name, upper-cased."""
    return value.strip()[:SEGMENT_LENGTH].upper()


def format_asset_tag(
    category: DeviceCategory | str,
    district: str,
    school_name: str,
    sequence: int,
) -> str:
    """Build a tag like LAP/KIC/GAS/0001."""
    category_name = category.value if isinstance(category, DeviceCategory) else category
    return TAG_SEPARATOR.join(
        [
            tag_segment(category_name),
            tag_segment(district),
            tag_segment(school_name),
            str(sequence).zfill(SEQUENCE_WIDTH),
        ]
    )


def parse_tag_sequence(tag: str | None) -> int | None:
    """
    Extract the sequence number from a tag.

    Returns None for missing or malformed tags (wrong number of segments,
    non-numeric last segment) so historical data never blocks allocation.
    """
    if not tag:
        return None
    parts = tag.split(TAG_SEPARATOR)
    if len(parts) != TAG_SEGMENTS:
        return None
    try:
        return int(parts[-1].strip())
    except ValueError:
        return None


def next_sequence(tags: Iterable[str | None]) -> int:
    """
    Next free sequence given the tags a school already holds.

    This is the highest well-formed sequence plus one (1 for a school
    with no parseable tags). On its own it is NOT safe under concurrent
    allocation; open_tag_sequence adds the locking.
    """
    highest = 0
    for tag in tags:
        sequence = parse_tag_sequence(tag)
        if sequence is not None and sequence > highest:
            highest = sequence
    return highest + 1


@dataclass
class TagSequence:
    """
    Locked allocation state for one school within one transaction.

    Obtain with open_tag_sequence, call next_tag once per device, then
    save_tag_sequence before committing.
    """

    school_code: str
    district: str
    school_name: str
    last_value: int
    stored_value: int

    def next_tag(self, category: DeviceCategory | str) -> str:
        self.last_value += 1
        return format_asset_tag(category, self.district, self.school_name, self.last_value)

    @property
    def issued(self) -> int:
        """How many tags were handed out since the counter was last saved."""
        return self.last_value - self.stored_value


async def open_tag_sequence(db: AsyncSession, school: School) -> TagSequence:
    """
    Lock the school's tag counter and return an allocation handle.

    Args:
        db: Database session; the lock is held until it commits or rolls back
        school: School the devices are being bound to

    Returns:
        TagSequence positioned after the highest sequence in use
    """
    stored = await repository.lock_tag_sequence(db, school.school_code)
    highest_in_use = next_sequence(await repository.list_school_tags(db, school.school_code)) - 1

    if stored is None:
        await repository.insert_tag_sequence(db, school.school_code, highest_in_use)
        stored = highest_in_use
        logger.info(
            f"Created asset tag counter for school {school.school_code} at {highest_in_use}"
        )

    return TagSequence(
        school_code=school.school_code,
        district=school.district,
        school_name=school.school_name,
        last_value=max(stored, highest_in_use),
        stored_value=stored,
    )


async def open_tag_sequence_in_savepoint(db: AsyncSession, school: School) -> TagSequence:
    """
    open_tag_sequence for transactions that must survive a failed open.

    The open runs inside its own SAVEPOINT. If a concurrent transaction
    created the school's counter row first, only the savepoint is rolled
    back and the open is retried against the now committed row.

    Raises:
        TagAllocationConflictError: If every attempt conflicted
    """
    attempts = max(1, settings.tag_allocation_attempts)
    for attempt in range(1, attempts + 1):
        try:
            async with db.begin_nested():
                return await open_tag_sequence(db, school)
        except IntegrityError as e:
            if not is_tag_conflict(e):
                raise
            logger.warning(
                f"Asset tag counter race for school {school.school_code} "
                f"(attempt {attempt}/{attempts}): {e.orig}"
            )
    raise TagAllocationConflictError(school.school_code)


async def save_tag_sequence(db: AsyncSession, sequence: TagSequence) -> None:
    """Persist the counter's high-water mark if it moved."""
    if sequence.last_value == sequence.stored_value:
        return
    await repository.save_tag_sequence(db, sequence.school_code, sequence.last_value)
    sequence.stored_value = sequence.last_value


def is_tag_conflict(error: IntegrityError) -> bool:
    """True if the violation is on the tag constraint or the counter's primary key."""
    message = str(error.orig)
    return ASSET_TAG_CONSTRAINT in message or ASSET_TAG_SEQUENCE_PKEY in message


async def run_tag_allocation(
    db: AsyncSession,
    unit: Callable[[], Awaitable[T]],
    school_code: str | None = None,
) -> T:
    """
    Run a unit of work that allocates tags and commits, retrying on tag conflicts.

    The unit must perform all of its reads and writes and commit. When the
    commit fails on the tag constraint (or two transactions race to create
    the same counter row) the session is rolled back and the unit re-run
    from scratch. Other integrity errors propagate after rollback.

    Raises:
        TagAllocationConflictError: If every attempt conflicted
    """
    attempts = max(1, settings.tag_allocation_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await unit()
        except IntegrityError as e:
            await db.rollback()
            if not is_tag_conflict(e):
                raise
            logger.warning(
                f"Asset tag conflict for school {school_code} "
                f"(attempt {attempt}/{attempts}): {e.orig}"
            )
    raise TagAllocationConflictError(school_code)
