"""
Shared fixtures: mocked database session, callers, a school and an
in-memory asset tag counter.
"""

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from rtb_assets.core.auth import CurrentUser
from rtb_assets.modules.devices.models import (
    ASSET_TAG_SEQUENCE_PKEY,
    Device,
    DeviceCategory,
    DeviceCondition,
    DeviceStatus,
)
from rtb_assets.modules.schools.models import School, SchoolCategory, SchoolStatus
from rtb_assets.modules.users.models import UserRole


class FakeSavepoint:
    """Async context manager standing in for AsyncSession.begin_nested()."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.refresh = AsyncMock()
    db.flush = AsyncMock()
    db.get = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    db.begin_nested = MagicMock(side_effect=lambda: FakeSavepoint())
    return db


@pytest.fixture
def staff_user():
    """An RTB staff member."""
    return CurrentUser(
        id=uuid4(),
        role=UserRole.RTB_STAFF.value,
        email="staff@rtb.gov.rw",
        name="Staff Reviewer",
    )


@pytest.fixture
def school_user():
    """A school representative."""
    return CurrentUser(
        id=uuid4(),
        role=UserRole.SCHOOL.value,
        email="head@gasabo-tss.rw",
        name="School Head",
    )


@pytest.fixture
def sample_school(school_user):
    """School represented by school_user."""
    school = MagicMock(spec=School)
    school.id = uuid4()
    school.school_code = "SCH-001"
    school.school_name = "Gasabo TSS"
    school.category = SchoolCategory.TSS
    school.province = "Kigali"
    school.district = "Kicukiro"
    school.sector = "Niboye"
    school.status = SchoolStatus.ACTIVE
    school.representative_id = school_user.id
    return school


@pytest.fixture
def make_device():
    """Factory for Device mocks with every column populated."""

    def make(**overrides):
        device = MagicMock(spec=Device)
        device.id = uuid4()
        device.serial_number = "SN-0001"
        device.category = DeviceCategory.LAPTOP
        device.brand = "Dell"
        device.model = "Latitude 3420"
        device.condition = DeviceCondition.NEW
        device.specifications = None
        device.status = DeviceStatus.AVAILABLE
        device.school_code = None
        device.asset_tag = None
        device.created_at = datetime.now(UTC)
        device.updated_at = datetime.now(UTC)
        for field, value in overrides.items():
            setattr(device, field, value)
        return device

    return make


class FakeTagStore:
    """
    One school's asset_tag_sequences row and committed device tags, in memory.

    Mimics how PostgreSQL treats the counter row:
    - lock_tag_sequence blocks while another transaction holds the row
    - a row inserted but not yet committed is invisible to other transactions
    - a second insert of the row waits for the first and then fails on the
      primary key
    Sessions are AsyncMocks whose commit/rollback end the transaction.
    """

    def __init__(self):
        self.counter: int | None = None
        self.tags: list[str] = []
        self._row_lock = asyncio.Lock()
        self._holders: set[int] = set()
        self._pending: dict[int, int] = {}
        self._staged: dict[int, list[str]] = {}

    def install(self, mock_repo) -> None:
        """Route the counter functions of a patched device repository here."""
        mock_repo.lock_tag_sequence = self.lock_tag_sequence
        mock_repo.list_school_tags = self.list_school_tags
        mock_repo.insert_tag_sequence = self.insert_tag_sequence
        mock_repo.save_tag_sequence = self.save_tag_sequence

    def session(self, committed_tags=None):
        """
        A session bound to this store.

        committed_tags, when given, is called at commit time to collect the
        tags the transaction wrote; otherwise tags passed to stage() are used.
        """
        db = AsyncMock()

        def commit():
            tags = committed_tags() if committed_tags else self._staged.pop(id(db), [])
            self._commit(db, tags)

        db.commit = AsyncMock(side_effect=commit)
        db.rollback = AsyncMock(side_effect=lambda: self._rollback(db))
        return db

    def stage(self, db, *tags: str) -> None:
        self._staged.setdefault(id(db), []).extend(tags)

    async def lock_tag_sequence(self, db, school_code):
        if self.counter is None:
            return None
        await self._acquire(db)
        return self.counter

    async def list_school_tags(self, db, school_code):
        await asyncio.sleep(0)
        return list(self.tags)

    async def insert_tag_sequence(self, db, school_code, last_value):
        await self._acquire(db)
        if self.counter is not None:
            self._release(db)
            raise IntegrityError(
                "INSERT INTO asset_tag_sequences",
                {},
                Exception(
                    f'duplicate key value violates unique constraint "{ASSET_TAG_SEQUENCE_PKEY}"'
                ),
            )
        self._pending[id(db)] = last_value

    async def save_tag_sequence(self, db, school_code, last_value):
        self._pending[id(db)] = last_value

    def _commit(self, db, tags) -> None:
        if id(db) in self._pending:
            self.counter = self._pending.pop(id(db))
        self.tags.extend(tags)
        self._release(db)

    def _rollback(self, db) -> None:
        self._pending.pop(id(db), None)
        self._staged.pop(id(db), None)
        self._release(db)

    async def _acquire(self, db) -> None:
        if id(db) in self._holders:
            return
        await self._row_lock.acquire()
        self._holders.add(id(db))

    def _release(self, db) -> None:
        if id(db) in self._holders:
            self._holders.discard(id(db))
            self._row_lock.release()


@pytest.fixture
def tag_store():
    """In-memory tag counter with row-lock semantics."""
    return FakeTagStore()
