"""
Unit tests for asset tag allocation.

These tests cover:
- Tag formatting and parsing (malformed historical tags are ignored)
- Next-sequence computation from existing tags
- Opening and saving the per-school counter
- Retrying a unit of work on tag conflicts
- Concurrent allocation for the same school
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from rtb_assets.core.config import settings
from rtb_assets.modules.devices import asset_tags
from rtb_assets.modules.devices.asset_tags import (
    TagAllocationConflictError,
    TagSequence,
    format_asset_tag,
    next_sequence,
    parse_tag_sequence,
    tag_segment,
)
from rtb_assets.modules.devices.models import (
    ASSET_TAG_CONSTRAINT,
    ASSET_TAG_SEQUENCE_PKEY,
    SERIAL_NUMBER_CONSTRAINT,
    DeviceCategory,
)


def _integrity_error(constraint: str) -> IntegrityError:
    return IntegrityError(
        "INSERT INTO devices",
        {},
        Exception(f'duplicate key value violates unique constraint "{constraint}"'),
    )


class TestFormatAssetTag:
    """Tests for tag formatting."""

    def test_format_uses_first_three_letters(self):
        """Category, district and school contribute three upper-cased letters each."""
        tag = format_asset_tag(DeviceCategory.LAPTOP, "Kicukiro", "Gasabo TSS", 7)
        assert tag == "LAP/KIC/GAS/0007"

    def test_format_accepts_plain_category_name(self):
        tag = format_asset_tag("Projector", "gasabo", "remera", 12)
        assert tag == "PRO/GAS/REM/0012"

    def test_format_does_not_truncate_large_sequences(self):
        tag = format_asset_tag(DeviceCategory.TABLET, "Huye", "Butare", 12345)
        assert tag == "TAB/HUY/BUT/12345"

    def test_segment_strips_and_handles_short_names(self):
        assert tag_segment("  nyarugenge ") == "NYA"
        assert tag_segment("Ab") == "AB"


class TestParseTagSequence:
    """Tests for extracting the sequence from a tag."""

    @pytest.mark.parametrize(
        "tag,expected",
        [
            ("LAP/KIC/GAS/0007", 7),
            ("DES/KIC/GAS/0120", 120),
            ("LAP/KIC/GAS/bad", None),
            ("LAP/KIC/0007", None),
            ("LAP/KIC/GAS/0001/extra", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse(self, tag, expected):
        assert parse_tag_sequence(tag) == expected


class TestNextSequence:
    """Tests for the next free sequence number."""

    def test_next_after_highest_ignoring_malformed(self):
        """Gaps are not reused and malformed tags are skipped."""
        tags = ["LAP/KIG/SCH/0001", "LAP/KIG/SCH/0003", "LAP/KIG/SCH/bad"]

        sequence = next_sequence(tags)

        assert sequence == 4
        assert format_asset_tag("Laptop", "Kigali", "School", sequence) == "LAP/KIG/SCH/0004"

    def test_empty_school_starts_at_one(self):
        assert next_sequence([]) == 1

    def test_only_untagged_or_malformed_starts_at_one(self):
        assert next_sequence([None, "", "garbage", "A/B/C/D"]) == 1

    def test_categories_share_the_school_sequence(self):
        tags = ["LAP/KIC/GAS/0002", "PRO/KIC/GAS/0005", "TAB/KIC/GAS/0004"]
        assert next_sequence(tags) == 6


class TestTagSequence:
    """Tests for the in-memory allocation handle."""

    def test_next_tag_is_strictly_increasing(self, tag_sequence):
        tags = [tag_sequence.next_tag(DeviceCategory.LAPTOP) for _ in range(3)]

        assert tags == ["LAP/KIC/GAS/0005", "LAP/KIC/GAS/0006", "LAP/KIC/GAS/0007"]
        assert tag_sequence.issued == 3

    def test_category_changes_prefix_only(self, tag_sequence):
        assert tag_sequence.next_tag(DeviceCategory.DESKTOP) == "DES/KIC/GAS/0005"
        assert tag_sequence.next_tag(DeviceCategory.OTHERS) == "OTH/KIC/GAS/0006"


class TestOpenTagSequence:
    """Tests for locking and reconciling the school's counter."""

    @pytest.mark.asyncio
    async def test_creates_counter_from_existing_tags(self, mock_db, sample_school):
        """A school without a counter starts after its highest existing tag."""
        with patch("rtb_assets.modules.devices.asset_tags.repository") as mock_repo:
            mock_repo.lock_tag_sequence = AsyncMock(return_value=None)
            mock_repo.list_school_tags = AsyncMock(
                return_value=["LAP/KIC/GAS/0001", "LAP/KIC/GAS/0003", None]
            )
            mock_repo.insert_tag_sequence = AsyncMock()

            sequence = await asset_tags.open_tag_sequence(mock_db, sample_school)

            mock_repo.insert_tag_sequence.assert_called_once_with(
                mock_db, sample_school.school_code, 3
            )
            assert sequence.stored_value == 3
            assert sequence.next_tag(DeviceCategory.LAPTOP) == "LAP/KIC/GAS/0004"

    @pytest.mark.asyncio
    async def test_counter_behind_existing_tags_is_reconciled(self, mock_db, sample_school):
        """Tags written before the counter existed are never reissued."""
        with patch("rtb_assets.modules.devices.asset_tags.repository") as mock_repo:
            mock_repo.lock_tag_sequence = AsyncMock(return_value=2)
            mock_repo.list_school_tags = AsyncMock(return_value=["LAP/KIC/GAS/0005"])
            mock_repo.insert_tag_sequence = AsyncMock()

            sequence = await asset_tags.open_tag_sequence(mock_db, sample_school)

            mock_repo.insert_tag_sequence.assert_not_called()
            assert sequence.last_value == 5
            assert sequence.stored_value == 2

    @pytest.mark.asyncio
    async def test_counter_ahead_of_devices_is_kept(self, mock_db, sample_school):
        """Deleting or unbinding devices never lowers the counter."""
        with patch("rtb_assets.modules.devices.asset_tags.repository") as mock_repo:
            mock_repo.lock_tag_sequence = AsyncMock(return_value=9)
            mock_repo.list_school_tags = AsyncMock(return_value=["LAP/KIC/GAS/0003"])

            sequence = await asset_tags.open_tag_sequence(mock_db, sample_school)

            assert sequence.next_tag(DeviceCategory.LAPTOP) == "LAP/KIC/GAS/0010"


class TestOpenTagSequenceInSavepoint:
    """Tests for opening the counter without risking the surrounding transaction."""

    @pytest.mark.asyncio
    async def test_counter_creation_race_is_retried(self, mock_db, sample_school, tag_sequence):
        """Losing the race to create the counter row only rolls back the savepoint."""
        open_sequence = AsyncMock(
            side_effect=[_integrity_error(ASSET_TAG_SEQUENCE_PKEY), tag_sequence]
        )

        with patch("rtb_assets.modules.devices.asset_tags.open_tag_sequence", open_sequence):
            sequence = await asset_tags.open_tag_sequence_in_savepoint(mock_db, sample_school)

        assert sequence is tag_sequence
        assert open_sequence.call_count == 2
        assert mock_db.begin_nested.call_count == 2
        mock_db.rollback.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_integrity_errors_propagate(self, mock_db, sample_school):
        open_sequence = AsyncMock(side_effect=_integrity_error(SERIAL_NUMBER_CONSTRAINT))

        with (
            patch("rtb_assets.modules.devices.asset_tags.open_tag_sequence", open_sequence),
            pytest.raises(IntegrityError),
        ):
            await asset_tags.open_tag_sequence_in_savepoint(mock_db, sample_school)

        open_sequence.assert_called_once()

    @pytest.mark.asyncio
    async def test_gives_up_after_configured_attempts(self, mock_db, sample_school):
        open_sequence = AsyncMock(side_effect=_integrity_error(ASSET_TAG_SEQUENCE_PKEY))

        with (
            patch("rtb_assets.modules.devices.asset_tags.open_tag_sequence", open_sequence),
            pytest.raises(TagAllocationConflictError) as exc_info,
        ):
            await asset_tags.open_tag_sequence_in_savepoint(mock_db, sample_school)

        assert exc_info.value.details["school_code"] == "SCH-001"
        assert open_sequence.call_count == settings.tag_allocation_attempts
        mock_db.rollback.assert_not_called()


class TestSaveTagSequence:
    """Tests for writing the counter back."""

    @pytest.mark.asyncio
    async def test_unchanged_counter_is_not_written(self, mock_db, tag_sequence):
        with patch("rtb_assets.modules.devices.asset_tags.repository") as mock_repo:
            mock_repo.save_tag_sequence = AsyncMock()

            await asset_tags.save_tag_sequence(mock_db, tag_sequence)

            mock_repo.save_tag_sequence.assert_not_called()

    @pytest.mark.asyncio
    async def test_moved_counter_is_written(self, mock_db, tag_sequence):
        with patch("rtb_assets.modules.devices.asset_tags.repository") as mock_repo:
            mock_repo.save_tag_sequence = AsyncMock()
            tag_sequence.next_tag(DeviceCategory.LAPTOP)
            tag_sequence.next_tag(DeviceCategory.LAPTOP)

            await asset_tags.save_tag_sequence(mock_db, tag_sequence)

            mock_repo.save_tag_sequence.assert_called_once_with(
                mock_db, tag_sequence.school_code, 6
            )
            assert tag_sequence.issued == 0


class TestRunTagAllocation:
    """Tests for the retry wrapper."""

    @pytest.mark.asyncio
    async def test_returns_unit_result(self, mock_db):
        unit = AsyncMock(return_value="done")

        result = await asset_tags.run_tag_allocation(mock_db, unit, "SCH-001")

        assert result == "done"
        unit.assert_called_once()
        mock_db.rollback.assert_not_called()

    @pytest.mark.asyncio
    async def test_retries_after_tag_conflict(self, mock_db):
        unit = AsyncMock(side_effect=[_integrity_error(ASSET_TAG_CONSTRAINT), "done"])

        result = await asset_tags.run_tag_allocation(mock_db, unit, "SCH-001")

        assert result == "done"
        assert unit.call_count == 2
        mock_db.rollback.assert_called_once()

    @pytest.mark.asyncio
    async def test_other_integrity_errors_propagate(self, mock_db):
        unit = AsyncMock(side_effect=_integrity_error(SERIAL_NUMBER_CONSTRAINT))

        with pytest.raises(IntegrityError):
            await asset_tags.run_tag_allocation(mock_db, unit, "SCH-001")

        unit.assert_called_once()
        mock_db.rollback.assert_called_once()

    @pytest.mark.asyncio
    async def test_gives_up_after_configured_attempts(self, mock_db):
        unit = AsyncMock(side_effect=_integrity_error(ASSET_TAG_CONSTRAINT))

        with pytest.raises(TagAllocationConflictError) as exc_info:
            await asset_tags.run_tag_allocation(mock_db, unit, "SCH-001")

        assert exc_info.value.status_code == 409
        assert exc_info.value.details["school_code"] == "SCH-001"
        assert unit.call_count == settings.tag_allocation_attempts


async def _allocate_one(tag_store, school) -> str:
    """Bind one laptop to the school in its own transaction."""
    db = tag_store.session()

    async def unit() -> str:
        sequence = await asset_tags.open_tag_sequence(db, school)
        tag = sequence.next_tag(DeviceCategory.LAPTOP)
        await asyncio.sleep(0)
        await asset_tags.save_tag_sequence(db, sequence)
        tag_store.stage(db, tag)
        await db.commit()
        return tag

    return await asset_tags.run_tag_allocation(db, unit, school.school_code)


class TestConcurrentAllocation:
    """Two or more transactions allocating for the same school at once."""

    @pytest.mark.asyncio
    async def test_scanning_without_the_counter_collides(self, tag_store, sample_school):
        """Reading max(tag) + 1 without a lock hands both callers the same tag."""

        async def allocate_by_scan() -> str:
            tags = await tag_store.list_school_tags(None, sample_school.school_code)
            tag = format_asset_tag(
                DeviceCategory.LAPTOP,
                sample_school.district,
                sample_school.school_name,
                next_sequence(tags),
            )
            await asyncio.sleep(0)
            tag_store.tags.append(tag)
            return tag

        first, second = await asyncio.gather(allocate_by_scan(), allocate_by_scan())

        assert first == second == "LAP/KIC/GAS/0001"

    @pytest.mark.asyncio
    async def test_new_school_gets_distinct_tags(self, tag_store, sample_school):
        """Both transactions race to create the counter; the loser retries."""
        with patch("rtb_assets.modules.devices.asset_tags.repository") as mock_repo:
            tag_store.install(mock_repo)

            tags = await asyncio.gather(
                _allocate_one(tag_store, sample_school),
                _allocate_one(tag_store, sample_school),
            )

        assert sorted(tags) == ["LAP/KIC/GAS/0001", "LAP/KIC/GAS/0002"]
        assert tag_store.counter == 2

    @pytest.mark.asyncio
    async def test_existing_counter_serialises_allocation(self, tag_store, sample_school):
        tag_store.counter = 4
        tag_store.tags = [f"LAP/KIC/GAS/000{n}" for n in range(1, 5)]

        with patch("rtb_assets.modules.devices.asset_tags.repository") as mock_repo:
            tag_store.install(mock_repo)

            tags = await asyncio.gather(
                _allocate_one(tag_store, sample_school),
                _allocate_one(tag_store, sample_school),
            )

        assert sorted(tags) == ["LAP/KIC/GAS/0005", "LAP/KIC/GAS/0006"]

    @pytest.mark.asyncio
    async def test_many_concurrent_allocations_never_share_a_tag(self, tag_store, sample_school):
        with patch("rtb_assets.modules.devices.asset_tags.repository") as mock_repo:
            tag_store.install(mock_repo)

            tags = await asyncio.gather(
                *(_allocate_one(tag_store, sample_school) for _ in range(5))
            )

        assert sorted(tags) == [f"LAP/KIC/GAS/000{n}" for n in range(1, 6)]
        assert len(set(tag_store.tags)) == 5
