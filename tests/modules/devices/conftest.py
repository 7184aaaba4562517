"""
Fixtures for device registry tests.
"""

import pytest

from rtb_assets.modules.devices.asset_tags import TagSequence


@pytest.fixture
def created_device(make_device):
    """Stand-in for repository.create: echoes the inserted fields back as a device."""

    async def create(db, **fields):
        return make_device(**fields)

    return create


@pytest.fixture
def tag_sequence(sample_school):
    """Counter for sample_school with four tags already issued."""
    return TagSequence(
        school_code=sample_school.school_code,
        district=sample_school.district,
        school_name=sample_school.school_name,
        last_value=4,
        stored_value=4,
    )
