"""
Fixtures for device application tests.
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from rtb_assets.modules.device_applications import repository as application_repository
from rtb_assets.modules.device_applications.models import ApplicationStatus, DeviceApplication
from rtb_assets.modules.users.models import User, UserRole


def build_application(**overrides):
    """A DeviceApplication mock with every column populated."""
    application = MagicMock(spec=DeviceApplication)
    application.id = uuid4()
    application.school_id = uuid4()
    application.applicant_id = uuid4()
    application.purpose = "Equip the new ICT lab"
    application.justification = "Current lab has 4 working machines for 120 students"
    application.requested_laptops = 20
    application.requested_desktops = 0
    application.requested_tablets = 0
    application.requested_projectors = 1
    application.requested_others = 0
    application.total_requested = 21
    application.letter_ref = "applications/application-abc.pdf"
    application.status = ApplicationStatus.PENDING
    application.reviewed_by = None
    application.reviewed_at = None
    application.review_notes = None
    application.is_eligible = False
    application.eligibility_notes = None
    application.assigned_by = None
    application.assigned_at = None
    application.assigned_devices = None
    application.confirmed_at = None
    application.confirmation_notes = None
    application.created_at = datetime.now(UTC)
    application.updated_at = datetime.now(UTC)
    for field, value in overrides.items():
        setattr(application, field, value)
    return application


@pytest.fixture
def make_application(school_user, sample_school):
    """Factory for applications submitted by school_user for sample_school."""

    def make(**overrides):
        fields = {"applicant_id": school_user.id, "school_id": sample_school.id}
        fields.update(overrides)
        return build_application(**fields)

    return make


@pytest.fixture
def make_user():
    """Factory for User mocks."""

    def make(user_id, role=UserRole.RTB_STAFF, first_name="Alice", last_name="Uwase"):
        user = MagicMock(spec=User)
        user.id = user_id
        user.first_name = first_name
        user.last_name = last_name
        user.full_name = f"{first_name} {last_name}"
        user.email = f"{first_name.lower()}@example.rw"
        user.role = role
        return user

    return make


@pytest.fixture
def apply_status():
    """The real status update, so patched repositories still enforce transitions."""
    return application_repository.update_status
