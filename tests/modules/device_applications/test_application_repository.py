"""
Unit tests for the device applications repository.

These tests cover:
- The status transition table
- update_status enforcement and field updates
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from rtb_assets.modules.device_applications.models import (
    LIVE_STATUSES,
    TERMINAL_STATUSES,
    ApplicationStatus,
)
from rtb_assets.modules.device_applications.repository import (
    VALID_STATUS_TRANSITIONS,
    InvalidStatusTransitionError,
    can_transition,
    update_status,
)

S = ApplicationStatus


class TestStatusTransitions:
    """Tests for the transition table."""

    @pytest.mark.parametrize(
        "current,new",
        [
            (S.PENDING, S.UNDER_REVIEW),
            (S.PENDING, S.APPROVED),
            (S.PENDING, S.REJECTED),
            (S.PENDING, S.CANCELLED),
            (S.UNDER_REVIEW, S.UNDER_REVIEW),
            (S.UNDER_REVIEW, S.APPROVED),
            (S.UNDER_REVIEW, S.REJECTED),
            (S.APPROVED, S.ASSIGNED),
            (S.ASSIGNED, S.RECEIVED),
        ],
    )
    def test_allowed(self, current, new):
        assert can_transition(current, new)

    @pytest.mark.parametrize(
        "current,new",
        [
            (S.PENDING, S.PENDING),
            (S.PENDING, S.ASSIGNED),
            (S.PENDING, S.RECEIVED),
            (S.UNDER_REVIEW, S.CANCELLED),
            (S.UNDER_REVIEW, S.PENDING),
            (S.APPROVED, S.REJECTED),
            (S.APPROVED, S.APPROVED),
            (S.APPROVED, S.CANCELLED),
            (S.ASSIGNED, S.ASSIGNED),
            (S.ASSIGNED, S.APPROVED),
        ],
    )
    def test_rejected(self, current, new):
        assert not can_transition(current, new)

    @pytest.mark.parametrize("terminal", [S.REJECTED, S.RECEIVED, S.CANCELLED])
    def test_terminal_states_have_no_exits(self, terminal):
        assert VALID_STATUS_TRANSITIONS[terminal] == set()
        assert not any(can_transition(terminal, status) for status in ApplicationStatus)

    def test_every_status_is_in_the_table(self):
        assert set(VALID_STATUS_TRANSITIONS) == set(ApplicationStatus)

    def test_live_and_terminal_partition_the_statuses(self):
        assert set(LIVE_STATUSES) | set(TERMINAL_STATUSES) == set(ApplicationStatus)
        assert not set(LIVE_STATUSES) & set(TERMINAL_STATUSES)


class TestUpdateStatus:
    """Tests for update_status."""

    @pytest.mark.asyncio
    async def test_valid_transition_sets_fields_and_flushes(self, mock_db, make_application):
        application = make_application(status=S.PENDING)
        reviewer_id = uuid4()
        reviewed_at = datetime.now(UTC)

        result = await update_status(
            mock_db,
            application,
            S.UNDER_REVIEW,
            reviewed_by=reviewer_id,
            reviewed_at=reviewed_at,
        )

        assert result is application
        assert application.status == S.UNDER_REVIEW
        assert application.reviewed_by == reviewer_id
        assert application.reviewed_at == reviewed_at
        mock_db.flush.assert_called_once()

    @pytest.mark.asyncio
    async def test_invalid_transition_raises_and_leaves_row_untouched(
        self, mock_db, make_application
    ):
        application = make_application(status=S.RECEIVED)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            await update_status(mock_db, application, S.ASSIGNED, assigned_by=uuid4())

        assert exc_info.value.current_status == S.RECEIVED
        assert exc_info.value.new_status == S.ASSIGNED
        assert "Received -> Assigned" in str(exc_info.value)
        assert application.status == S.RECEIVED
        assert application.assigned_by is None
        mock_db.flush.assert_not_called()

    @pytest.mark.asyncio
    async def test_error_lists_valid_targets(self, mock_db, make_application):
        application = make_application(status=S.APPROVED)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            await update_status(mock_db, application, S.REJECTED)

        assert "['Assigned']" in str(exc_info.value)
