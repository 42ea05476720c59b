"""Unit tests for booking history lookup and legacy reconstruction."""

from datetime import timedelta

import pytest

from lifecycle.fsm.models import Booking
from lifecycle.services.booking_repository import append_log
from lifecycle.services.history_service import get_booking_history, reconstruct_history
from tests.factories import NOW, TENANT, make_booking_doc


class TestGetBookingHistory:
    """Tests for get_booking_history."""

    @pytest.mark.asyncio
    async def test_returns_logged_rows_oldest_first(self, store, seed_booking):
        booking = Booking.model_validate(seed_booking())
        await append_log(store, TENANT, booking, "PENDING", "liaison@example.edu", changed_at=NOW)
        await append_log(store, TENANT, booking, "REQUESTED", "student@example.edu", changed_at=NOW - timedelta(hours=1))

        history = await get_booking_history(store, TENANT, 1001)

        assert [row.status for row in history] == ["REQUESTED", "PENDING"]

    @pytest.mark.asyncio
    async def test_reconstructs_when_no_rows(self, store, seed_booking):
        seed_booking(
            status="DECLINED",
            firstApprovedAt=(NOW - timedelta(hours=48)).isoformat(),
            firstApprovedBy="liaison@example.edu",
            declinedAt=(NOW - timedelta(hours=24)).isoformat(),
            declinedBy="admin@example.edu",
            declineReason="Room unavailable",
        )

        history = await get_booking_history(store, TENANT, 1001)

        assert [(row.status, row.changed_by) for row in history] == [
            ("REQUESTED", "student@example.edu"),
            ("PENDING", "liaison@example.edu"),
            ("DECLINED", "admin@example.edu"),
        ]
        assert history[-1].note == "Room unavailable"

    @pytest.mark.asyncio
    async def test_unknown_request_number(self, store):
        assert await get_booking_history(store, TENANT, 9999) == []


class TestReconstructHistory:
    """Tests for reconstruct_history."""

    def test_walk_in_attributed_to_pa(self):
        booking = Booking.model_validate(
            make_booking_doc(origin="walk-in", walkedInAt=(NOW - timedelta(hours=80)).isoformat())
        )

        rows = reconstruct_history(booking)

        assert (rows[0].status, rows[0].changed_by) == ("WALK-IN", "PA")
        assert rows[1].status == "REQUESTED"

    def test_missing_actor_is_empty(self):
        booking = Booking.model_validate(make_booking_doc(checkedInAt=NOW.isoformat()))

        rows = reconstruct_history(booking)

        assert rows[-1].status == "CHECKED-IN"
        assert rows[-1].changed_by == ""
