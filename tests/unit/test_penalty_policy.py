"""
Unit tests for the penalty policy.

Tests cover:
- Policy-bound bookings (origin, required timestamps)
- Late-cancel window boundaries
- PreBanLog recording and violation counts
"""

from datetime import UTC, datetime, timedelta

import pytest

from lifecycle.fsm.models import Booking
from lifecycle.services.penalty_policy import (
    count_violations,
    hours_since_creation,
    hours_to_event,
    is_late_cancel,
    is_policy_violation,
    record_late_cancel,
    record_no_show,
)
from tests.factories import NOW, TENANT, make_booking_doc, pre_ban_logs


def booking(requested_at, start, **overrides):
    return Booking.model_validate(
        make_booking_doc(requestedAt=requested_at.isoformat(), startDate=start.isoformat(), **overrides)
    )


class TestIsPolicyViolation:
    """Tests for is_policy_violation."""

    def test_user_booking_with_timestamps(self):
        assert is_policy_violation(booking(NOW, NOW + timedelta(hours=5))) is True

    @pytest.mark.parametrize("origin", ["vip", "walk-in", "admin", "system", "pregame"])
    def test_exempt_origins(self, origin):
        assert is_policy_violation(booking(NOW, NOW + timedelta(hours=5), origin=origin)) is False

    def test_missing_requested_at(self):
        doc = make_booking_doc(requestedAt=None)
        assert is_policy_violation(Booking.model_validate(doc)) is False

    def test_none(self):
        assert is_policy_violation(None) is False


class TestIsLateCancel:
    """Tests for the late-cancel window."""

    def test_inside_window(self):
        """Requested 08:00, starts 12:00, canceled 10:00."""
        day = datetime(2025, 3, 10, tzinfo=UTC)
        b = booking(day.replace(hour=8), day.replace(hour=12))
        assert is_late_cancel(b, now=day.replace(hour=10)) is True

    def test_exactly_one_hour_after_request_is_grace(self):
        b = booking(NOW - timedelta(hours=1), NOW + timedelta(hours=5))
        assert hours_since_creation(b, NOW) == 1.0
        assert is_late_cancel(b, now=NOW) is False

    def test_exactly_24_hours_before_event_is_late(self):
        b = booking(NOW - timedelta(hours=48), NOW + timedelta(hours=24))
        assert hours_to_event(b, NOW) == 24.0
        assert is_late_cancel(b, now=NOW) is True

    def test_just_outside_24_hours(self):
        b = booking(NOW - timedelta(hours=48), NOW + timedelta(hours=24, seconds=1))
        assert is_late_cancel(b, now=NOW) is False

    def test_exempt_booking_never_late(self):
        b = booking(NOW - timedelta(hours=5), NOW + timedelta(hours=2), origin="vip")
        assert is_late_cancel(b, now=NOW) is False

    def test_naive_timestamps_are_treated_as_utc(self):
        b = booking(datetime(2025, 3, 10, 8), datetime(2025, 3, 10, 12))
        assert is_late_cancel(b, now=datetime(2025, 3, 10, 10, tzinfo=UTC)) is True


class TestRecording:
    """Tests for PreBanLog recording."""

    @pytest.mark.asyncio
    async def test_record_late_cancel_writes_row(self, store):
        b = booking(NOW - timedelta(hours=5), NOW + timedelta(hours=2))
        row_id = await record_late_cancel(store, TENANT, b, NOW)
        assert row_id is not None
        rows = pre_ban_logs(store)
        assert len(rows) == 1
        assert rows[0]["netId"] == "ab123"
        assert rows[0]["bookingId"] == "evt-1"
        assert "lateCancelDate" in rows[0]

    @pytest.mark.asyncio
    async def test_record_late_cancel_outside_window(self, store):
        b = booking(NOW - timedelta(hours=5), NOW + timedelta(hours=30))
        assert await record_late_cancel(store, TENANT, b, NOW) is None
        assert pre_ban_logs(store) == []

    @pytest.mark.asyncio
    async def test_record_no_show_skips_exempt_booking(self, store):
        b = booking(NOW - timedelta(hours=5), NOW - timedelta(hours=1), origin="walk-in")
        assert await record_no_show(store, TENANT, b, NOW) is None
        assert pre_ban_logs(store) == []

    @pytest.mark.asyncio
    async def test_count_violations_is_cumulative(self, store):
        b = booking(NOW - timedelta(hours=5), NOW - timedelta(hours=1))
        await record_no_show(store, TENANT, b, NOW)
        await record_no_show(store, TENANT, b, NOW)
        assert await count_violations(store, TENANT, "ab123") == 2
        assert await count_violations(store, TENANT, "zz999") == 0
        assert await count_violations(store, TENANT, None) == 0
