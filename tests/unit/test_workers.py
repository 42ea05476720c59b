"""
Unit tests for the scheduled workers.

Tests cover:
- Auto-cancel of declined bookings after the grace period
- Auto-checkout of overdue checked-in bookings
- Dry runs report without writing
"""

from datetime import timedelta

import pytest

from lifecycle.services.booking_actions import build_booking_actions
from lifecycle.workers.auto_cancel_declined import cancel_declined_bookings
from lifecycle.workers.auto_checkout import checkout_overdue_bookings
from tests.factories import NOW, TENANT, booking_logs, pre_ban_logs, stored_booking


@pytest.fixture
def actions(store, orchestrator):
    return build_booking_actions(store, orchestrator=orchestrator)


@pytest.fixture
def declined_bookings(seed_booking):
    seed_booking("evt-old", status="DECLINED", declinedAt=(NOW - timedelta(hours=30)).isoformat())
    seed_booking("evt-recent", status="DECLINED", declinedAt=(NOW - timedelta(hours=2)).isoformat())
    seed_booking("evt-approved", status="APPROVED")


@pytest.fixture
def checked_in_bookings(seed_booking):
    seed_booking("evt-overdue", status="CHECKED-IN", endDate=(NOW - timedelta(hours=1)).isoformat())
    seed_booking("evt-grace", status="CHECKED-IN", endDate=(NOW - timedelta(minutes=10)).isoformat())


class TestAutoCancelDeclined:
    """Tests for cancel_declined_bookings."""

    @pytest.mark.asyncio
    async def test_cancels_only_expired_declines(self, store, actions, declined_bookings):
        canceled = await cancel_declined_bookings(store, actions, tenant=TENANT, now=NOW)

        assert canceled == ["evt-old"]
        assert stored_booking(store, "evt-old")["status"] == "CANCELED"
        assert stored_booking(store, "evt-recent")["status"] == "DECLINED"
        row = booking_logs(store)[0]
        assert (row["status"], row["changedBy"], row["note"]) == ("CANCELED", "System", "Canceled after decline")
        assert pre_ban_logs(store) == []

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, store, actions, declined_bookings, email_client):
        canceled = await cancel_declined_bookings(store, actions, tenant=TENANT, now=NOW, dry_run=True)

        assert canceled == ["evt-old"]
        assert stored_booking(store, "evt-old")["status"] == "DECLINED"
        assert booking_logs(store) == []
        email_client.send.assert_not_called()


class TestAutoCheckout:
    """Tests for checkout_overdue_bookings."""

    @pytest.mark.asyncio
    async def test_checks_out_after_delay(self, store, actions, checked_in_bookings):
        checked_out = await checkout_overdue_bookings(store, actions, tenant=TENANT, now=NOW)

        assert checked_out == ["evt-overdue"]
        assert stored_booking(store, "evt-overdue")["status"] == "CLOSED"
        assert stored_booking(store, "evt-grace")["status"] == "CHECKED-IN"
        rows = booking_logs(store)
        assert [(row["status"], row["changedBy"]) for row in rows] == [
            ("CHECKED-OUT", "System"),
            ("CLOSED", "System"),
        ]
        assert rows[0]["note"] == "Auto-checkout by system"

    @pytest.mark.asyncio
    async def test_dry_run(self, store, actions, checked_in_bookings):
        assert await checkout_overdue_bookings(store, actions, tenant=TENANT, now=NOW, dry_run=True) == [
            "evt-overdue"
        ]
        assert booking_logs(store) == []
