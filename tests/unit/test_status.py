"""
Unit tests for the status vocabulary and state value reader.

Tests cover:
- Machine display name -> status label mapping (simple and composite values)
- Unknown state fallbacks
- status_from_booking priority (snapshot, status field, legacy timestamps)
- parse_state_value / to_wire / helpers
"""

import pytest

from lifecycle.fsm.state_value import (
    CompositeState,
    SimpleState,
    contains_state,
    parse_state_value,
    to_wire,
    top_level_name,
)
from lifecycle.fsm.status import (
    MACHINE_STATE_LABELS,
    MachineState,
    StatusLabel,
    label_for_state,
    status_from_booking,
)

SERVICES_REQUEST_VALUE = {
    "Services Request": {
        "Setup Request": "Setup Requested",
        "Catering Request": "Catering Approved",
    }
}


class TestStatusLabels:
    """Tests for the flat label vocabulary."""

    def test_wire_values_are_exact(self):
        """Labels use the hyphenated wire spelling."""
        assert StatusLabel.CHECKED_IN.value == "CHECKED-IN"
        assert StatusLabel.CHECKED_OUT.value == "CHECKED-OUT"
        assert StatusLabel.NO_SHOW.value == "NO-SHOW"
        assert StatusLabel.WALK_IN.value == "WALK-IN"

    def test_every_machine_state_has_a_label(self):
        """Every machine display name maps onto the flat enum."""
        assert set(MACHINE_STATE_LABELS) == set(MachineState)


class TestLabelForState:
    """Tests for label_for_state."""

    @pytest.mark.parametrize(
        "state,label",
        [
            ("Requested", StatusLabel.REQUESTED),
            ("Pre-approved", StatusLabel.PENDING),
            ("Approved", StatusLabel.APPROVED),
            ("Checked In", StatusLabel.CHECKED_IN),
            ("Checked Out", StatusLabel.CHECKED_OUT),
            ("No Show", StatusLabel.NO_SHOW),
            ("Canceled", StatusLabel.CANCELED),
            ("Closed", StatusLabel.CLOSED),
        ],
    )
    def test_simple_states(self, state, label):
        assert label_for_state(state) == label

    def test_services_request_is_pending(self):
        assert label_for_state(SERVICES_REQUEST_VALUE) == StatusLabel.PENDING

    def test_service_closeout_is_checked_out(self):
        value = {"Service Closeout": {"Setup Closeout": "Setup Closeout Pending"}}
        assert label_for_state(value) == StatusLabel.CHECKED_OUT

    def test_service_closeout_after_no_show_is_canceled(self):
        value = {"Service Closeout": {"Setup Closeout": "Setup Closeout Pending"}}
        assert label_for_state(value, no_showed=True) == StatusLabel.CANCELED

    def test_canceled_booking_stays_canceled(self):
        value = {"Service Closeout": {"Setup Closeout": "Setup Closeout Pending"}}
        assert label_for_state(value, canceled=True) == StatusLabel.CANCELED
        assert label_for_state("Closed", canceled=True) == StatusLabel.CANCELED

    def test_unknown_simple_state_is_normalized(self):
        """Unknown names are upper-cased with whitespace replaced by underscores."""
        assert label_for_state("Awaiting  Payment") == "AWAITING_PAYMENT"

    def test_unknown_composite_state(self):
        assert label_for_state({"Somewhere Else": "Leaf"}) == StatusLabel.UNKNOWN


class TestStatusFromBooking:
    """Tests for status_from_booking priority rules."""

    def test_snapshot_wins_over_status_field(self):
        doc = {
            "status": "REQUESTED",
            "xstateData": {"snapshot": {"value": "Approved"}},
        }
        assert status_from_booking(doc) == StatusLabel.APPROVED

    def test_closed_after_cancel_reads_canceled(self):
        doc = {
            "status": "CANCELED",
            "canceledAt": "2025-01-03T10:00:00Z",
            "xstateData": {"snapshot": {"value": "Closed"}},
        }
        assert status_from_booking(doc) == StatusLabel.CANCELED

    def test_status_field_used_without_snapshot(self):
        assert status_from_booking({"status": "DECLINED"}) == StatusLabel.DECLINED

    def test_legacy_timestamps_in_priority_order(self):
        doc = {
            "requestedAt": "2025-01-01T10:00:00Z",
            "finalApprovedAt": "2025-01-02T10:00:00Z",
            "checkedInAt": "2025-01-03T10:00:00Z",
            "noShowedAt": "2025-01-03T11:00:00Z",
        }
        assert status_from_booking(doc) == StatusLabel.NO_SHOW

    def test_legacy_first_approval_is_pending(self):
        doc = {"requestedAt": "2025-01-01T10:00:00Z", "firstApprovedAt": "2025-01-01T12:00:00Z"}
        assert status_from_booking(doc) == StatusLabel.PENDING

    def test_empty_document_is_requested(self):
        assert status_from_booking({}) == StatusLabel.REQUESTED

    def test_null_snapshot_falls_back(self):
        assert status_from_booking({"xstateData": None, "status": "CANCELED"}) == StatusLabel.CANCELED


class TestStateValue:
    """Tests for the tagged state value reader."""

    def test_parse_simple(self):
        assert parse_state_value("Requested") == SimpleState("Requested")

    def test_parse_nested(self):
        value = parse_state_value(SERVICES_REQUEST_VALUE)
        assert isinstance(value, CompositeState)
        inner = value.regions["Services Request"]
        assert inner.regions["Setup Request"] == SimpleState("Setup Requested")

    def test_to_wire_restores_nested_encoding(self):
        assert to_wire(parse_state_value(SERVICES_REQUEST_VALUE)) == SERVICES_REQUEST_VALUE

    def test_top_level_name(self):
        assert top_level_name(parse_state_value(SERVICES_REQUEST_VALUE)) == "Services Request"
        assert top_level_name(SimpleState("Approved")) == "Approved"

    def test_contains_state_finds_regions_and_leaves(self):
        value = parse_state_value(SERVICES_REQUEST_VALUE)
        assert contains_state(value, "Services Request")
        assert contains_state(value, "Catering Approved")
        assert not contains_state(value, "Approved")

    def test_rejects_unsupported_values(self):
        with pytest.raises(ValueError):
            parse_state_value(42)
