"""
Unit tests for BookingStateMachine.

Tests cover:
- Initial entry and the auto-approval guard
- Two-stage approval and the services-required guard
- Per-service approval, decline and closeout
- Cascades (No Show -> Canceled, Canceled and Checked Out -> closeout or Closed)
- Rejected events and self-transitions
- Snapshot restore and legacy-status restore
- Logging behavior
"""

import logging

import pytest

from lifecycle.fsm.booking_machine import DEFAULT_DECLINE_REASON, BookingStateMachine
from lifecycle.fsm.models import (
    BookingEvent,
    MachineContext,
    MachineSnapshot,
    RoomAutoApproval,
    RoomSetting,
)
from lifecycle.fsm.status import MachineState, StatusLabel


def context(**overrides):
    values = {"calendar_event_id": "evt-1", "tenant": "mc"}
    values.update(overrides)
    return MachineContext(**values)


def auto_room():
    return RoomSetting(
        room_id=101,
        auto_approval=RoomAutoApproval(
            min_hour={"student": 1}, max_hour={"student": 4}, conditions={"setup": True}
        ),
    )


def approved_with_services(*services):
    """Machine driven through both approvals and every service approval."""
    machine = BookingStateMachine.create(context(services_requested={s: True for s in services}))
    machine.send("approve")
    machine.send("approve")
    for service in services:
        machine.send(f"approve{service.capitalize()}")
    return machine


class TestInitialEntry:
    """Tests for BookingStateMachine.create."""

    def test_starts_in_requested_without_auto_approval(self):
        machine = BookingStateMachine.create(context())
        assert machine.state == MachineState.REQUESTED
        assert machine.entered == ["Requested"]
        assert machine.last_auto_approval.reason == "No rooms selected"

    def test_auto_approval_moves_to_approved(self):
        machine = BookingStateMachine.create(
            context(selected_rooms=[auto_room()], duration_hours=2, role="Student")
        )
        assert machine.state == MachineState.APPROVED
        assert machine.entered == ["Requested", "Approved"]

    def test_auto_approved_services_need_closeout(self):
        machine = BookingStateMachine.create(
            context(selected_rooms=[auto_room()], duration_hours=2, services_requested={"setup": True})
        )
        assert machine.state == MachineState.APPROVED
        assert machine.context.services_approved == {"setup": True}

    def test_vip_with_services_enters_services_request(self):
        machine = BookingStateMachine.create(context(is_vip=True, services_requested={"setup": True}))
        assert machine.state == MachineState.SERVICES_REQUEST
        assert machine.snapshot().value == {"Services Request": {"Setup Request": "Setup Requested"}}

    def test_context_status_is_mirrored(self):
        machine = BookingStateMachine.create(context())
        assert machine.snapshot().context.status == StatusLabel.REQUESTED.value


class TestApprovalFlow:
    """Tests for first and final approval."""

    def test_first_approve_goes_to_pre_approved(self):
        machine = BookingStateMachine.create(context())
        result = machine.send("approve")
        assert result.success is True
        assert result.new_state == "Pre-approved"
        assert result.changed is True

    def test_final_approve_without_services(self):
        machine = BookingStateMachine.create(context())
        machine.send("approve")
        result = machine.send("approve")
        assert result.new_state == "Approved"

    def test_final_approve_with_services_enters_services_request(self):
        machine = BookingStateMachine.create(context(services_requested={"setup": True, "catering": True}))
        machine.send("approve")
        result = machine.send("approve")
        assert result.new_state == "Services Request"
        assert machine.context.status == StatusLabel.PENDING.value

    def test_partial_service_approval_stays_in_services_request(self):
        machine = BookingStateMachine.create(context(services_requested={"setup": True, "catering": True}))
        machine.send("approve")
        machine.send("approve")
        result = machine.send(BookingEvent.APPROVE_SETUP)
        assert result.success is True
        assert result.changed is False
        assert result.entered == []
        assert machine.snapshot().value == {
            "Services Request": {
                "Setup Request": "Setup Approved",
                "Catering Request": "Catering Requested",
            }
        }

    def test_all_services_approved_resolves_to_approved(self):
        machine = approved_with_services("setup", "catering")
        assert machine.state == MachineState.APPROVED

    def test_service_decline_declines_booking(self):
        machine = BookingStateMachine.create(context(services_requested={"setup": True, "catering": True}))
        machine.send("approve")
        machine.send("approve")
        machine.send("approveSetup")
        result = machine.send("declineCatering")
        assert result.new_state == "Declined"
        assert machine.context.decline_reason == DEFAULT_DECLINE_REASON
        assert machine.context.services_declined == {"catering": True}

    def test_decline_stores_reason(self):
        machine = BookingStateMachine.create(context())
        machine.send("decline", reason="Room under maintenance")
        assert machine.state == MachineState.DECLINED
        assert machine.context.decline_reason == "Room under maintenance"

    def test_service_event_outside_services_request_is_rejected(self):
        machine = BookingStateMachine.create(context(services_requested={"setup": True}))
        result = machine.send("approveSetup")
        assert result.success is False
        assert machine.state == MachineState.REQUESTED


class TestCascades:
    """Tests for automatic follow-on transitions."""

    def test_no_show_cascades_to_canceled_then_closed(self):
        machine = approved_with_services()
        result = machine.send("noShow")
        assert result.entered == ["No Show", "Canceled", "Closed"]
        assert machine.state == MachineState.CLOSED
        assert machine.is_terminal is True
        assert machine.snapshot().status == "done"

    def test_checkout_without_services_closes(self):
        machine = approved_with_services()
        machine.send("checkIn")
        result = machine.send("checkOut")
        assert result.entered == ["Checked Out", "Closed"]
        assert result.new_state == "Closed"

    def test_checkout_with_approved_services_needs_closeout(self):
        machine = approved_with_services("setup")
        machine.send("checkIn")
        result = machine.send("checkOut")
        assert result.entered == ["Checked Out", "Service Closeout"]
        assert machine.snapshot().value == {"Service Closeout": {"Setup Closeout": "Setup Closeout Pending"}}

    def test_closeout_of_every_service_closes(self):
        machine = approved_with_services("setup", "equipment")
        machine.send("checkIn")
        machine.send("checkOut")
        assert machine.send("closeoutSetup").changed is False
        result = machine.send("closeoutEquipment")
        assert result.entered == ["Closed"]
        assert machine.state == MachineState.CLOSED

    def test_cancel_without_services_closes(self):
        machine = BookingStateMachine.create(context())
        result = machine.send("cancel")
        assert result.entered == ["Canceled", "Closed"]
        assert machine.state == MachineState.CLOSED

    def test_cancel_with_approved_services_needs_closeout(self):
        machine = approved_with_services("setup")
        result = machine.send("cancel")
        assert result.entered == ["Canceled", "Service Closeout"]
        assert machine.snapshot().status == "active"

        closed = machine.send("closeoutSetup")
        assert closed.entered == ["Closed"]

    def test_cancel_during_services_request_closes_out_approved_only(self):
        machine = BookingStateMachine.create(context(services_requested={"setup": True, "catering": True}))
        machine.send("approve")
        machine.send("approve")
        machine.send("approveSetup")
        machine.send("cancel")
        assert machine.snapshot().value == {"Service Closeout": {"Setup Closeout": "Setup Closeout Pending"}}

    def test_no_show_with_approved_services_needs_closeout(self):
        machine = approved_with_services("equipment")
        result = machine.send("noShow")
        assert result.entered == ["No Show", "Canceled", "Service Closeout"]

    def test_auto_close_from_approved(self):
        machine = approved_with_services()
        assert machine.send("autoCloseScript").new_state == "Closed"


class TestRejections:
    """Tests for events that are not valid from the current state."""

    def test_invalid_event_is_a_no_op(self):
        machine = BookingStateMachine.create(context())
        result = machine.send("checkIn")
        assert result.success is False
        assert result.new_state == "Requested"
        assert "not valid" in result.error
        assert machine.state == MachineState.REQUESTED

    def test_unknown_event(self):
        result = BookingStateMachine.create(context()).send("teleport")
        assert result.success is False
        assert "Unknown event" in result.error

    def test_decline_not_accepted_after_check_in(self):
        machine = approved_with_services()
        machine.send("checkIn")
        assert machine.send("decline").success is False

    def test_terminal_states_accept_nothing(self):
        machine = BookingStateMachine.create(context())
        machine.send("cancel")
        assert machine.available_events() == []

    def test_rejection_is_logged_as_warning(self, caplog):
        machine = BookingStateMachine.create(context())
        with caplog.at_level(logging.WARNING):
            machine.send("checkOut")
        assert "FSM transition rejected" in caplog.text

    def test_transition_is_logged(self, caplog):
        machine = BookingStateMachine.create(context())
        with caplog.at_level(logging.INFO):
            machine.send("approve")
        assert "FSM transition: Requested -> Pre-approved" in caplog.text


class TestSelfTransitionsAndEdits:
    """Tests for edit / Modify."""

    def test_edit_while_requested_is_a_self_transition(self):
        machine = BookingStateMachine.create(context())
        result = machine.send("edit")
        assert result.success is True
        assert result.changed is False
        assert result.entered == []

    def test_modify_while_approved_is_a_self_transition(self):
        machine = approved_with_services()
        result = machine.send("Modify")
        assert result.success is True
        assert result.entered == []

    def test_edit_after_decline_returns_to_requested(self):
        machine = BookingStateMachine.create(context())
        machine.send("decline", reason="Incomplete form")
        result = machine.send("edit")
        assert result.new_state == "Requested"
        assert machine.context.decline_reason is None

    def test_edit_reruns_auto_approval(self):
        machine = BookingStateMachine.create(
            context(selected_rooms=[auto_room()], duration_hours=0.5, role="Student")
        )
        assert machine.state == MachineState.REQUESTED
        machine.send("decline", reason="Too short")
        machine.context.duration_hours = 2
        result = machine.send("edit")
        assert result.entered == ["Requested", "Approved"]

    def test_edit_after_service_decline_starts_services_over(self):
        machine = BookingStateMachine.create(context(services_requested={"setup": True}))
        machine.send("approve")
        machine.send("approve")
        machine.send("declineSetup")

        machine.send("edit")
        assert machine.context.services_declined == {}

        machine.send("approve")
        assert machine.send("approve").new_state == "Services Request"
        assert machine.send("approveSetup").new_state == "Approved"

    def test_edit_after_decline_clears_service_progress(self):
        machine = BookingStateMachine.create(context(services_requested={"setup": True, "catering": True}))
        machine.send("approve")
        machine.send("approve")
        machine.send("approveSetup")
        machine.send("declineCatering")
        machine.send("edit")
        assert machine.context.services_approved == {}
        assert machine.snapshot().context.services_requested == {"setup": True, "catering": True}

    def test_refresh_context_feeds_auto_approval(self):
        machine = BookingStateMachine.create(context(selected_rooms=[auto_room()], duration_hours=6, role="Student"))
        machine.send("decline", reason="Too long")

        machine.refresh_context(context(selected_rooms=[auto_room()], duration_hours=2, role="Student"))
        result = machine.send("edit")

        assert result.entered == ["Requested", "Approved"]

    def test_refresh_context_without_services_keeps_tracks(self):
        machine = approved_with_services("setup")
        machine.refresh_context(context(duration_hours=3), include_services=False)
        assert machine.context.duration_hours == 3
        assert machine.context.services_approved == {"setup": True}

    def test_available_events_from_approved(self):
        machine = approved_with_services()
        assert set(machine.available_events()) == {
            "decline",
            "cancel",
            "Modify",
            "checkIn",
            "noShow",
            "autoCloseScript",
        }

    def test_can_send_does_not_change_state(self):
        machine = BookingStateMachine.create(context())
        assert machine.can_send("approve") is True
        assert machine.state == MachineState.REQUESTED


class TestRestore:
    """Tests for snapshot and legacy restore."""

    def test_restore_from_snapshot(self):
        machine = approved_with_services("setup")
        machine.send("checkIn")
        machine.send("checkOut")
        snapshot = MachineSnapshot.model_validate(machine.snapshot().to_document())

        restored = BookingStateMachine.restore(snapshot)
        assert restored.state == MachineState.SERVICE_CLOSEOUT
        assert restored.send("closeoutSetup").new_state == "Closed"

    def test_restore_unknown_state_falls_back_to_requested(self):
        snapshot = MachineSnapshot(value="Limbo", context=context())
        assert BookingStateMachine.restore(snapshot).state == MachineState.REQUESTED

    @pytest.mark.parametrize(
        "label,state",
        [
            ("PENDING", MachineState.PRE_APPROVED),
            ("WALK-IN", MachineState.APPROVED),
            ("CHECKED-OUT", MachineState.CLOSED),
            ("NO-SHOW", MachineState.CANCELED),
            ("BOGUS", MachineState.REQUESTED),
        ],
    )
    def test_from_legacy_status(self, label, state):
        machine = BookingStateMachine.from_legacy_status(context(), label)
        assert machine.state == state
        assert machine.context.restored_from_status is True

    def test_legacy_restore_disables_auto_approval(self):
        machine = BookingStateMachine.from_legacy_status(context(is_vip=True), "DECLINED")
        result = machine.send("edit")
        assert result.entered == ["Requested"]

    def test_legacy_approved_booking_keeps_closeout(self):
        machine = BookingStateMachine.from_legacy_status(context(services_requested={"setup": True}), "CHECKED-IN")
        result = machine.send("checkOut")
        assert result.new_state == "Service Closeout"
