"""
Per-service sub-workflow.

Each requested service (setup, equipment, staffing, catering, cleaning,
security) runs its own track inside the machine's parallel regions:

    Services Request:  {Svc} Requested -> {Svc} Approved | {Svc} Declined
    Service Closeout:  {Svc} Closeout Pending -> {Svc} Closedout

Only requested services get a track. Declined services are resolved
immediately and never need closeout.
"""

import logging
from enum import Enum

from lifecycle.fsm.models import MachineContext, ServiceKey
from lifecycle.fsm.state_value import CompositeState, SimpleState
from lifecycle.fsm.status import MachineState

logger = logging.getLogger(__name__)


class TrackState(str, Enum):
    """State of one service track."""

    REQUESTED = "Requested"
    APPROVED = "Approved"
    DECLINED = "Declined"
    CLOSEOUT_PENDING = "Closeout Pending"
    CLOSEDOUT = "Closedout"


class ServiceTracks:
    """
    Track states for every requested service of one booking.

    Backed by the four service maps of MachineContext, so the tracks are
    always reconstructible from a persisted snapshot.
    """

    def __init__(
        self,
        requested: dict[str, bool],
        approved: dict[str, bool] | None = None,
        declined: dict[str, bool] | None = None,
        closed_out: dict[str, bool] | None = None,
    ) -> None:
        self._requested = {key: bool(requested.get(key.value)) for key in ServiceKey}
        self._approved = {key: bool((approved or {}).get(key.value)) for key in ServiceKey}
        self._declined = {key: bool((declined or {}).get(key.value)) for key in ServiceKey}
        self._closed_out = {key: bool((closed_out or {}).get(key.value)) for key in ServiceKey}

    @classmethod
    def from_context(cls, context: MachineContext) -> "ServiceTracks":
        return cls(
            context.services_requested,
            context.services_approved,
            context.services_declined,
            context.services_closed_out,
        )

    def apply_to_context(self, context: MachineContext) -> None:
        """Write track states back into the context maps."""
        context.services_requested = {k.value: v for k, v in self._requested.items() if v}
        context.services_approved = {k.value: v for k, v in self._approved.items() if v}
        context.services_declined = {k.value: v for k, v in self._declined.items() if v}
        context.services_closed_out = {k.value: v for k, v in self._closed_out.items() if v}

    @property
    def requested(self) -> list[ServiceKey]:
        return [key for key in ServiceKey if self._requested[key]]

    @property
    def any_requested(self) -> bool:
        return bool(self.requested)

    def state_of(self, service: ServiceKey) -> TrackState | None:
        """Current track state, or None when the service was not requested."""
        if not self._requested[service]:
            return None
        if self._declined[service]:
            return TrackState.DECLINED
        if self._closed_out[service]:
            return TrackState.CLOSEDOUT
        if self._approved[service]:
            return TrackState.APPROVED
        return TrackState.REQUESTED

    def approve(self, service: ServiceKey) -> bool:
        """Approve a pending service. Returns False when not applicable."""
        if self.state_of(service) != TrackState.REQUESTED:
            return False
        self._approved[service] = True
        return True

    def decline(self, service: ServiceKey) -> bool:
        """Decline a pending service. Returns False when not applicable."""
        if self.state_of(service) != TrackState.REQUESTED:
            return False
        self._declined[service] = True
        return True

    def close_out(self, service: ServiceKey) -> bool:
        """Close out an approved service. Returns False when not applicable."""
        if self.state_of(service) != TrackState.APPROVED:
            return False
        self._closed_out[service] = True
        return True

    @property
    def is_fully_approved(self) -> bool:
        """Every requested service approved (closeout may still be pending)."""
        return all(
            self.state_of(key) in (TrackState.APPROVED, TrackState.CLOSEDOUT)
            for key in self.requested
        )

    @property
    def closeout_required(self) -> list[ServiceKey]:
        """Requested services that were approved and so need closeout."""
        return [key for key in self.requested if self._approved[key] and not self._declined[key]]

    @property
    def is_fully_closed_out(self) -> bool:
        return all(self._closed_out[key] for key in self.closeout_required)

    def request_region(self) -> CompositeState:
        """Value of the "Services Request" parallel state."""
        regions: dict[str, SimpleState] = {}
        for key in self.requested:
            name = key.display_name
            state = self.state_of(key)
            leaf = TrackState.APPROVED if state == TrackState.CLOSEDOUT else state
            regions[f"{name} Request"] = SimpleState(f"{name} {leaf.value}")
        return CompositeState({MachineState.SERVICES_REQUEST.value: CompositeState(regions)})

    def closeout_region(self) -> CompositeState:
        """Value of the "Service Closeout" parallel state."""
        regions: dict[str, SimpleState] = {}
        for key in self.closeout_required:
            name = key.display_name
            leaf = TrackState.CLOSEDOUT if self._closed_out[key] else TrackState.CLOSEOUT_PENDING
            regions[f"{name} Closeout"] = SimpleState(f"{name} {leaf.value}")
        return CompositeState({MachineState.SERVICE_CLOSEOUT.value: CompositeState(regions)})
