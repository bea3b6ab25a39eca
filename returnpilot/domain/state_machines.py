"""State machines for return/exchange requests.

Deterministic state machines that define valid state transitions
for the primary request lifecycle and the forward (replacement)
shipment of exchanges. State machines enforce business rules about
what automatic transitions are valid in each state; admin actions
may override them explicitly.
"""

from enum import Enum

from returnpilot.domain.exceptions import InvalidStateTransitionError


class RequestType(str, Enum):
    """Kind of post-purchase request."""

    RETURN = "return"
    EXCHANGE = "exchange"


class ShipmentTrack(str, Enum):
    """Which shipment a carrier update belongs to."""

    REVERSE = "reverse"
    FORWARD = "forward"


# ============================================================================
# Request State Machine
# ============================================================================


class RequestStatus(str, Enum):
    """Request lifecycle states.

    State diagram:
        WAITING_PAYMENT ──────────────────────────────┐
          │                                           │
          │ confirm_payment                           │
          ▼                                           │
        PENDING ──────────────────────────┬───────────┤
          │                               │           │
          │ pickup scheduled              │ approve   │ reject
          ▼                               │           │
        SCHEDULED ───► PICKED_UP ───► IN_TRANSIT ───► DELIVERED
          │               │               │           │
          └───────────────┴───────┬───────┴───────────┤
                                  ▼                   ▼
                              APPROVED            REJECTED

    The shipping states only move forward. APPROVED and REJECTED are
    terminal for automatic updates.
    """

    WAITING_PAYMENT = "waiting_payment"
    PENDING = "pending"
    SCHEDULED = "scheduled"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    APPROVED = "approved"
    REJECTED = "rejected"

    def can_transition_to(self, target: "RequestStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _REQUEST_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["RequestStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return list(_REQUEST_TRANSITIONS.get(self, set()))

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state.

        Returns:
            True if no further automatic transitions are possible.
        """
        return len(_REQUEST_TRANSITIONS.get(self, set())) == 0

    def is_shipping(self) -> bool:
        """Check if the reverse shipment may still be moving.

        Returns:
            True if carrier updates can advance this state.
        """
        return self in {
            RequestStatus.PENDING,
            RequestStatus.SCHEDULED,
            RequestStatus.PICKED_UP,
            RequestStatus.IN_TRANSIT,
        }

    @property
    def progress(self) -> int:
        """Position on the shipping progression, -1 for admin outcomes."""
        return _SHIPPING_PROGRESSION.index(self) if self in _SHIPPING_PROGRESSION else -1


_SHIPPING_PROGRESSION: list[RequestStatus] = [
    RequestStatus.WAITING_PAYMENT,
    RequestStatus.PENDING,
    RequestStatus.SCHEDULED,
    RequestStatus.PICKED_UP,
    RequestStatus.IN_TRANSIT,
    RequestStatus.DELIVERED,
]

# Request state transitions (defined outside enum to avoid Enum restrictions)
_REQUEST_TRANSITIONS: dict[RequestStatus, set[RequestStatus]] = {
    RequestStatus.WAITING_PAYMENT: {RequestStatus.PENDING, RequestStatus.REJECTED},
    RequestStatus.PENDING: {
        RequestStatus.SCHEDULED,
        RequestStatus.PICKED_UP,
        RequestStatus.IN_TRANSIT,
        RequestStatus.DELIVERED,
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    },
    RequestStatus.SCHEDULED: {
        RequestStatus.PICKED_UP,
        RequestStatus.IN_TRANSIT,
        RequestStatus.DELIVERED,
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    },
    RequestStatus.PICKED_UP: {
        RequestStatus.IN_TRANSIT,
        RequestStatus.DELIVERED,
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    },
    RequestStatus.IN_TRANSIT: {
        RequestStatus.DELIVERED,
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    },
    RequestStatus.DELIVERED: {RequestStatus.APPROVED, RequestStatus.REJECTED},
    RequestStatus.APPROVED: set(),  # Terminal state
    RequestStatus.REJECTED: set(),  # Terminal state
}

# Statuses with a stamped timestamp column
STATUS_TIMESTAMP_FIELDS: dict[RequestStatus, str] = {
    RequestStatus.PICKED_UP: "picked_up_at",
    RequestStatus.IN_TRANSIT: "in_transit_at",
    RequestStatus.DELIVERED: "delivered_at",
    RequestStatus.APPROVED: "approved_at",
    RequestStatus.REJECTED: "rejected_at",
}


# ============================================================================
# Forward Shipment State Machine
# ============================================================================


class ForwardStatus(str, Enum):
    """Forward (replacement) shipment states for exchanges.

    State diagram:
        SCHEDULED ───► PICKED_UP ───► IN_TRANSIT ───► DELIVERED
    """

    SCHEDULED = "scheduled"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"

    def can_transition_to(self, target: "ForwardStatus") -> bool:
        """Check if transition to target state is valid."""
        return target in _FORWARD_TRANSITIONS.get(self, set())

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state."""
        return self == ForwardStatus.DELIVERED

    @classmethod
    def from_request_status(cls, status: RequestStatus) -> "ForwardStatus | None":
        """Project a classified carrier status onto the forward track."""
        try:
            return cls(status.value)
        except ValueError:
            return None


_FORWARD_TRANSITIONS: dict[ForwardStatus, set[ForwardStatus]] = {
    ForwardStatus.SCHEDULED: {
        ForwardStatus.PICKED_UP,
        ForwardStatus.IN_TRANSIT,
        ForwardStatus.DELIVERED,
    },
    ForwardStatus.PICKED_UP: {ForwardStatus.IN_TRANSIT, ForwardStatus.DELIVERED},
    ForwardStatus.IN_TRANSIT: {ForwardStatus.DELIVERED},
    ForwardStatus.DELIVERED: set(),  # Terminal state
}


# ============================================================================
# State Machine Helpers
# ============================================================================


def validate_request_transition(
    request_id: str,
    current_status: RequestStatus,
    target_status: RequestStatus,
) -> None:
    """Validate and raise if request state transition is invalid.

    Args:
        request_id: Request identifier for error message.
        current_status: Current request status.
        target_status: Target request status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            request_id=request_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=sorted(s.value for s in current_status.allowed_transitions()),
        )
