"""Tests for domain state machines."""

import pytest

from returnpilot.domain import ForwardStatus, RequestStatus
from returnpilot.domain.exceptions import InvalidStateTransitionError
from returnpilot.domain.state_machines import validate_request_transition


class TestRequestStatus:
    """Tests for RequestStatus state machine."""

    def test_waiting_payment_can_transition_to_pending(self) -> None:
        assert RequestStatus.WAITING_PAYMENT.can_transition_to(RequestStatus.PENDING)

    def test_waiting_payment_cannot_skip_to_scheduled(self) -> None:
        """Pickup is never scheduled before the fee is settled."""
        assert not RequestStatus.WAITING_PAYMENT.can_transition_to(RequestStatus.SCHEDULED)

    def test_shipping_states_only_move_forward(self) -> None:
        assert RequestStatus.SCHEDULED.can_transition_to(RequestStatus.PICKED_UP)
        assert RequestStatus.PICKED_UP.can_transition_to(RequestStatus.DELIVERED)
        assert not RequestStatus.DELIVERED.can_transition_to(RequestStatus.IN_TRANSIT)
        assert not RequestStatus.IN_TRANSIT.can_transition_to(RequestStatus.SCHEDULED)

    def test_carrier_may_skip_intermediate_states(self) -> None:
        """Sparse polling can observe SCHEDULED then DELIVERED directly."""
        assert RequestStatus.SCHEDULED.can_transition_to(RequestStatus.DELIVERED)

    def test_admin_outcomes_reachable_from_shipping_states(self) -> None:
        for status in (
            RequestStatus.PENDING,
            RequestStatus.SCHEDULED,
            RequestStatus.IN_TRANSIT,
            RequestStatus.DELIVERED,
        ):
            assert status.can_transition_to(RequestStatus.APPROVED)
            assert status.can_transition_to(RequestStatus.REJECTED)

    def test_approved_and_rejected_are_terminal(self) -> None:
        assert RequestStatus.APPROVED.is_terminal()
        assert RequestStatus.REJECTED.is_terminal()
        assert RequestStatus.APPROVED.allowed_transitions() == []

    def test_shipping_states(self) -> None:
        assert RequestStatus.SCHEDULED.is_shipping()
        assert not RequestStatus.WAITING_PAYMENT.is_shipping()
        assert not RequestStatus.DELIVERED.is_shipping()

    def test_progress_order(self) -> None:
        assert RequestStatus.PENDING.progress < RequestStatus.SCHEDULED.progress
        assert RequestStatus.IN_TRANSIT.progress < RequestStatus.DELIVERED.progress
        assert RequestStatus.APPROVED.progress == -1

    def test_validate_raises_with_allowed_transitions(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            validate_request_transition(
                "REQ-1", RequestStatus.APPROVED, RequestStatus.SCHEDULED
            )

        assert exc_info.value.details["current_state"] == "approved"
        assert exc_info.value.details["allowed_transitions"] == []

    def test_validate_accepts_valid_transition(self) -> None:
        validate_request_transition("REQ-1", RequestStatus.PENDING, RequestStatus.SCHEDULED)


class TestForwardStatus:
    """Tests for ForwardStatus state machine."""

    def test_forward_progression(self) -> None:
        assert ForwardStatus.SCHEDULED.can_transition_to(ForwardStatus.PICKED_UP)
        assert ForwardStatus.IN_TRANSIT.can_transition_to(ForwardStatus.DELIVERED)
        assert not ForwardStatus.DELIVERED.can_transition_to(ForwardStatus.IN_TRANSIT)

    def test_delivered_is_terminal(self) -> None:
        assert ForwardStatus.DELIVERED.is_terminal()
        assert not ForwardStatus.SCHEDULED.is_terminal()

    def test_projection_from_request_status(self) -> None:
        assert ForwardStatus.from_request_status(RequestStatus.IN_TRANSIT) == ForwardStatus.IN_TRANSIT
        assert ForwardStatus.from_request_status(RequestStatus.REJECTED) is None
        assert ForwardStatus.from_request_status(RequestStatus.PENDING) is None
