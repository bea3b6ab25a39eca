"""Domain exceptions.

All domain-level errors that represent business rule violations.
These exceptions are raised by entities, policies and state machines
when invariants are violated or invalid operations are attempted.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(DomainError):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        request_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            request_id: ID of the request.
            current_state: Current state of the request.
            target_state: Attempted target state.
            allowed_transitions: List of allowed target states from current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition request {request_id} "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "request_id": request_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


# ============================================================================
# Request Errors
# ============================================================================


class RequestError(DomainError):
    """Base class for return/exchange request errors."""

    pass


class RequestValidationError(RequestError):
    """Raised when a submission is missing required data."""

    def __init__(self, field: str, reason: str) -> None:
        """Initialize request validation error.

        Args:
            field: Name of the offending field.
            reason: Explanation of why the value is invalid.
        """
        super().__init__(
            f"Invalid {field}: {reason}",
            details={"field": field, "reason": reason},
        )
        self.field = field


class RequestNotFoundError(RequestError):
    """Raised when a request id does not exist in the store."""

    def __init__(self, request_id: str) -> None:
        """Initialize request not found error.

        Args:
            request_id: The unknown request id.
        """
        super().__init__(
            f"Request not found: {request_id}",
            details={"request_id": request_id},
        )


class DuplicateRequestIdError(RequestError):
    """Raised by a store when a request id is already taken."""

    def __init__(self, request_id: str) -> None:
        super().__init__(
            f"Request id already exists: {request_id}",
            details={"request_id": request_id},
        )
