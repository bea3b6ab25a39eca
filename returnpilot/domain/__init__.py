"""Domain layer.

Pure business rules for return/exchange requests: entities, state
machines, carrier-status classification, address parsing and policies.
No I/O happens in this package.
"""

from returnpilot.domain.address import PostalAddress, parse_address_string
from returnpilot.domain.carrier_status import classify_carrier_status
from returnpilot.domain.entities import LineItem, ReturnRequest, generate_request_id
from returnpilot.domain.exceptions import (
    DomainError,
    DuplicateRequestIdError,
    InvalidStateTransitionError,
    RequestNotFoundError,
    RequestValidationError,
)
from returnpilot.domain.state_machines import (
    ForwardStatus,
    RequestStatus,
    RequestType,
    ShipmentTrack,
)

__all__ = [
    "classify_carrier_status",
    "DomainError",
    "DuplicateRequestIdError",
    "ForwardStatus",
    "generate_request_id",
    "InvalidStateTransitionError",
    "LineItem",
    "parse_address_string",
    "PostalAddress",
    "RequestNotFoundError",
    "RequestStatus",
    "RequestType",
    "RequestValidationError",
    "ReturnRequest",
    "ShipmentTrack",
]
