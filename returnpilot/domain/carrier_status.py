"""Carrier status classification.

Maps the free-text status strings reported by the shipping aggregator
(e.g. "Shipment Picked Up by Courier", "RTO Initiated") onto the
canonical request statuses. Matching is a case-insensitive substring
search over keyword groups evaluated in priority order; the first group
with a hit wins. Unmatched text yields ``None`` (no transition).
"""

from returnpilot.domain.state_machines import RequestStatus

# Priority order matters: "PICKUP GENERATED" must win over "GENERATED",
# "SHIPPED" over "NEW", and so on.
CARRIER_STATUS_KEYWORDS: list[tuple[RequestStatus, tuple[str, ...]]] = [
    (
        RequestStatus.DELIVERED,
        ("DELIVERED", "CLOSED", "RETURN RECEIVED"),
    ),
    (
        RequestStatus.PICKED_UP,
        ("PICKED UP", "PICKUP GENERATED", "OUT FOR PICKUP", "PICKUP COMPLETE"),
    ),
    (
        RequestStatus.IN_TRANSIT,
        ("IN TRANSIT", "SHIPPED", "OUT FOR DELIVERY", "REACHED AT DESTINATION HUB"),
    ),
    (
        RequestStatus.SCHEDULED,
        ("SCHEDULED", "GENERATED", "AWB ASSIGNED", "MANIFESTED", "NEW"),
    ),
    (
        RequestStatus.REJECTED,
        ("RTO", "REJECTED", "CANCELLED", "CANCELED"),
    ),
]


# Phrases that contain a keyword but mean the opposite
_NEGATIONS: dict[RequestStatus, tuple[str, ...]] = {
    RequestStatus.DELIVERED: ("UNDELIVERED", "NOT DELIVERED"),
}


def _normalize(raw_status: str) -> str:
    return " ".join(raw_status.replace("_", " ").replace("-", " ").upper().split())


def classify_carrier_status(raw_status: str | None) -> RequestStatus | None:
    """Classify a raw carrier status string.

    Args:
        raw_status: Status text as returned by the carrier.

    Returns:
        The canonical status, or None when the text is empty or unknown.
    """
    if not raw_status:
        return None

    text = _normalize(raw_status)
    words = set(text.split())
    for status, keywords in CARRIER_STATUS_KEYWORDS:
        if any(phrase in text for phrase in _NEGATIONS.get(status, ())):
            continue
        for keyword in keywords:
            # Single short tokens ("NEW", "RTO") must match a whole word
            if " " not in keyword and len(keyword) <= 3:
                if keyword in words:
                    return status
            elif keyword in text:
                return status
    return None
