"""Business policies for return and exchange requests.

Pure functions covering fee waivers, order ownership checks,
eligibility windows and customer-contact normalisation.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

_NON_DIGITS = re.compile(r"\D")

PLACEHOLDER_NAMES = {"", "customer", "null", "none", "undefined"}
PLACEHOLDER_PHONES = {"", "null", "none", "undefined", "9999999999"}
FALLBACK_PHONE = "9999999999"

PAID_PAYMENT_STATUSES = {"captured", "authorized"}


def normalize_reason(reason: str | None) -> str:
    """Normalise a reason code ("Wrong Item" -> "wrong_item")."""
    if not reason:
        return ""
    return re.sub(r"[\s\-]+", "_", reason.strip().lower())


def is_fee_waived(reason: str | None, waiver_reasons: Iterable[str]) -> bool:
    """Check whether a stated reason exempts the processing fee.

    Args:
        reason: Reason given by the customer.
        waiver_reasons: Configured reason codes that waive the fee.

    Returns:
        True if no fee is due.
    """
    normalized = normalize_reason(reason)
    return bool(normalized) and normalized in {normalize_reason(r) for r in waiver_reasons}


def is_payment_captured(status: str | None) -> bool:
    """A payment counts only once the gateway captured or authorized it."""
    return (status or "").lower() in PAID_PAYMENT_STATUSES


# ============================================================================
# Contact matching
# ============================================================================


def digits_only(value: str | None) -> str:
    """Strip everything but digits."""
    return _NON_DIGITS.sub("", value or "")


def last_ten_digits(value: str | None) -> str:
    """Last ten digits of a phone number, or "" if it has fewer."""
    digits = digits_only(value)
    return digits[-10:] if len(digits) >= 10 else ""


def contact_matches(
    contact: str | None,
    customer_email: str | None,
    phones: Iterable[str | None],
) -> bool:
    """Check whether a customer-supplied email or phone owns an order.

    The contact matches if it equals the order's customer email
    (case-insensitive) or if its last ten digits equal the last ten
    digits of any of the order's phone numbers.

    Args:
        contact: Email address or phone number supplied by the customer.
        customer_email: Email on the order's customer record.
        phones: Phone numbers on the order (customer, shipping address).

    Returns:
        True if the contact identifies the order's owner.
    """
    normalized = (contact or "").strip().lower()
    if not normalized:
        return False

    if customer_email and customer_email.strip().lower() == normalized:
        return True

    wanted = last_ten_digits(normalized)
    if not wanted:
        return False
    return any(last_ten_digits(phone) == wanted for phone in phones if phone)


def sanitize_phone(phone: str | None) -> str:
    """Reduce a phone number to the ten-digit form carriers accept.

    Falls back to the placeholder number when fewer than ten digits
    remain.
    """
    digits = digits_only(phone)
    if len(digits) == 12 and digits.startswith("91"):
        digits = digits[2:]
    if len(digits) > 10:
        digits = digits[-10:]
    if len(digits) < 10:
        return FALLBACK_PHONE
    return digits


def is_placeholder_name(name: str | None) -> bool:
    return (name or "").strip().lower() in PLACEHOLDER_NAMES


def is_placeholder_phone(phone: str | None) -> bool:
    return (phone or "").strip().lower() in PLACEHOLDER_PHONES


def first_real(values: Iterable[str | None], placeholders: set[str]) -> str | None:
    """Return the first value that is not empty or a known placeholder."""
    for value in values:
        if value and value.strip().lower() not in placeholders:
            return value.strip()
    return None


# ============================================================================
# Eligibility
# ============================================================================


@dataclass(frozen=True)
class Eligibility:
    """Outcome of an order eligibility check."""

    is_eligible: bool
    message: str


def check_eligibility(
    order_created_at: datetime | None,
    fulfillment_status: str | None,
    window_days: int,
    now: datetime | None = None,
) -> Eligibility:
    """Check whether an order may still be returned or exchanged.

    Args:
        order_created_at: When the order was placed.
        fulfillment_status: Commerce-platform fulfillment status.
        window_days: Eligibility window in days.
        now: Reference time (defaults to current UTC time).

    Returns:
        Eligibility verdict with a customer-facing message.
    """
    if fulfillment_status != "fulfilled":
        return Eligibility(False, "Order must be fulfilled before exchange/return")

    if order_created_at is not None:
        now = now or datetime.now(timezone.utc)
        if order_created_at.tzinfo is None:
            order_created_at = order_created_at.replace(tzinfo=timezone.utc)
        age_days = (now - order_created_at).total_seconds() / 86400
        if age_days > window_days:
            return Eligibility(
                False, f"Order is older than {window_days} days and not eligible"
            )

    return Eligibility(True, "Order is eligible for exchange/return")
