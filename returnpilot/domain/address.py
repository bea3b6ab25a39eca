"""Postal address value object and free-text address parsing.

Requests store the original shipping address both as a formatted
string and, when it was available at submission time, as structured
fields. ``parse_address_string`` is the last-resort fallback used to
recover structured fields from the formatted string alone.
"""

import re
from dataclasses import asdict, dataclass
from typing import Any

_PINCODE_RE = re.compile(r"^\d{6}$")
_COUNTRY_NAMES = {"india", "in", "ind"}


@dataclass(frozen=True)
class PostalAddress:
    """Structured postal address.

    Attributes:
        line1: Street address.
        city: City name.
        pincode: Postal (PIN) code.
        state: State or province.
        country: Country name or code.
        line2: Optional second address line.
    """

    line1: str
    city: str = ""
    pincode: str = ""
    state: str = ""
    country: str = "India"
    line2: str = ""

    def format(self) -> str:
        """Join the non-empty parts into a single comma-separated line."""
        parts = [self.line1, self.line2, self.city, self.state, self.pincode, self.country]
        return ", ".join(p for p in parts if p)

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PostalAddress | None":
        """Create from a stored dictionary, None if absent or empty."""
        if not data or not data.get("line1"):
            return None
        return cls(
            line1=str(data.get("line1") or ""),
            line2=str(data.get("line2") or ""),
            city=str(data.get("city") or ""),
            state=str(data.get("state") or ""),
            pincode=str(data.get("pincode") or ""),
            country=str(data.get("country") or "India"),
        )


def parse_address_string(address: str | None) -> PostalAddress | None:
    """Best-effort split of a formatted address back into fields.

    Splitting rules, applied to the comma-separated tokens from the end:

    1. A trailing country token ("India", "IN") is dropped.
    2. A trailing six-digit token is the pincode.
    3. The remaining last two tokens are state and city (city first);
       with a single remaining token after the street it is the city.
    4. Everything before that is the street line.

    Inputs with fewer than two tokens cannot be split and come back as
    a street line only.

    Args:
        address: Formatted address such as
            "12 MG Road, Indiranagar, Bengaluru, Karnataka, 560038, India".

    Returns:
        Parsed address, or None for empty input.
    """
    if not address or not address.strip():
        return None

    tokens = [t.strip() for t in address.split(",") if t.strip()]
    if len(tokens) < 2:
        return PostalAddress(line1=address.strip())

    country = "India"
    if tokens[-1].lower() in _COUNTRY_NAMES:
        tokens.pop()

    pincode = ""
    if tokens and _PINCODE_RE.match(tokens[-1].replace(" ", "")):
        pincode = tokens.pop().replace(" ", "")

    city = ""
    state = ""
    if len(tokens) >= 3:
        state = tokens.pop()
        city = tokens.pop()
    elif len(tokens) == 2:
        city = tokens.pop()

    return PostalAddress(
        line1=", ".join(tokens),
        city=city,
        state=state,
        pincode=pincode,
        country=country,
    )
