"""SQLAlchemy models for database tables.

Provides the ORM model for return_requests.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    Text,
)

from returnpilot.infrastructure.database import Base

REQUEST_STATUS_VALUES = (
    "waiting_payment",
    "pending",
    "scheduled",
    "picked_up",
    "in_transit",
    "delivered",
    "approved",
    "rejected",
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReturnRequestModel(Base):
    """Return request model for database persistence.

    One row per request. Line items, images and the structured original
    address are stored as JSON documents.
    """

    __tablename__ = "return_requests"
    __table_args__ = (
        CheckConstraint(
            "status IN ({})".format(", ".join(f"'{s}'" for s in REQUEST_STATUS_VALUES)),
            name="ck_return_requests_status",
        ),
    )

    request_id = Column(String(32), primary_key=True)
    type = Column(String(20), nullable=False, index=True)
    order_number = Column(String(100), nullable=False, index=True)
    status = Column(String(20), nullable=False, index=True)

    # Customer
    email = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    shipping_address = Column(Text, nullable=True)
    shipping_address_details = Column(JSON, nullable=True)
    new_address = Column(Text, nullable=True)
    new_city = Column(String(100), nullable=True)
    new_pincode = Column(String(20), nullable=True)

    # Request content
    items = Column(JSON, nullable=False, default=list)
    reason = Column(String(100), nullable=False, default="")
    comments = Column(Text, nullable=True)
    images = Column(JSON, nullable=False, default=list)

    # Payment
    payment_id = Column(String(100), nullable=True)
    payment_amount = Column(Integer, nullable=True)
    fee_waived = Column(Boolean, nullable=False, default=False)

    # Reverse shipment
    awb_number = Column(String(100), nullable=True)
    shipment_id = Column(String(100), nullable=True)
    pickup_date = Column(String(50), nullable=True)

    # Forward shipment
    forward_shipment_id = Column(String(100), nullable=True)
    forward_awb_number = Column(String(100), nullable=True)
    forward_status = Column(String(20), nullable=True)
    forward_delivered_at = Column(DateTime(timezone=True), nullable=True)

    # Replacement order
    replacement_order_id = Column(String(100), nullable=True)
    replacement_order_name = Column(String(100), nullable=True)

    # Side-effect claims
    pickup_claim = Column(String(100), nullable=True)
    replacement_claim = Column(String(100), nullable=True)
    forward_claim = Column(String(100), nullable=True)

    admin_notes = Column(Text, nullable=True)

    # Timestamps
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    in_transit_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        index=True,
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary of column values."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}
