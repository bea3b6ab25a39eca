"""Create return_requests table.

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None

REQUEST_STATUSES = (
    "waiting_payment",
    "pending",
    "scheduled",
    "picked_up",
    "in_transit",
    "delivered",
    "approved",
    "rejected",
)


def upgrade() -> None:
    """Create return_requests table."""
    op.create_table(
        "return_requests",
        sa.Column("request_id", sa.String(32), primary_key=True),
        sa.Column("type", sa.String(20), nullable=False, index=True),
        sa.Column("order_number", sa.String(100), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, index=True),
        # Customer
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_phone", sa.String(50), nullable=True),
        sa.Column("shipping_address", sa.Text, nullable=True),
        sa.Column("shipping_address_details", sa.JSON, nullable=True),
        sa.Column("new_address", sa.Text, nullable=True),
        sa.Column("new_city", sa.String(100), nullable=True),
        sa.Column("new_pincode", sa.String(20), nullable=True),
        # Request content
        sa.Column("items", sa.JSON, nullable=False),
        sa.Column("reason", sa.String(100), nullable=False, server_default=""),
        sa.Column("comments", sa.Text, nullable=True),
        sa.Column("images", sa.JSON, nullable=False),
        # Payment
        sa.Column("payment_id", sa.String(100), nullable=True),
        sa.Column("payment_amount", sa.Integer, nullable=True),
        sa.Column("fee_waived", sa.Boolean, nullable=False, server_default=sa.false()),
        # Reverse shipment
        sa.Column("awb_number", sa.String(100), nullable=True),
        sa.Column("shipment_id", sa.String(100), nullable=True),
        sa.Column("pickup_date", sa.String(50), nullable=True),
        # Forward shipment
        sa.Column("forward_shipment_id", sa.String(100), nullable=True),
        sa.Column("forward_awb_number", sa.String(100), nullable=True),
        sa.Column("forward_status", sa.String(20), nullable=True),
        sa.Column("forward_delivered_at", sa.DateTime(timezone=True), nullable=True),
        # Replacement order
        sa.Column("replacement_order_id", sa.String(100), nullable=True),
        sa.Column("replacement_order_name", sa.String(100), nullable=True),
        # Side-effect claims
        sa.Column("pickup_claim", sa.String(100), nullable=True),
        sa.Column("replacement_claim", sa.String(100), nullable=True),
        sa.Column("forward_claim", sa.String(100), nullable=True),
        sa.Column("admin_notes", sa.Text, nullable=True),
        # Timestamps
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("in_transit_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            index=True,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ({})".format(", ".join(f"'{s}'" for s in REQUEST_STATUSES)),
            name="ck_return_requests_status",
        ),
    )


def downgrade() -> None:
    """Drop return_requests table."""
    op.drop_table("return_requests")
