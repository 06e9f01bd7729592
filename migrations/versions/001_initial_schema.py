"""Initial schema: drivers, pricing configs, bookings, notifications.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "vehicleclass": ("small_car", "sedan", "suv", "truck", "heavy_vehicle"),
    "approvalstatus": ("pending", "approved", "rejected"),
    "bookingstatus": (
        "requested",
        "accepted",
        "driver_arrived",
        "in_progress",
        "completed",
        "cancelled_by_user",
        "cancelled_by_driver",
    ),
    "paymentstatus": ("pending", "completed", "failed", "refunded"),
    "cancellationactor": ("requester", "driver", "system", "admin"),
    "recipientrole": ("requester", "driver"),
    "notificationkind": (
        "booking_request",
        "booking_accepted",
        "booking_cancelled",
        "driver_arrived",
        "trip_started",
        "trip_completed",
        "payment_reminder",
        "payment_completed",
    ),
}


def _enum(name: str) -> postgresql.ENUM:
    # Types are created once up-front; several tables share them.
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("vehicle_class", _enum("vehicleclass"), nullable=False),
        sa.Column("approval_status", _enum("approvalstatus"), nullable=False),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "is_location_enabled", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "is_accepting_bookings", sa.Boolean, nullable=False, server_default=sa.true()
        ),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("current_address", sa.String(255), nullable=True),
        sa.Column("h3_cell", sa.String(20), nullable=True),
        sa.Column("location_updated_at", sa.DateTime, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_drivers_cell", "drivers", ["h3_cell"])
    op.create_index(
        "idx_drivers_availability",
        "drivers",
        ["approval_status", "is_online", "vehicle_class"],
    )

    # ── pricing_configs ───────────────────────────────────────────────
    op.create_table(
        "pricing_configs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("vehicle_class", _enum("vehicleclass"), unique=True, nullable=False),
        sa.Column("base_price", sa.Float, nullable=False),
        sa.Column("per_km_rate", sa.Float, nullable=False),
        sa.Column("minimum_fare", sa.Float, nullable=False, server_default="0"),
        sa.Column("service_fee_percentage", sa.Float, nullable=False, server_default="0"),
        sa.Column("driver_commission_percentage", sa.Float, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("booking_number", sa.String(32), unique=True, nullable=False),
        sa.Column("requester_id", sa.Integer, nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("status", _enum("bookingstatus"), nullable=False),
        sa.Column("vehicle_class", _enum("vehicleclass"), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("pickup_address", sa.String(255), nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("dropoff_address", sa.String(255), nullable=False),
        sa.Column("actual_dropoff_lat", sa.Float, nullable=True),
        sa.Column("actual_dropoff_lng", sa.Float, nullable=True),
        sa.Column("actual_dropoff_address", sa.String(255), nullable=True),
        sa.Column("distance_estimated", sa.Float, nullable=False),
        sa.Column("distance_actual", sa.Float, nullable=True),
        sa.Column("fare_base_price", sa.Float, nullable=False),
        sa.Column("fare_per_km_rate", sa.Float, nullable=False),
        sa.Column("fare_total_distance", sa.Float, nullable=False),
        sa.Column("fare_distance_price", sa.Float, nullable=False),
        sa.Column("fare_service_fee", sa.Float, nullable=False),
        sa.Column("fare_total_amount", sa.Float, nullable=False),
        sa.Column("fare_currency", sa.String(3), nullable=False),
        sa.Column("fare_commission_percentage", sa.Float, nullable=False),
        sa.Column("payment_id", sa.String(128), nullable=True),
        sa.Column("payment_status", _enum("paymentstatus"), nullable=False),
        sa.Column("paid_at", sa.DateTime, nullable=True),
        sa.Column("requested_at", sa.DateTime, nullable=False),
        sa.Column("accepted_at", sa.DateTime, nullable=True),
        sa.Column("driver_arrived_at", sa.DateTime, nullable=True),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("cancelled_at", sa.DateTime, nullable=True),
        sa.Column("request_expires_at", sa.DateTime, nullable=False),
        sa.Column("payment_expires_at", sa.DateTime, nullable=True),
        sa.Column("cancelled_by", _enum("cancellationactor"), nullable=True),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("driver_earnings", sa.Float, nullable=False, server_default="0"),
        sa.Column("platform_commission", sa.Float, nullable=False, server_default="0"),
        sa.Column("search_radius_km", sa.Float, nullable=False),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_bookings_request_expiry", "bookings", ["status", "request_expires_at"]
    )
    op.create_index(
        "idx_bookings_payment_expiry", "bookings", ["status", "payment_expires_at"]
    )
    op.create_index("idx_bookings_requester", "bookings", ["requester_id", "status"])
    op.create_index("idx_bookings_driver", "bookings", ["driver_id", "status"])

    # ── notifications ─────────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("kind", _enum("notificationkind"), nullable=False),
        sa.Column("recipient_role", _enum("recipientrole"), nullable=False),
        sa.Column("recipient_id", sa.Integer, nullable=False),
        sa.Column(
            "booking_id", sa.Integer, sa.ForeignKey("bookings.id"), nullable=True
        ),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("message", sa.String(500), nullable=False),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_notifications_recipient",
        "notifications",
        ["recipient_role", "recipient_id"],
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("bookings")
    op.drop_table("pricing_configs")
    op.drop_table("drivers")
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
