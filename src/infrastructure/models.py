"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``bookings``         -- one towing job from request to terminal state
* ``drivers``          -- driver availability and last known position
* ``pricing_configs``  -- per-vehicle-class fare table
* ``notifications``    -- delivered notifications (inbox for requesters / drivers)

Column names on ``bookings`` are read directly by reporting dashboards;
rename with care.

Indexes
-------
* **B-Tree** on ``(status, request_expires_at)`` and
  ``(status, payment_expires_at)`` for the expiry sweep.
* **B-Tree** on ``drivers.h3_cell`` for the matcher's spatial pre-filter.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)

from .database import Base, UTCDateTime
from src.domain.enums import (
    ApprovalStatus,
    BookingStatus,
    CancellationActor,
    NotificationKind,
    PaymentStatus,
    RecipientRole,
    VehicleClass,
)


def _values(enum_cls):
    return [member.value for member in enum_cls]


def _enum(enum_cls, name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=_values)


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    vehicle_class = Column(_enum(VehicleClass, "vehicleclass"), nullable=False)
    approval_status = Column(
        _enum(ApprovalStatus, "approvalstatus"),
        default=ApprovalStatus.PENDING,
        nullable=False,
    )
    is_online = Column(Boolean, default=False, nullable=False)
    is_location_enabled = Column(Boolean, default=False, nullable=False)
    is_accepting_bookings = Column(Boolean, default=True, nullable=False)

    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    current_address = Column(String(255), nullable=True)
    h3_cell = Column(String(20), nullable=True)
    location_updated_at = Column(UTCDateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_drivers_cell", "h3_cell"),
        Index("idx_drivers_availability", "approval_status", "is_online", "vehicle_class"),
    )


class PricingConfigModel(Base):
    __tablename__ = "pricing_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_class = Column(
        _enum(VehicleClass, "vehicleclass"), unique=True, nullable=False
    )
    base_price = Column(Float, nullable=False)
    per_km_rate = Column(Float, nullable=False)
    minimum_fare = Column(Float, default=0.0, nullable=False)
    service_fee_percentage = Column(Float, default=0.0, nullable=False)
    driver_commission_percentage = Column(Float, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_number = Column(String(32), unique=True, nullable=False)
    requester_id = Column(Integer, nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)

    status = Column(
        _enum(BookingStatus, "bookingstatus"),
        default=BookingStatus.REQUESTED,
        nullable=False,
    )
    vehicle_class = Column(_enum(VehicleClass, "vehicleclass"), nullable=False)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    pickup_address = Column(String(255), nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    dropoff_address = Column(String(255), nullable=False)
    actual_dropoff_lat = Column(Float, nullable=True)
    actual_dropoff_lng = Column(Float, nullable=True)
    actual_dropoff_address = Column(String(255), nullable=True)

    distance_estimated = Column(Float, nullable=False)
    distance_actual = Column(Float, nullable=True)

    # Frozen at creation, never rewritten
    fare_base_price = Column(Float, nullable=False)
    fare_per_km_rate = Column(Float, nullable=False)
    fare_total_distance = Column(Float, nullable=False)
    fare_distance_price = Column(Float, nullable=False)
    fare_service_fee = Column(Float, nullable=False)
    fare_total_amount = Column(Float, nullable=False)
    fare_currency = Column(String(3), nullable=False)
    fare_commission_percentage = Column(Float, nullable=False)

    payment_id = Column(String(128), nullable=True)
    payment_status = Column(
        _enum(PaymentStatus, "paymentstatus"),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    paid_at = Column(UTCDateTime, nullable=True)

    requested_at = Column(UTCDateTime, nullable=False)
    accepted_at = Column(UTCDateTime, nullable=True)
    driver_arrived_at = Column(UTCDateTime, nullable=True)
    started_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)

    request_expires_at = Column(UTCDateTime, nullable=False)
    payment_expires_at = Column(UTCDateTime, nullable=True)

    cancelled_by = Column(_enum(CancellationActor, "cancellationactor"), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    driver_earnings = Column(Float, default=0.0, nullable=False)
    platform_commission = Column(Float, default=0.0, nullable=False)

    search_radius_km = Column(Float, nullable=False)
    notes = Column(String(500), nullable=True)
    version = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_bookings_request_expiry", "status", "request_expires_at"),
        Index("idx_bookings_payment_expiry", "status", "payment_expires_at"),
        Index("idx_bookings_requester", "requester_id", "status"),
        Index("idx_bookings_driver", "driver_id", "status"),
    )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(_enum(NotificationKind, "notificationkind"), nullable=False)
    recipient_role = Column(_enum(RecipientRole, "recipientrole"), nullable=False)
    recipient_id = Column(Integer, nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    title = Column(String(120), nullable=False)
    message = Column(String(500), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_notifications_recipient", "recipient_role", "recipient_id"),
    )
