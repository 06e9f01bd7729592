"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Booking``: ``next_status`` consults the transition
  table and refuses anything it does not list.
- ``DriverSnapshot.can_accept`` encapsulates the eligibility rule shared by
  the matcher and the acceptance guard.
- ``FareBreakdown`` is frozen: a booking's fare never changes after creation.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import (
    BOOKING_TRANSITIONS,
    ApprovalStatus,
    BookingEvent,
    BookingStatus,
    CancellationActor,
    PaymentStatus,
    RecipientRole,
    VehicleClass,
)
from .errors import InvalidStateTransitionError


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Place:
    point: GeoPoint
    address: str = ""


@dataclass(frozen=True)
class FareBreakdown:
    base_price: float
    per_km_rate: float
    total_distance: float
    distance_price: float
    service_fee: float
    total_amount: float
    currency: str
    platform_commission_percentage: float = 0.0


@dataclass(frozen=True)
class Settlement:
    platform_commission: float
    driver_earnings: float


@dataclass(frozen=True)
class PricingConfig:
    vehicle_class: VehicleClass
    base_price: float
    per_km_rate: float
    minimum_fare: float = 0.0
    service_fee_percentage: float = 0.0
    driver_commission_percentage: float = 0.0
    is_active: bool = True


@dataclass(frozen=True)
class Recipient:
    role: RecipientRole
    id: int


@dataclass
class PaymentInfo:
    payment_id: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    paid_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.payment_status == PaymentStatus.COMPLETED


@dataclass
class Timeline:
    requested_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    driver_arrived_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


@dataclass(frozen=True)
class Cancellation:
    actor: CancellationActor
    reason: str
    cancelled_at: datetime


@dataclass
class DistanceInfo:
    estimated: float = 0.0
    actual: Optional[float] = None


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class DriverSnapshot:
    """Read model of a driver's availability, as the matcher sees it."""

    driver_id: int
    vehicle_class: VehicleClass
    location: Optional[GeoPoint] = None
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    is_online: bool = False
    is_location_enabled: bool = False
    is_accepting_bookings: bool = True

    @property
    def is_approved(self) -> bool:
        return self.approval_status == ApprovalStatus.APPROVED

    def can_accept(self, vehicle_class: VehicleClass) -> bool:
        return (
            self.is_approved
            and self.is_online
            and self.is_location_enabled
            and self.is_accepting_bookings
            and self.location is not None
            and self.vehicle_class == vehicle_class
        )


@dataclass
class Booking:
    id: Optional[int] = None
    booking_number: str = ""
    requester_id: int = 0
    driver_id: Optional[int] = None
    status: BookingStatus = BookingStatus.REQUESTED
    vehicle_class: VehicleClass = VehicleClass.SEDAN
    pickup: Place = field(default_factory=lambda: Place(GeoPoint(0, 0)))
    dropoff: Place = field(default_factory=lambda: Place(GeoPoint(0, 0)))
    actual_dropoff: Optional[Place] = None
    distance: DistanceInfo = field(default_factory=DistanceInfo)
    fare: Optional[FareBreakdown] = None
    payment: PaymentInfo = field(default_factory=PaymentInfo)
    timeline: Timeline = field(default_factory=Timeline)
    request_expires_at: Optional[datetime] = None
    payment_expires_at: Optional[datetime] = None
    cancellation: Optional[Cancellation] = None
    driver_earnings: float = 0.0
    platform_commission: float = 0.0
    search_radius_km: float = 10.0
    notes: Optional[str] = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def next_status(self, event: BookingEvent) -> BookingStatus:
        """Return the status *event* leads to, or raise if it is not allowed."""
        target = BOOKING_TRANSITIONS.get((self.status, event))
        if target is None:
            raise InvalidStateTransitionError(self.status, event)
        return target

    def can(self, event: BookingEvent) -> bool:
        return (self.status, event) in BOOKING_TRANSITIONS

    def request_expired(self, now: datetime) -> bool:
        return self.request_expires_at is not None and now >= self.request_expires_at

    def payment_expired(self, now: datetime) -> bool:
        return self.payment_expires_at is not None and now >= self.payment_expires_at

    def recipients(self) -> list[Recipient]:
        """Requester plus the assigned driver, if any."""
        out = [Recipient(RecipientRole.REQUESTER, self.requester_id)]
        if self.driver_id is not None:
            out.append(Recipient(RecipientRole.DRIVER, self.driver_id))
        return out


_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_booking_number(now: datetime) -> str:
    """``TOW-<millis base36>-<5 random chars>``; uniqueness is enforced by the store."""
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"TOW-{_to_base36(millis)}-{suffix}"
