"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.domain.entities import Booking, DriverSnapshot, GeoPoint, Place
from src.domain.enums import VehicleClass


# ── Requests ──────────────────────────────────────────────────────────


class Location(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: str = Field("", max_length=255)

    def to_place(self) -> Place:
        return Place(GeoPoint(self.lat, self.lng), self.address)


class BookingCreateRequest(BaseModel):
    requester_id: int
    vehicle_class: VehicleClass
    pickup: Location
    dropoff: Location
    search_radius_km: Optional[float] = Field(
        None,
        gt=0,
        description="Dispatch radius; defaults to the configured radius.",
    )
    notes: Optional[str] = Field(None, max_length=500)


class SearchDriversRequest(BaseModel):
    pickup: Location
    vehicle_class: VehicleClass
    search_radius_km: Optional[float] = Field(None, gt=0)


class DriverActionRequest(BaseModel):
    driver_id: int


class StartTripRequest(DriverActionRequest):
    actual_dropoff: Optional[Location] = None


class CompleteTripRequest(DriverActionRequest):
    actual_distance_km: Optional[float] = Field(None, ge=0)


class RequesterCancelRequest(BaseModel):
    requester_id: int
    reason: Optional[str] = Field(None, max_length=255)


class DriverCancelRequest(DriverActionRequest):
    reason: Optional[str] = Field(None, max_length=255)


class PaymentInitiateRequest(BaseModel):
    requester_id: int


class PaymentCallbackRequest(BaseModel):
    booking_number: str
    payment_id: str


class DriverLocationRequest(Location):
    pass


class DriverAvailabilityRequest(BaseModel):
    is_online: Optional[bool] = None
    is_accepting_bookings: Optional[bool] = None


# ── Responses ─────────────────────────────────────────────────────────


class LocationResponse(BaseModel):
    lat: float
    lng: float
    address: str = ""

    @classmethod
    def from_place(cls, place: Optional[Place]) -> Optional["LocationResponse"]:
        if place is None:
            return None
        return cls(lat=place.point.latitude, lng=place.point.longitude, address=place.address)


class FareResponse(BaseModel):
    base_price: float
    per_km_rate: float
    total_distance: float
    distance_price: float
    service_fee: float
    total_amount: float
    currency: str

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    payment_id: Optional[str] = None
    payment_status: str
    paid_at: Optional[datetime] = None
    payment_expires_at: Optional[datetime] = None


class TimelineResponse(BaseModel):
    requested_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    driver_arrived_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CancellationResponse(BaseModel):
    cancelled_by: str
    reason: str
    cancelled_at: datetime


class BookingResponse(BaseModel):
    id: int
    booking_number: str
    requester_id: int
    driver_id: Optional[int] = None
    status: str
    vehicle_class: str
    pickup: LocationResponse
    dropoff: LocationResponse
    actual_dropoff: Optional[LocationResponse] = None
    estimated_distance_km: float
    actual_distance_km: Optional[float] = None
    fare: FareResponse
    payment: PaymentResponse
    timeline: TimelineResponse
    request_expires_at: Optional[datetime] = None
    cancellation: Optional[CancellationResponse] = None
    driver_earnings: float = 0.0
    platform_commission: float = 0.0
    search_radius_km: float
    notes: Optional[str] = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        cancellation = None
        if booking.cancellation is not None:
            cancellation = CancellationResponse(
                cancelled_by=booking.cancellation.actor.value,
                reason=booking.cancellation.reason,
                cancelled_at=booking.cancellation.cancelled_at,
            )
        return cls(
            id=booking.id,
            booking_number=booking.booking_number,
            requester_id=booking.requester_id,
            driver_id=booking.driver_id,
            status=booking.status.value,
            vehicle_class=booking.vehicle_class.value,
            pickup=LocationResponse.from_place(booking.pickup),
            dropoff=LocationResponse.from_place(booking.dropoff),
            actual_dropoff=LocationResponse.from_place(booking.actual_dropoff),
            estimated_distance_km=booking.distance.estimated,
            actual_distance_km=booking.distance.actual,
            fare=FareResponse.model_validate(booking.fare),
            payment=PaymentResponse(
                payment_id=booking.payment.payment_id,
                payment_status=booking.payment.payment_status.value,
                paid_at=booking.payment.paid_at,
                payment_expires_at=booking.payment_expires_at,
            ),
            timeline=TimelineResponse.model_validate(booking.timeline),
            request_expires_at=booking.request_expires_at,
            cancellation=cancellation,
            driver_earnings=booking.driver_earnings,
            platform_commission=booking.platform_commission,
            search_radius_km=booking.search_radius_km,
            notes=booking.notes,
        )


class DriverCandidateResponse(BaseModel):
    driver_id: int
    distance_km: float

    model_config = {"from_attributes": True}


class DriverResponse(BaseModel):
    driver_id: int
    vehicle_class: str
    approval_status: str
    is_online: bool
    is_location_enabled: bool
    is_accepting_bookings: bool
    location: Optional[LocationResponse] = None

    @classmethod
    def from_snapshot(cls, driver: DriverSnapshot) -> "DriverResponse":
        location = None
        if driver.location is not None:
            location = LocationResponse(
                lat=driver.location.latitude, lng=driver.location.longitude
            )
        return cls(
            driver_id=driver.driver_id,
            vehicle_class=driver.vehicle_class.value,
            approval_status=driver.approval_status.value,
            is_online=driver.is_online,
            is_location_enabled=driver.is_location_enabled,
            is_accepting_bookings=driver.is_accepting_bookings,
            location=location,
        )


class SweepResponse(BaseModel):
    expired_requests: int
    expired_payments: int
    skipped: int
    failed: int
    lock_held: bool = False

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    detail: str
