"""
Booking endpoints
=================

POST /api/v1/bookings                         -- request a tow (201)
POST /api/v1/bookings/search-drivers          -- ranked nearby drivers
GET  /api/v1/bookings/{booking_id}            -- booking detail
GET  /api/v1/bookings/by-number/{number}      -- lookup by booking number
POST /api/v1/bookings/{booking_id}/accept     -- driver accepts
POST /api/v1/bookings/{booking_id}/arrive     -- driver at pickup (paid bookings only)
POST /api/v1/bookings/{booking_id}/start      -- trip started
POST /api/v1/bookings/{booking_id}/complete   -- trip completed, settlement computed
POST /api/v1/bookings/{booking_id}/cancel         -- requester cancels
POST /api/v1/bookings/{booking_id}/driver-cancel  -- assigned driver cancels
POST /api/v1/bookings/{booking_id}/payment    -- requester starts payment

Booking errors are translated to HTTP by ``src.api.middleware``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_booking_machine
from src.api.middleware import limiter
from src.api.schemas import (
    BookingCreateRequest,
    BookingResponse,
    CompleteTripRequest,
    DriverActionRequest,
    DriverCancelRequest,
    DriverCandidateResponse,
    PaymentInitiateRequest,
    RequesterCancelRequest,
    SearchDriversRequest,
    StartTripRequest,
)
from src.services.bookings import BookingStateMachine

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Request a tow",
    description=(
        "Freezes the fare, starts the acceptance window and notifies "
        "eligible drivers within the search radius."
    ),
)
@limiter.limit("100/minute")
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    booking = await machine.create_booking(
        requester_id=body.requester_id,
        vehicle_class=body.vehicle_class,
        pickup=body.pickup.to_place(),
        dropoff=body.dropoff.to_place(),
        search_radius_km=body.search_radius_km,
        notes=body.notes,
    )
    return BookingResponse.from_booking(booking)


@router.post(
    "/search-drivers",
    response_model=list[DriverCandidateResponse],
    summary="Search nearby drivers",
)
@limiter.limit("100/minute")
async def search_drivers(
    request: Request,
    body: SearchDriversRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    candidates = await machine.find_drivers(
        body.pickup.to_place().point, body.vehicle_class, body.search_radius_km
    )
    return [DriverCandidateResponse.model_validate(c) for c in candidates]


@router.get(
    "/by-number/{booking_number}",
    response_model=BookingResponse,
    summary="Get a booking by its booking number",
)
@limiter.limit("100/minute")
async def get_booking_by_number(
    request: Request,
    booking_number: str,
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    return BookingResponse.from_booking(await machine.get_by_number(booking_number))


@router.get("/{booking_id}", response_model=BookingResponse, summary="Get a booking")
@limiter.limit("100/minute")
async def get_booking(
    request: Request,
    booking_id: int,
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    return BookingResponse.from_booking(await machine.get(booking_id))


# ── Driver actions ────────────────────────────────────────────────────


@router.post(
    "/{booking_id}/accept",
    response_model=BookingResponse,
    summary="Accept a booking",
    responses={409: {"description": "Another driver already accepted."}},
)
@limiter.limit("100/minute")
async def accept_booking(
    request: Request,
    booking_id: int,
    body: DriverActionRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    return BookingResponse.from_booking(await machine.accept(booking_id, body.driver_id))


@router.post(
    "/{booking_id}/arrive", response_model=BookingResponse, summary="Mark arrival at pickup"
)
@limiter.limit("100/minute")
async def mark_arrived(
    request: Request,
    booking_id: int,
    body: DriverActionRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    return BookingResponse.from_booking(
        await machine.mark_arrived(booking_id, body.driver_id)
    )


@router.post("/{booking_id}/start", response_model=BookingResponse, summary="Start the trip")
@limiter.limit("100/minute")
async def start_trip(
    request: Request,
    booking_id: int,
    body: StartTripRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    actual_dropoff = body.actual_dropoff.to_place() if body.actual_dropoff else None
    booking = await machine.start_trip(booking_id, body.driver_id, actual_dropoff)
    return BookingResponse.from_booking(booking)


@router.post(
    "/{booking_id}/complete", response_model=BookingResponse, summary="Complete the trip"
)
@limiter.limit("100/minute")
async def complete_trip(
    request: Request,
    booking_id: int,
    body: CompleteTripRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    booking = await machine.complete_trip(
        booking_id, body.driver_id, body.actual_distance_km
    )
    return BookingResponse.from_booking(booking)


@router.post(
    "/{booking_id}/driver-cancel",
    response_model=BookingResponse,
    summary="Cancel as the assigned driver",
)
@limiter.limit("100/minute")
async def driver_cancel(
    request: Request,
    booking_id: int,
    body: DriverCancelRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    booking = await machine.cancel_by_driver(booking_id, body.driver_id, body.reason)
    return BookingResponse.from_booking(booking)


# ── Requester actions ─────────────────────────────────────────────────


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    summary="Cancel as the requester",
    description="Allowed while the booking is REQUESTED or ACCEPTED.",
)
@limiter.limit("100/minute")
async def cancel_booking(
    request: Request,
    booking_id: int,
    body: RequesterCancelRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    booking = await machine.cancel_by_requester(booking_id, body.requester_id, body.reason)
    return BookingResponse.from_booking(booking)


@router.post(
    "/{booking_id}/payment",
    response_model=BookingResponse,
    summary="Initiate payment",
    responses={410: {"description": "Payment window has closed."}},
)
@limiter.limit("100/minute")
async def initiate_payment(
    request: Request,
    booking_id: int,
    body: PaymentInitiateRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    booking = await machine.initiate_payment(booking_id, body.requester_id)
    return BookingResponse.from_booking(booking)
