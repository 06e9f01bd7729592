"""
Driver availability endpoints
=============================

PUT /api/v1/drivers/{driver_id}/location      -- report current position
PUT /api/v1/drivers/{driver_id}/availability  -- go online/offline, pause bookings
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_booking_machine, get_db
from src.api.middleware import limiter
from src.api.schemas import (
    DriverAvailabilityRequest,
    DriverLocationRequest,
    DriverResponse,
)
from src.domain.entities import GeoPoint
from src.infrastructure.repositories import DriverRepository
from src.services.bookings import BookingStateMachine

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.put(
    "/{driver_id}/location",
    response_model=DriverResponse,
    summary="Update driver location",
)
@limiter.limit("100/minute")
async def update_location(
    request: Request,
    driver_id: int,
    body: DriverLocationRequest,
    db: AsyncSession = Depends(get_db),
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    repo = DriverRepository(db, machine.config.h3_resolution)
    driver = await repo.update_location(
        driver_id, GeoPoint(body.lat, body.lng), body.address or None, machine.clock.now()
    )
    return DriverResponse.from_snapshot(driver)


@router.put(
    "/{driver_id}/availability",
    response_model=DriverResponse,
    summary="Update driver availability",
)
@limiter.limit("100/minute")
async def update_availability(
    request: Request,
    driver_id: int,
    body: DriverAvailabilityRequest,
    db: AsyncSession = Depends(get_db),
):
    driver = await DriverRepository(db).set_availability(
        driver_id,
        is_online=body.is_online,
        is_accepting_bookings=body.is_accepting_bookings,
    )
    return DriverResponse.from_snapshot(driver)
