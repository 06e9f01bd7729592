"""
Admin / observability endpoints
===============================

GET  /api/v1/admin/open-bookings -- non-terminal bookings, oldest first
POST /api/v1/admin/sweep         -- run one expiry sweep now
GET  /api/v1/admin/health        -- simple health check
"""

from fastapi import APIRouter, Depends, Query, Request

from src.api.dependencies import get_booking_machine, get_expiry_scheduler
from src.api.middleware import limiter
from src.api.schemas import BookingResponse, HealthResponse, SweepResponse
from src.services.bookings import BookingStateMachine
from src.workers.expiry import ExpiryScheduler

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/open-bookings",
    response_model=list[BookingResponse],
    summary="List bookings that have not reached a terminal state",
)
@limiter.limit("100/minute")
async def get_open_bookings(
    request: Request,
    limit: int = Query(100, ge=1, le=500),
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    bookings = await machine.list_open(limit)
    return [BookingResponse.from_booking(b) for b in bookings]


@router.post("/sweep", response_model=SweepResponse, summary="Run one expiry sweep")
@limiter.limit("10/minute")
async def run_sweep(
    request: Request,
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    report = await scheduler.run_sweep()
    return SweepResponse.model_validate(report)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
