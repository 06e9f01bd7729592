"""
Payment gateway callback
========================

POST /api/v1/payments/callback -- provider notifies us a payment changed

The callback body is not trusted: the state machine re-reads the payment
status from the gateway before recording anything.
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_booking_machine
from src.api.middleware import limiter
from src.api.schemas import BookingResponse, PaymentCallbackRequest
from src.services.bookings import BookingStateMachine

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/callback", response_model=BookingResponse, summary="Payment callback")
@limiter.limit("100/minute")
async def payment_callback(
    request: Request,
    body: PaymentCallbackRequest,
    machine: BookingStateMachine = Depends(get_booking_machine),
):
    booking = await machine.get_by_number(body.booking_number)
    booking = await machine.confirm_payment(booking.id, body.payment_id)
    return BookingResponse.from_booking(booking)
