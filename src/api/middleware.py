"""
Rate limiting and domain-error translation.

Every booking error carries a stable ``code``; the HTTP body is always
``{"error": <code>, "detail": <message>, ...context}``.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from src.domain.errors import (
    AlreadyAssignedError,
    BookingError,
    ConfigurationError,
    DeadlineExceededError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from src.infrastructure.payments import PaymentGatewayError

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

# Most specific first: DeadlineExceededError is an InvalidStateTransitionError.
_STATUS_CODES: list[tuple[type[BookingError], int]] = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (DeadlineExceededError, 410),
    (AlreadyAssignedError, 409),
    (InvalidStateTransitionError, 409),
    (ConfigurationError, 503),
]


def status_for(exc: BookingError) -> int:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 400


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "detail": str(exc), **exc.context()},
    )


async def payment_gateway_error_handler(
    request: Request, exc: PaymentGatewayError
) -> JSONResponse:
    logger.error("Payment gateway error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"error": "PAYMENT_GATEWAY_ERROR", "detail": str(exc)},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(PaymentGatewayError, payment_gateway_error_handler)
