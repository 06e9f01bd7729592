"""
FastAPI application factory.

* Registers routes for bookings, drivers, payments and admin.
* Starts / stops the background expiry worker via lifespan events.
* Applies rate-limiting middleware and maps booking errors to HTTP.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.dependencies import get_booking_machine
from src.api.middleware import limiter, register_error_handlers
from src.api.routes import admin, bookings, drivers, payments
from src.infrastructure.redis_client import close_redis, get_redis
from src.workers import expiry as _expiry

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry worker on startup; stop on shutdown."""
    machine = get_booking_machine()
    await _expiry.start_expiry_loop(machine, await get_redis())
    yield
    await _expiry.stop_expiry_loop()
    if machine.payments is not None:
        await machine.payments.aclose()
    await close_redis()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Tow Dispatch API",
        description=(
            "Dispatches on-demand towing jobs: matches nearby drivers, "
            "freezes fares, enforces acceptance and payment deadlines, "
            "and tracks each booking through to completion."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors -> HTTP
    register_error_handlers(app)

    # Routers
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(payments.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
