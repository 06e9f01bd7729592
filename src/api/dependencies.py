"""FastAPI dependency injection helpers."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.infrastructure.database import async_session_factory
from src.infrastructure.notifications import StoredNotificationGateway
from src.infrastructure.payments import HttpPaymentGateway
from src.infrastructure.redis_client import get_redis
from src.services.bookings import BookingStateMachine
from src.workers.expiry import ExpiryScheduler

_machine: BookingStateMachine | None = None


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def build_payment_gateway() -> Optional[HttpPaymentGateway]:
    """The HTTP gateway, or ``None`` when no provider URL is configured."""
    if not settings.payment_gateway_url:
        return None
    return HttpPaymentGateway(
        settings.payment_gateway_url,
        settings.payment_gateway_api_key,
        currency=settings.currency,
        timeout=settings.payment_gateway_timeout_seconds,
    )


def get_booking_machine() -> BookingStateMachine:
    """Process-wide state machine wired to the production collaborators."""
    global _machine
    if _machine is None:
        _machine = BookingStateMachine(
            async_session_factory,
            StoredNotificationGateway(async_session_factory),
            payments=build_payment_gateway(),
        )
    return _machine


async def get_expiry_scheduler() -> ExpiryScheduler:
    return ExpiryScheduler(get_booking_machine(), redis=await get_redis())
