"""
Shared test fixtures.

Each test gets its own file-backed SQLite database (via aiosqlite) so tests
run without Docker / PostgreSQL / Redis.  A file database (rather than
``:memory:``) gives every session its own connection, which is what makes
the conditional-UPDATE races in the concurrency tests real.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Optional, Sequence

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import Settings
from src.domain.entities import GeoPoint, Place, PricingConfig, Recipient
from src.domain.enums import (
    ApprovalStatus,
    NotificationKind,
    PaymentStatus,
    VehicleClass,
)
from src.infrastructure.database import Base
from src.infrastructure.repositories import DriverRepository, PricingConfigRepository
from src.services.bookings import BookingStateMachine

# Doha: Corniche -> Hamad International (~9 km)
PICKUP = Place(GeoPoint(25.2948, 51.5310), "Corniche, Doha")
DROPOFF = Place(GeoPoint(25.2609, 51.6138), "Hamad International Airport")
REQUESTER_ID = 501

SEDAN_PRICING = PricingConfig(
    vehicle_class=VehicleClass.SEDAN,
    base_price=50,
    per_km_rate=5,
    minimum_fare=0,
    service_fee_percentage=10,
    driver_commission_percentage=20,
)


class FixedClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current += timedelta(**delta)
        return self.current


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[NotificationKind, list[Recipient], dict[str, Any]]] = []

    async def notify(
        self,
        kind: NotificationKind,
        recipients: Sequence[Recipient],
        payload: dict[str, Any],
    ) -> None:
        if self.fail:
            raise RuntimeError("notification relay down")
        self.sent.append((kind, list(recipients), payload))

    def kinds(self) -> list[NotificationKind]:
        return [kind for kind, _, _ in self.sent]

    def recipients_of(self, kind: NotificationKind) -> list[Recipient]:
        return [r for k, recipients, _ in self.sent if k == kind for r in recipients]


class StubPaymentGateway:
    def __init__(self):
        self.initiated: list[tuple[str, float, str]] = []
        self.statuses: dict[str, PaymentStatus] = {}
        self.polls = 0

    async def initiate(self, booking_id: str, amount: float, payer_ref: str) -> str:
        self.initiated.append((booking_id, amount, payer_ref))
        ref = f"pay-{len(self.initiated)}"
        self.statuses[ref] = PaymentStatus.PENDING
        return ref

    async def get_status(self, payment_ref: str) -> PaymentStatus:
        self.polls += 1
        return self.statuses.get(payment_ref, PaymentStatus.PENDING)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables in a fresh database file, yield a session factory."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'towdispatch.db'}",
        echo=False,
        connect_args={"timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def config() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def payments() -> StubPaymentGateway:
    return StubPaymentGateway()


@pytest_asyncio.fixture
async def pricing(session_factory) -> PricingConfig:
    async with session_factory() as session:
        config = await PricingConfigRepository(session).upsert(SEDAN_PRICING)
        await session.commit()
    return config


@pytest.fixture
def machine(session_factory, notifier, payments, clock, config, pricing) -> BookingStateMachine:
    return BookingStateMachine(
        session_factory,
        notifier,
        payments=payments,
        clock=clock,
        config=config,
    )


@pytest.fixture
def make_driver(session_factory, clock):
    """Factory: insert a driver, by default eligible and ~1 km from PICKUP."""
    counter = {"n": 0}

    async def _make(
        *,
        lat: float = PICKUP.point.latitude + 0.009,
        lng: float = PICKUP.point.longitude,
        vehicle_class: VehicleClass = VehicleClass.SEDAN,
        approval_status: ApprovalStatus = ApprovalStatus.APPROVED,
        is_online: bool = True,
        is_accepting_bookings: bool = True,
        located: bool = True,
    ):
        counter["n"] += 1
        async with session_factory() as session:
            driver = await DriverRepository(session).create(
                name=f"Driver {counter['n']}",
                vehicle_class=vehicle_class,
                approval_status=approval_status,
                is_online=is_online,
                is_accepting_bookings=is_accepting_bookings,
                location=GeoPoint(lat, lng) if located else None,
                now=clock.now(),
            )
            await session.commit()
        return driver

    return _make


@pytest.fixture
def make_booking(machine):
    async def _make(**overrides):
        kwargs = dict(
            requester_id=REQUESTER_ID,
            vehicle_class=VehicleClass.SEDAN,
            pickup=PICKUP,
            dropoff=DROPOFF,
        )
        kwargs.update(overrides)
        return await machine.create_booking(**kwargs)

    return _make


@pytest.fixture
def pay(machine, payments):
    """Run the payment sub-track to completion for an accepted booking."""

    async def _pay(booking_id: int):
        booking = await machine.initiate_payment(booking_id, REQUESTER_ID)
        payments.statuses[booking.payment.payment_id] = PaymentStatus.COMPLETED
        return await machine.confirm_payment(booking_id, booking.payment.payment_id)

    return _pay
