"""Repository, notification store and column-type tests against SQLite."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from src.domain.entities import GeoPoint, PricingConfig, Recipient
from src.domain.enums import (
    ApprovalStatus,
    NotificationKind,
    RecipientRole,
    VehicleClass,
)
from src.domain.errors import NotFoundError
from src.domain.matching import driver_h3_cell
from src.infrastructure.database import UTCDateTime
from src.infrastructure.models import DriverModel, NotificationModel
from src.infrastructure.notifications import StoredNotificationGateway, render
from src.infrastructure.repositories import (
    BookingRepository,
    DriverRepository,
    PricingConfigRepository,
)
from tests.conftest import PICKUP, SEDAN_PRICING


class TestDriverRepository:
    @pytest.mark.asyncio
    async def test_list_eligible_applies_flags(self, session_factory, make_driver):
        ok = await make_driver()
        await make_driver(approval_status=ApprovalStatus.REJECTED)
        await make_driver(is_accepting_bookings=False)
        await make_driver(located=False)

        async with session_factory() as session:
            drivers = await DriverRepository(session).list_eligible(VehicleClass.SEDAN)
        assert [d.driver_id for d in drivers] == [ok.driver_id]

    @pytest.mark.asyncio
    async def test_spatial_prefilter_drops_far_drivers(self, session_factory, make_driver):
        near = await make_driver()
        await make_driver(lat=PICKUP.point.latitude + 1.5)  # ~170 km

        async with session_factory() as session:
            drivers = await DriverRepository(session).list_eligible(
                VehicleClass.SEDAN, near=PICKUP.point, radius_km=10
            )
        assert [d.driver_id for d in drivers] == [near.driver_id]

    @pytest.mark.asyncio
    async def test_update_location_moves_h3_cell(self, session_factory, make_driver, clock):
        driver = await make_driver(located=False)
        assert not driver.is_location_enabled

        target = GeoPoint(25.3200, 51.4400)
        async with session_factory() as session:
            repo = DriverRepository(session, h3_resolution=6)
            moved = await repo.update_location(driver.driver_id, target, "Education City", clock.now())
            await session.commit()
            row = await session.get(DriverModel, driver.driver_id)

        assert moved.location == target
        assert moved.is_location_enabled
        assert row.h3_cell == driver_h3_cell(target, 6)
        assert row.location_updated_at == clock.now()

    @pytest.mark.asyncio
    async def test_set_availability(self, session_factory, make_driver):
        driver = await make_driver()
        async with session_factory() as session:
            updated = await DriverRepository(session).set_availability(
                driver.driver_id, is_online=False
            )
            await session.commit()
        assert not updated.is_online
        assert updated.is_accepting_bookings

    @pytest.mark.asyncio
    async def test_unknown_driver(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await DriverRepository(session).get_driver(77)


class TestPricingConfigRepository:
    @pytest.mark.asyncio
    async def test_upsert_replaces_existing_row(self, session_factory, pricing):
        async with session_factory() as session:
            repo = PricingConfigRepository(session)
            await repo.upsert(PricingConfig(VehicleClass.SEDAN, base_price=70, per_km_rate=6))
            await session.commit()
            configs = await repo.list_all()
        assert len(configs) == 1
        assert configs[0].base_price == 70

    @pytest.mark.asyncio
    async def test_get_active(self, session_factory, pricing):
        async with session_factory() as session:
            repo = PricingConfigRepository(session)
            assert await repo.get_active(VehicleClass.SEDAN) == SEDAN_PRICING
            assert await repo.get_active(VehicleClass.TRUCK) is None


class TestBookingRepository:
    @pytest.mark.asyncio
    async def test_due_request_expiries(self, session_factory, make_booking, clock):
        first = await make_booking()
        clock.advance(seconds=10)
        second = await make_booking()

        async with session_factory() as session:
            repo = BookingRepository(session)
            assert await repo.due_request_expiries(clock.now()) == []
            due = await repo.due_request_expiries(first.request_expires_at)
            assert due == [first.id]
            due = await repo.due_request_expiries(second.request_expires_at)
            assert due == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_booking_number_is_unique(self, session_factory, make_booking):
        booking = await make_booking()
        async with session_factory() as session:
            found = await BookingRepository(session).get_by_number(booking.booking_number)
        assert found.id == booking.id


class TestStoredNotifications:
    @pytest.mark.asyncio
    async def test_one_row_per_recipient(self, session_factory, make_booking):
        booking = await make_booking()
        gateway = StoredNotificationGateway(session_factory)
        await gateway.notify(
            NotificationKind.BOOKING_CANCELLED,
            [Recipient(RecipientRole.REQUESTER, 1), Recipient(RecipientRole.DRIVER, 2)],
            {"booking_id": booking.id, "booking_number": booking.booking_number, "reason": "test"},
        )
        async with session_factory() as session:
            result = await session.execute(select(NotificationModel).order_by(NotificationModel.id))
            rows = result.scalars().all()

        assert [(r.recipient_role, r.recipient_id) for r in rows] == [
            (RecipientRole.REQUESTER, 1),
            (RecipientRole.DRIVER, 2),
        ]
        assert all(r.booking_id == booking.id for r in rows)
        assert rows[0].message == f"Booking {booking.booking_number} has been cancelled. Reason: test"
        assert not rows[0].is_read

    def test_render_tolerates_missing_fields(self):
        title, message = render(NotificationKind.TRIP_COMPLETED, RecipientRole.DRIVER, {})
        assert title == "Trip Completed"
        assert message == "Trip completed. Amount earned:  "


class TestUTCDateTime:
    def test_bind_requires_aware_datetime(self):
        with pytest.raises(ValueError):
            UTCDateTime().process_bind_param(datetime(2026, 1, 1), None)

    def test_round_trip_is_utc(self):
        column = UTCDateTime()
        aware = datetime(2026, 1, 1, 15, 0, tzinfo=timezone.utc)
        stored = column.process_bind_param(aware, None)
        assert stored.tzinfo is None
        assert column.process_result_value(stored, None) == aware
        assert column.process_result_value("2026-01-01 15:00:00", None) == aware
