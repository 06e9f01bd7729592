"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Repositories hand back domain entities;
ORM rows never leave this module.

Bookings are only ever mutated through ``BookingRepository.compare_and_set``:
a single ``UPDATE ... WHERE id = :id AND status = :expected`` that reports
whether it matched.  That conditional write is what serialises competing
transitions on one booking.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BookingModel, DriverModel, PricingConfigModel
from src.config import settings
from src.domain.entities import (
    Booking,
    Cancellation,
    DistanceInfo,
    DriverSnapshot,
    FareBreakdown,
    GeoPoint,
    PaymentInfo,
    Place,
    PricingConfig,
    Timeline,
)
from src.domain.enums import (
    ApprovalStatus,
    BookingStatus,
    PaymentStatus,
    VehicleClass,
)
from src.domain.errors import NotFoundError
from src.domain.matching import driver_h3_cell, search_cells


# ── Row <-> entity mapping ────────────────────────────────────────────


def booking_from_row(row: BookingModel) -> Booking:
    actual_dropoff = None
    if row.actual_dropoff_lat is not None and row.actual_dropoff_lng is not None:
        actual_dropoff = Place(
            GeoPoint(row.actual_dropoff_lat, row.actual_dropoff_lng),
            row.actual_dropoff_address or "",
        )
    cancellation = None
    if row.cancelled_by is not None:
        cancellation = Cancellation(
            actor=row.cancelled_by,
            reason=row.cancellation_reason or "",
            cancelled_at=row.cancelled_at,
        )
    return Booking(
        id=row.id,
        booking_number=row.booking_number,
        requester_id=row.requester_id,
        driver_id=row.driver_id,
        status=BookingStatus(row.status),
        vehicle_class=VehicleClass(row.vehicle_class),
        pickup=Place(GeoPoint(row.pickup_lat, row.pickup_lng), row.pickup_address),
        dropoff=Place(GeoPoint(row.dropoff_lat, row.dropoff_lng), row.dropoff_address),
        actual_dropoff=actual_dropoff,
        distance=DistanceInfo(row.distance_estimated, row.distance_actual),
        fare=FareBreakdown(
            base_price=row.fare_base_price,
            per_km_rate=row.fare_per_km_rate,
            total_distance=row.fare_total_distance,
            distance_price=row.fare_distance_price,
            service_fee=row.fare_service_fee,
            total_amount=row.fare_total_amount,
            currency=row.fare_currency,
            platform_commission_percentage=row.fare_commission_percentage,
        ),
        payment=PaymentInfo(
            payment_id=row.payment_id,
            payment_status=PaymentStatus(row.payment_status),
            paid_at=row.paid_at,
        ),
        timeline=Timeline(
            requested_at=row.requested_at,
            accepted_at=row.accepted_at,
            driver_arrived_at=row.driver_arrived_at,
            started_at=row.started_at,
            completed_at=row.completed_at,
            cancelled_at=row.cancelled_at,
        ),
        request_expires_at=row.request_expires_at,
        payment_expires_at=row.payment_expires_at,
        cancellation=cancellation,
        driver_earnings=row.driver_earnings,
        platform_commission=row.platform_commission,
        search_radius_km=row.search_radius_km,
        notes=row.notes,
        version=row.version,
    )


def booking_to_row(booking: Booking) -> BookingModel:
    fare = booking.fare
    return BookingModel(
        booking_number=booking.booking_number,
        requester_id=booking.requester_id,
        status=booking.status,
        vehicle_class=booking.vehicle_class,
        pickup_lat=booking.pickup.point.latitude,
        pickup_lng=booking.pickup.point.longitude,
        pickup_address=booking.pickup.address,
        dropoff_lat=booking.dropoff.point.latitude,
        dropoff_lng=booking.dropoff.point.longitude,
        dropoff_address=booking.dropoff.address,
        distance_estimated=booking.distance.estimated,
        fare_base_price=fare.base_price,
        fare_per_km_rate=fare.per_km_rate,
        fare_total_distance=fare.total_distance,
        fare_distance_price=fare.distance_price,
        fare_service_fee=fare.service_fee,
        fare_total_amount=fare.total_amount,
        fare_currency=fare.currency,
        fare_commission_percentage=fare.platform_commission_percentage,
        payment_status=booking.payment.payment_status,
        requested_at=booking.timeline.requested_at,
        request_expires_at=booking.request_expires_at,
        search_radius_km=booking.search_radius_km,
        notes=booking.notes,
        version=1,
    )


def driver_from_row(row: DriverModel) -> DriverSnapshot:
    location = None
    if row.current_lat is not None and row.current_lng is not None:
        location = GeoPoint(row.current_lat, row.current_lng)
    return DriverSnapshot(
        driver_id=row.id,
        vehicle_class=VehicleClass(row.vehicle_class),
        location=location,
        approval_status=ApprovalStatus(row.approval_status),
        is_online=row.is_online,
        is_location_enabled=row.is_location_enabled,
        is_accepting_bookings=row.is_accepting_bookings,
    )


def pricing_from_row(row: PricingConfigModel) -> PricingConfig:
    return PricingConfig(
        vehicle_class=VehicleClass(row.vehicle_class),
        base_price=row.base_price,
        per_km_rate=row.per_km_rate,
        minimum_fare=row.minimum_fare,
        service_fee_percentage=row.service_fee_percentage,
        driver_commission_percentage=row.driver_commission_percentage,
        is_active=row.is_active,
    )


# ── Repositories ──────────────────────────────────────────────────────


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: Booking) -> Booking:
        row = booking_to_row(booking)
        self.session.add(row)
        await self.session.flush()
        return booking_from_row(row)

    async def get_by_id(self, booking_id: int) -> Optional[Booking]:
        row = await self.session.get(
            BookingModel, booking_id, populate_existing=True
        )
        return booking_from_row(row) if row else None

    async def get_by_number(self, booking_number: str) -> Optional[Booking]:
        result = await self.session.execute(
            select(BookingModel).where(BookingModel.booking_number == booking_number)
        )
        row = result.scalar_one_or_none()
        return booking_from_row(row) if row else None

    async def compare_and_set(
        self,
        booking_id: int,
        expected_status: BookingStatus,
        values: dict[str, Any],
        *,
        expected_version: Optional[int] = None,
        unassigned: bool = False,
        payment_incomplete: bool = False,
        request_due_at: Optional[datetime] = None,
        payment_due_at: Optional[datetime] = None,
    ) -> bool:
        """Apply *values* only if the row still has *expected_status*.

        The keyword guards tighten the condition inside the same statement.
        Returns ``True`` when exactly this call changed the row.
        """
        criteria = [
            BookingModel.id == booking_id,
            BookingModel.status == expected_status,
        ]
        if expected_version is not None:
            criteria.append(BookingModel.version == expected_version)
        if unassigned:
            criteria.append(BookingModel.driver_id.is_(None))
        if payment_incomplete:
            criteria.append(BookingModel.payment_status != PaymentStatus.COMPLETED)
        if request_due_at is not None:
            criteria.append(BookingModel.request_expires_at <= request_due_at)
        if payment_due_at is not None:
            criteria.append(BookingModel.payment_expires_at <= payment_due_at)

        stmt = (
            update(BookingModel)
            .where(*criteria)
            .values(version=BookingModel.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def due_request_expiries(self, now: datetime, limit: int = 500) -> list[int]:
        result = await self.session.execute(
            select(BookingModel.id)
            .where(
                BookingModel.status == BookingStatus.REQUESTED,
                BookingModel.request_expires_at <= now,
            )
            .order_by(BookingModel.request_expires_at, BookingModel.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def due_payment_expiries(self, now: datetime, limit: int = 500) -> list[int]:
        result = await self.session.execute(
            select(BookingModel.id)
            .where(
                BookingModel.status == BookingStatus.ACCEPTED,
                BookingModel.payment_status != PaymentStatus.COMPLETED,
                BookingModel.payment_expires_at <= now,
            )
            .order_by(BookingModel.payment_expires_at, BookingModel.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_open(self, limit: int = 100) -> list[Booking]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.status.in_(
                    [
                        BookingStatus.REQUESTED,
                        BookingStatus.ACCEPTED,
                        BookingStatus.DRIVER_ARRIVED,
                        BookingStatus.IN_PROGRESS,
                    ]
                )
            )
            .order_by(BookingModel.requested_at)
            .limit(limit)
        )
        return [booking_from_row(row) for row in result.scalars().all()]


class DriverRepository:
    """SQL-backed driver registry."""

    def __init__(self, session: AsyncSession, h3_resolution: int | None = None):
        self.session = session
        self.h3_resolution = h3_resolution or settings.h3_resolution

    async def create(
        self,
        *,
        name: str,
        vehicle_class: VehicleClass,
        approval_status: ApprovalStatus = ApprovalStatus.PENDING,
        is_online: bool = False,
        is_accepting_bookings: bool = True,
        location: Optional[GeoPoint] = None,
        address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DriverSnapshot:
        row = DriverModel(
            name=name,
            vehicle_class=vehicle_class,
            approval_status=approval_status,
            is_online=is_online,
            is_accepting_bookings=is_accepting_bookings,
            is_location_enabled=False,
        )
        if location is not None:
            self._place(row, location, address, now)
        self.session.add(row)
        await self.session.flush()
        return driver_from_row(row)

    async def list_eligible(
        self,
        vehicle_class: VehicleClass,
        near: Optional[GeoPoint] = None,
        radius_km: Optional[float] = None,
    ) -> list[DriverSnapshot]:
        query = select(DriverModel).where(
            DriverModel.vehicle_class == vehicle_class,
            DriverModel.approval_status == ApprovalStatus.APPROVED,
            DriverModel.is_online.is_(True),
            DriverModel.is_location_enabled.is_(True),
            DriverModel.is_accepting_bookings.is_(True),
        )
        if near is not None and radius_km is not None:
            cells = search_cells(near, radius_km, self.h3_resolution)
            query = query.where(DriverModel.h3_cell.in_(cells))
        result = await self.session.execute(query.order_by(DriverModel.id))
        return [driver_from_row(row) for row in result.scalars().all()]

    async def get_driver(self, driver_id: int) -> DriverSnapshot:
        row = await self._get_row(driver_id)
        return driver_from_row(row)

    async def update_location(
        self,
        driver_id: int,
        location: GeoPoint,
        address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DriverSnapshot:
        row = await self._get_row(driver_id)
        self._place(row, location, address, now)
        await self.session.flush()
        return driver_from_row(row)

    async def set_availability(
        self,
        driver_id: int,
        *,
        is_online: Optional[bool] = None,
        is_accepting_bookings: Optional[bool] = None,
    ) -> DriverSnapshot:
        row = await self._get_row(driver_id)
        if is_online is not None:
            row.is_online = is_online
        if is_accepting_bookings is not None:
            row.is_accepting_bookings = is_accepting_bookings
        await self.session.flush()
        return driver_from_row(row)

    async def _get_row(self, driver_id: int) -> DriverModel:
        row = await self.session.get(DriverModel, driver_id, populate_existing=True)
        if row is None:
            raise NotFoundError("Driver", driver_id)
        return row

    def _place(
        self,
        row: DriverModel,
        location: GeoPoint,
        address: Optional[str],
        now: Optional[datetime],
    ) -> None:
        row.current_lat = location.latitude
        row.current_lng = location.longitude
        row.current_address = address
        row.h3_cell = driver_h3_cell(location, self.h3_resolution)
        row.is_location_enabled = True
        row.location_updated_at = now


class PricingConfigRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active(self, vehicle_class: VehicleClass) -> Optional[PricingConfig]:
        result = await self.session.execute(
            select(PricingConfigModel).where(
                PricingConfigModel.vehicle_class == vehicle_class,
                PricingConfigModel.is_active.is_(True),
            )
        )
        row = result.scalar_one_or_none()
        return pricing_from_row(row) if row else None

    async def list_all(self) -> list[PricingConfig]:
        result = await self.session.execute(
            select(PricingConfigModel).order_by(PricingConfigModel.id)
        )
        return [pricing_from_row(row) for row in result.scalars().all()]

    async def upsert(self, config: PricingConfig) -> PricingConfig:
        result = await self.session.execute(
            select(PricingConfigModel).where(
                PricingConfigModel.vehicle_class == config.vehicle_class
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = PricingConfigModel(vehicle_class=config.vehicle_class)
            self.session.add(row)
        row.base_price = config.base_price
        row.per_km_rate = config.per_km_rate
        row.minimum_fare = config.minimum_fare
        row.service_fee_percentage = config.service_fee_percentage
        row.driver_commission_percentage = config.driver_commission_percentage
        row.is_active = config.is_active
        await self.session.flush()
        return pricing_from_row(row)
