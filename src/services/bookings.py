"""
Booking Lifecycle State Machine
===============================

    REQUESTED -> ACCEPTED -> DRIVER_ARRIVED -> IN_PROGRESS -> COMPLETED
        |            |
        |            +--> CANCELLED_BY_USER    (requester, or payment timeout)
        |            +--> CANCELLED_BY_DRIVER  (driver, before arrival)
        +--> CANCELLED_BY_USER                 (requester)
        +--> CANCELLED_BY_DRIVER               (nobody accepted in time)

Payment is a sub-track of ACCEPTED: ``payment.payment_status`` must be
``completed`` before the driver can mark arrival.

Concurrency safety
------------------
* Every mutation is one conditional ``UPDATE`` guarded by the status (and
  version) that was read, inside its own short session.  No read-modify-
  write ever happens without that guard.
* Acceptance additionally requires ``driver_id IS NULL`` so that exactly one
  of many racing drivers wins; the others get ``AlreadyAssignedError``.
* Expiry writes are guarded by the deadline itself, so a sweep racing a
  user action (or another sweep) simply matches zero rows.

Notifications go out after commit and never fail a transition.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings, settings as default_settings
from src.domain.distance import distance_km, round_km
from src.domain.entities import (
    Booking,
    DistanceInfo,
    GeoPoint,
    PaymentInfo,
    Place,
    Recipient,
    Timeline,
    generate_booking_number,
)
from src.domain.enums import (
    BookingEvent,
    BookingStatus,
    CancellationActor,
    NotificationKind,
    PaymentStatus,
    RecipientRole,
    VehicleClass,
)
from src.domain.errors import (
    AlreadyAssignedError,
    ConfigurationError,
    DeadlineExceededError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from src.domain.matching import DriverCandidate, DriverMatcher, resolve_search_radius
from src.domain.ports import (
    Clock,
    NotificationGateway,
    PaymentGateway,
    RouteDistanceProvider,
    SystemClock,
)
from src.domain.pricing import PricingEngine
from src.infrastructure.repositories import (
    BookingRepository,
    DriverRepository,
    PricingConfigRepository,
)

logger = logging.getLogger(__name__)

REQUEST_EXPIRED_REASON = "No driver accepted in time"
PAYMENT_TIMEOUT_REASON = "Payment timeout: payment not completed in time"

_CAS_ATTEMPTS = 3
_NUMBER_ATTEMPTS = 3
_MAX_NOTES = 500

Prepare = Callable[[Booking, datetime], dict[str, Any]]


class BookingStateMachine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifications: NotificationGateway,
        *,
        payments: Optional[PaymentGateway] = None,
        clock: Optional[Clock] = None,
        matcher: Optional[DriverMatcher] = None,
        route_distance: Optional[RouteDistanceProvider] = None,
        config: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.notifications = notifications
        self.payments = payments
        self.clock = clock or SystemClock()
        self.matcher = matcher or DriverMatcher()
        self.route_distance = route_distance
        self.config = config or default_settings
        self.pricing = PricingEngine(self.config.currency)
        self.request_window = timedelta(seconds=self.config.booking_request_timeout_seconds)
        self.payment_window = timedelta(seconds=self.config.payment_timeout_seconds)

    # ── Queries ───────────────────────────────────────────────────────

    async def get(self, booking_id: int) -> Booking:
        async with self.session_factory() as session:
            return await _load(BookingRepository(session), booking_id)

    async def get_by_number(self, booking_number: str) -> Booking:
        async with self.session_factory() as session:
            booking = await BookingRepository(session).get_by_number(booking_number)
        if booking is None:
            raise NotFoundError("Booking", booking_number)
        return booking

    async def list_open(self, limit: int = 100) -> list[Booking]:
        async with self.session_factory() as session:
            return await BookingRepository(session).list_open(limit)

    def resolve_radius(self, requested: Optional[float]) -> float:
        return resolve_search_radius(
            requested,
            default_km=self.config.default_search_radius_km,
            min_km=self.config.min_search_radius_km,
            max_km=self.config.max_search_radius_km,
        )

    async def find_drivers(
        self,
        pickup: GeoPoint,
        vehicle_class: VehicleClass | str,
        search_radius_km: Optional[float] = None,
    ) -> list[DriverCandidate]:
        vehicle_class = _vehicle_class(vehicle_class)
        radius = self.resolve_radius(search_radius_km)
        async with self.session_factory() as session:
            registry = DriverRepository(session, self.config.h3_resolution)
            return await self.matcher.find_candidates(pickup, vehicle_class, radius, registry)

    # ── Creation ──────────────────────────────────────────────────────

    async def create_booking(
        self,
        *,
        requester_id: int,
        vehicle_class: VehicleClass | str,
        pickup: Place,
        dropoff: Place,
        search_radius_km: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        vehicle_class = _vehicle_class(vehicle_class)
        if notes is not None and len(notes) > _MAX_NOTES:
            raise ValidationError(f"Notes must be at most {_MAX_NOTES} characters")
        radius = self.resolve_radius(search_radius_km)
        estimated = await self._estimate_distance(pickup.point, dropoff.point)
        now = self.clock.now()

        booking = None
        for attempt in range(_NUMBER_ATTEMPTS):
            async with self.session_factory() as session:
                config = await PricingConfigRepository(session).get_active(vehicle_class)
                if config is None:
                    raise ConfigurationError(
                        f"No active pricing configuration for vehicle class {vehicle_class.value}"
                    )
                draft = Booking(
                    booking_number=generate_booking_number(now),
                    requester_id=requester_id,
                    status=BookingStatus.REQUESTED,
                    vehicle_class=vehicle_class,
                    pickup=pickup,
                    dropoff=dropoff,
                    distance=DistanceInfo(estimated=estimated),
                    fare=self.pricing.compute_fare(estimated, config),
                    payment=PaymentInfo(),
                    timeline=Timeline(requested_at=now),
                    request_expires_at=now + self.request_window,
                    search_radius_km=radius,
                    notes=notes,
                )
                try:
                    booking = await BookingRepository(session).create(draft)
                    await session.commit()
                    break
                except IntegrityError:
                    await session.rollback()
                    logger.warning(
                        "Booking number collision on %s (attempt %d)",
                        draft.booking_number, attempt + 1,
                    )
        if booking is None:
            raise ConfigurationError("Could not allocate a unique booking number")

        logger.info(
            "Booking %s requested: %s, %.2f km, fare %.2f %s",
            booking.booking_number, vehicle_class.value, estimated,
            booking.fare.total_amount, booking.fare.currency,
        )
        await self._dispatch(booking)
        return booking

    async def _dispatch(self, booking: Booking) -> list[DriverCandidate]:
        try:
            async with self.session_factory() as session:
                registry = DriverRepository(session, self.config.h3_resolution)
                candidates = await self.matcher.find_candidates(
                    booking.pickup.point,
                    booking.vehicle_class,
                    booking.search_radius_km,
                    registry,
                )
        except Exception:
            # The booking is already committed; it will expire like any unanswered request.
            logger.exception("Driver matching failed for booking %s", booking.booking_number)
            candidates = []

        payload = _payload(booking)
        await asyncio.gather(
            self._notify(
                NotificationKind.BOOKING_REQUEST,
                [Recipient(RecipientRole.REQUESTER, booking.requester_id)],
                payload,
            ),
            *(
                self._notify(
                    NotificationKind.BOOKING_REQUEST,
                    [Recipient(RecipientRole.DRIVER, c.driver_id)],
                    {**payload, "distance_km": c.distance_km},
                )
                for c in candidates
            ),
        )
        logger.info(
            "Booking %s dispatched to %d driver(s)", booking.booking_number, len(candidates)
        )
        return candidates

    # ── Acceptance ────────────────────────────────────────────────────

    async def accept(self, booking_id: int, driver_id: int) -> Booking:
        now = self.clock.now()
        event = BookingEvent.ACCEPT
        async with self.session_factory() as session:
            repo = BookingRepository(session)
            booking = await _load(repo, booking_id)
            if booking.status == BookingStatus.ACCEPTED:
                raise AlreadyAssignedError(booking_id)
            booking.next_status(event)
            if booking.request_expired(now):
                raise DeadlineExceededError(booking.status, event, booking.request_expires_at)

            driver = await DriverRepository(session, self.config.h3_resolution).get_driver(driver_id)
            if not driver.can_accept(booking.vehicle_class):
                raise InvalidStateTransitionError(
                    booking.status, event,
                    reason=f"driver {driver_id} is not currently eligible for "
                    f"{booking.vehicle_class.value} bookings",
                )

            won = await repo.compare_and_set(
                booking_id,
                BookingStatus.REQUESTED,
                {
                    "status": BookingStatus.ACCEPTED,
                    "driver_id": driver_id,
                    "accepted_at": now,
                    "payment_expires_at": now + self.payment_window,
                    "payment_status": PaymentStatus.PENDING,
                },
                unassigned=True,
            )
            if not won:
                await session.rollback()
                current = await _load(repo, booking_id)
                logger.info(
                    "Driver %d lost acceptance race for booking %s",
                    driver_id, current.booking_number,
                )
                if current.driver_id is not None:
                    raise AlreadyAssignedError(booking_id)
                raise InvalidStateTransitionError(current.status, event)

            accepted = await _load(repo, booking_id)
            await session.commit()

        logger.info("Booking %s accepted by driver %d", accepted.booking_number, driver_id)
        payload = _payload(accepted)
        requester = [Recipient(RecipientRole.REQUESTER, accepted.requester_id)]
        await asyncio.gather(
            self._notify(NotificationKind.BOOKING_ACCEPTED, requester, payload),
            self._notify(NotificationKind.PAYMENT_REMINDER, requester, payload),
        )
        return accepted

    # ── Payment sub-track ─────────────────────────────────────────────

    async def initiate_payment(self, booking_id: int, requester_id: int) -> Booking:
        gateway = self._payment_gateway()
        event = BookingEvent.COMPLETE_PAYMENT
        now = self.clock.now()

        booking = await self.get(booking_id)
        booking.next_status(event)
        _require_requester(booking, requester_id, event)
        if booking.payment.is_completed:
            raise InvalidStateTransitionError(booking.status, event, reason="payment already completed")
        if booking.payment_expired(now):
            raise DeadlineExceededError(booking.status, event, booking.payment_expires_at)
        if _pending_payment(booking):
            # Only one live gateway payment per booking; a new one replaces a failed one.
            logger.info(
                "Reusing pending payment %s for booking %s",
                booking.payment.payment_id, booking.booking_number,
            )
            return booking

        payment_ref = await gateway.initiate(
            booking.booking_number, booking.fare.total_amount, f"requester:{requester_id}"
        )
        async with self.session_factory() as session:
            repo = BookingRepository(session)
            recorded = await repo.compare_and_set(
                booking_id,
                BookingStatus.ACCEPTED,
                {"payment_id": payment_ref, "payment_status": PaymentStatus.PENDING},
                expected_version=booking.version,
                payment_incomplete=True,
            )
            current = await _load(repo, booking_id)
            if not recorded:
                await session.rollback()
                if _pending_payment(current):
                    logger.warning(
                        "Payment %s for booking %s superseded by concurrent payment %s",
                        payment_ref, current.booking_number, current.payment.payment_id,
                    )
                    return current
                raise InvalidStateTransitionError(current.status, event)
            await session.commit()

        logger.info("Payment %s initiated for booking %s", payment_ref, current.booking_number)
        await self._notify(
            NotificationKind.PAYMENT_REMINDER,
            [Recipient(RecipientRole.REQUESTER, current.requester_id)],
            _payload(current),
        )
        return current

    async def confirm_payment(
        self, booking_id: int, payment_ref: Optional[str] = None
    ) -> Booking:
        """Ask the gateway about a payment and record the outcome.

        Both the gateway callback and the sweep's last-chance poll land here.
        """
        gateway = self._payment_gateway()
        event = BookingEvent.COMPLETE_PAYMENT

        booking = await self.get(booking_id)
        if payment_ref and booking.payment.payment_id and payment_ref != booking.payment.payment_id:
            raise ValidationError("Payment reference does not belong to this booking")
        payment_ref = payment_ref or booking.payment.payment_id
        if not payment_ref:
            raise ValidationError("Booking has no payment to confirm")
        if booking.payment.is_completed:
            return booking
        if not booking.can(event):
            logger.warning(
                "Payment %s reported for booking %s in status %s; refund may be required",
                payment_ref, booking.booking_number, booking.status.value,
            )
            raise InvalidStateTransitionError(booking.status, event)

        status = await gateway.get_status(payment_ref)
        if status == PaymentStatus.PENDING:
            return booking

        now = self.clock.now()
        values: dict[str, Any] = {"payment_id": payment_ref, "payment_status": status}
        if status == PaymentStatus.COMPLETED:
            values["paid_at"] = now

        async with self.session_factory() as session:
            repo = BookingRepository(session)
            recorded = await repo.compare_and_set(
                booking_id, BookingStatus.ACCEPTED, values, payment_incomplete=True
            )
            current = await _load(repo, booking_id)
            if not recorded:
                await session.rollback()
                if current.payment.is_completed:
                    return current
                raise InvalidStateTransitionError(current.status, event)
            await session.commit()

        logger.info(
            "Payment %s for booking %s is %s", payment_ref, current.booking_number, status.value
        )
        if status == PaymentStatus.COMPLETED:
            await self._notify(
                NotificationKind.PAYMENT_COMPLETED, current.recipients(), _payload(current)
            )
        return current

    # ── Trip progression ──────────────────────────────────────────────

    async def mark_arrived(self, booking_id: int, driver_id: int) -> Booking:
        event = BookingEvent.MARK_ARRIVED

        def prepare(booking: Booking, now: datetime) -> dict[str, Any]:
            _require_driver(booking, driver_id, event)
            if not booking.payment.is_completed:
                raise InvalidStateTransitionError(
                    booking.status, event, reason="payment has not been completed"
                )
            return {"driver_arrived_at": now}

        booking = await self._apply(booking_id, event, prepare)
        await self._notify(
            NotificationKind.DRIVER_ARRIVED,
            [Recipient(RecipientRole.REQUESTER, booking.requester_id)],
            _payload(booking),
        )
        return booking

    async def start_trip(
        self, booking_id: int, driver_id: int, actual_dropoff: Optional[Place] = None
    ) -> Booking:
        event = BookingEvent.START_TRIP

        def prepare(booking: Booking, now: datetime) -> dict[str, Any]:
            _require_driver(booking, driver_id, event)
            values: dict[str, Any] = {"started_at": now}
            if actual_dropoff is not None and actual_dropoff != booking.dropoff:
                values.update(
                    actual_dropoff_lat=actual_dropoff.point.latitude,
                    actual_dropoff_lng=actual_dropoff.point.longitude,
                    actual_dropoff_address=actual_dropoff.address,
                )
            return values

        booking = await self._apply(booking_id, event, prepare)
        await self._notify(
            NotificationKind.TRIP_STARTED,
            [Recipient(RecipientRole.REQUESTER, booking.requester_id)],
            _payload(booking),
        )
        return booking

    async def complete_trip(
        self,
        booking_id: int,
        driver_id: int,
        actual_distance_km: Optional[float] = None,
    ) -> Booking:
        event = BookingEvent.COMPLETE_TRIP
        if actual_distance_km is not None and actual_distance_km < 0:
            raise ValidationError("Actual distance must be non-negative")

        def prepare(booking: Booking, now: datetime) -> dict[str, Any]:
            _require_driver(booking, driver_id, event)
            if actual_distance_km is not None:
                actual = round_km(actual_distance_km)
            elif booking.actual_dropoff is not None:
                actual = distance_km(booking.pickup.point, booking.actual_dropoff.point)
            else:
                actual = booking.distance.estimated
            # Settlement always uses the fare frozen at creation.
            settlement = self.pricing.compute_settlement(
                booking.fare.total_amount, booking.fare.platform_commission_percentage
            )
            return {
                "completed_at": now,
                "distance_actual": actual,
                "driver_earnings": settlement.driver_earnings,
                "platform_commission": settlement.platform_commission,
            }

        booking = await self._apply(booking_id, event, prepare)
        await self._notify(
            NotificationKind.TRIP_COMPLETED, booking.recipients(), _payload(booking)
        )
        return booking

    # ── Cancellation ──────────────────────────────────────────────────

    async def cancel_by_requester(
        self, booking_id: int, requester_id: int, reason: Optional[str] = None
    ) -> Booking:
        event = BookingEvent.REQUESTER_CANCEL

        def prepare(booking: Booking, now: datetime) -> dict[str, Any]:
            _require_requester(booking, requester_id, event)
            return _cancellation(now, CancellationActor.REQUESTER, reason or "Cancelled by requester")

        booking = await self._apply(booking_id, event, prepare)
        if booking.driver_id is not None:
            await self._notify(
                NotificationKind.BOOKING_CANCELLED,
                [Recipient(RecipientRole.DRIVER, booking.driver_id)],
                _payload(booking),
            )
        return booking

    async def cancel_by_driver(
        self, booking_id: int, driver_id: int, reason: Optional[str] = None
    ) -> Booking:
        event = BookingEvent.DRIVER_CANCEL

        def prepare(booking: Booking, now: datetime) -> dict[str, Any]:
            _require_driver(booking, driver_id, event)
            return _cancellation(now, CancellationActor.DRIVER, reason or "Cancelled by driver")

        booking = await self._apply(booking_id, event, prepare)
        await self._notify(
            NotificationKind.BOOKING_CANCELLED,
            [Recipient(RecipientRole.REQUESTER, booking.requester_id)],
            _payload(booking),
        )
        return booking

    # ── Forced transitions (expiry sweep) ─────────────────────────────

    async def expire_request(self, booking_id: int) -> Optional[Booking]:
        """Cancel an unanswered request. ``None`` if it was no longer due."""
        now = self.clock.now()
        async with self.session_factory() as session:
            repo = BookingRepository(session)
            expired = await repo.compare_and_set(
                booking_id,
                BookingStatus.REQUESTED,
                {
                    "status": BookingStatus.CANCELLED_BY_DRIVER,
                    **_cancellation(now, CancellationActor.SYSTEM, REQUEST_EXPIRED_REASON),
                },
                unassigned=True,
                request_due_at=now,
            )
            if not expired:
                await session.rollback()
                return None
            booking = await _load(repo, booking_id)
            await session.commit()

        logger.info("Booking %s expired: no driver accepted", booking.booking_number)
        await self._notify(
            NotificationKind.BOOKING_CANCELLED, booking.recipients(), _payload(booking)
        )
        return booking

    async def expire_payment(self, booking_id: int) -> Optional[Booking]:
        """Cancel an accepted but unpaid booking. ``None`` if it was no longer due."""
        now = self.clock.now()
        async with self.session_factory() as session:
            repo = BookingRepository(session)
            expired = await repo.compare_and_set(
                booking_id,
                BookingStatus.ACCEPTED,
                {
                    "status": BookingStatus.CANCELLED_BY_USER,
                    **_cancellation(now, CancellationActor.SYSTEM, PAYMENT_TIMEOUT_REASON),
                },
                payment_incomplete=True,
                payment_due_at=now,
            )
            if not expired:
                await session.rollback()
                return None
            booking = await _load(repo, booking_id)
            await session.commit()

        logger.info("Booking %s cancelled: payment timeout", booking.booking_number)
        await self._notify(
            NotificationKind.BOOKING_CANCELLED, booking.recipients(), _payload(booking)
        )
        return booking

    # ── Internals ─────────────────────────────────────────────────────

    async def _apply(self, booking_id: int, event: BookingEvent, prepare: Prepare) -> Booking:
        """Guarded transition with optimistic retry on concurrent modification."""
        now = self.clock.now()
        async with self.session_factory() as session:
            repo = BookingRepository(session)
            for _ in range(_CAS_ATTEMPTS):
                booking = await _load(repo, booking_id)
                target = booking.next_status(event)
                values = prepare(booking, now)
                values["status"] = target
                if await repo.compare_and_set(
                    booking_id, booking.status, values, expected_version=booking.version
                ):
                    updated = await _load(repo, booking_id)
                    await session.commit()
                    logger.info(
                        "Booking %s: %s -> %s on %s",
                        updated.booking_number, booking.status.value,
                        updated.status.value, event.value,
                    )
                    return updated
                await session.rollback()
                logger.warning(
                    "Booking %s changed during %s; retrying", booking.booking_number, event.value
                )
            current = await _load(repo, booking_id)
        raise InvalidStateTransitionError(
            current.status, event, reason="booking is being modified concurrently"
        )

    async def _estimate_distance(self, origin: GeoPoint, destination: GeoPoint) -> float:
        if self.route_distance is not None:
            try:
                return round_km(await self.route_distance.distance_km(origin, destination))
            except Exception:
                logger.warning("Route distance lookup failed; using haversine", exc_info=True)
        return distance_km(origin, destination)

    async def _notify(
        self, kind: NotificationKind, recipients: list[Recipient], payload: dict[str, Any]
    ) -> None:
        try:
            await self.notifications.notify(kind, recipients, payload)
        except Exception:
            logger.warning(
                "Notification %s for booking %s failed",
                kind.value, payload.get("booking_number"), exc_info=True,
            )

    def _payment_gateway(self) -> PaymentGateway:
        if self.payments is None:
            raise ConfigurationError("No payment gateway is configured")
        return self.payments


# ── Helpers ───────────────────────────────────────────────────────────


async def _load(repo: BookingRepository, booking_id: int) -> Booking:
    booking = await repo.get_by_id(booking_id)
    if booking is None:
        raise NotFoundError("Booking", booking_id)
    return booking


def _pending_payment(booking: Booking) -> bool:
    return (
        booking.payment.payment_id is not None
        and booking.payment.payment_status == PaymentStatus.PENDING
    )


def _vehicle_class(value: VehicleClass | str | None) -> VehicleClass:
    if value is None:
        raise ValidationError("vehicle_class is required")
    try:
        return VehicleClass(value)
    except ValueError:
        raise ValidationError(f"Unknown vehicle class {value!r}") from None


def _require_driver(booking: Booking, driver_id: int, event: BookingEvent) -> None:
    if booking.driver_id != driver_id:
        raise InvalidStateTransitionError(
            booking.status, event, reason=f"driver {driver_id} is not assigned to this booking"
        )


def _require_requester(booking: Booking, requester_id: int, event: BookingEvent) -> None:
    if booking.requester_id != requester_id:
        raise InvalidStateTransitionError(
            booking.status, event, reason=f"requester {requester_id} did not create this booking"
        )


def _cancellation(now: datetime, actor: CancellationActor, reason: str) -> dict[str, Any]:
    return {
        "cancelled_at": now,
        "cancelled_by": actor,
        "cancellation_reason": reason[:255],
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _payload(booking: Booking) -> dict[str, Any]:
    """JSON-safe notification payload."""
    return {
        "booking_id": booking.id,
        "booking_number": booking.booking_number,
        "status": booking.status.value,
        "vehicle_class": booking.vehicle_class.value,
        "pickup_address": booking.pickup.address,
        "dropoff_address": booking.dropoff.address,
        "total_amount": booking.fare.total_amount if booking.fare else None,
        "currency": booking.fare.currency if booking.fare else None,
        "driver_earnings": booking.driver_earnings,
        "request_expires_at": _iso(booking.request_expires_at),
        "payment_expires_at": _iso(booking.payment_expires_at),
        "reason": booking.cancellation.reason if booking.cancellation else None,
        "cancelled_by": booking.cancellation.actor.value if booking.cancellation else None,
    }
