"""
Collaborator interfaces consumed by the booking core.

Concrete implementations live in ``src.infrastructure``; tests supply their
own.  Only the shapes below are relied upon.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Sequence

from .entities import DriverSnapshot, GeoPoint, Recipient
from .enums import NotificationKind, PaymentStatus, VehicleClass


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DriverRegistry(Protocol):
    async def list_eligible(
        self,
        vehicle_class: VehicleClass,
        near: Optional[GeoPoint] = None,
        radius_km: Optional[float] = None,
    ) -> list[DriverSnapshot]: ...

    async def get_driver(self, driver_id: int) -> DriverSnapshot: ...


class NotificationGateway(Protocol):
    async def notify(
        self,
        kind: NotificationKind,
        recipients: Sequence[Recipient],
        payload: dict[str, Any],
    ) -> None: ...


class PaymentGateway(Protocol):
    async def initiate(
        self, booking_id: str, amount: float, payer_ref: str
    ) -> str: ...

    async def get_status(self, payment_ref: str) -> PaymentStatus: ...


class RouteDistanceProvider(Protocol):
    async def distance_km(self, origin: GeoPoint, destination: GeoPoint) -> float: ...
