"""
Notification gateway backed by the ``notifications`` table.

Each recipient gets one inbox row; a push/SMS relay (out of scope) picks
rows up from there.  Callers treat delivery as fire-and-forget, so this
class is allowed to raise: the booking state machine logs and swallows it.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import NotificationModel
from src.domain.entities import Recipient
from src.domain.enums import NotificationKind, RecipientRole

logger = logging.getLogger(__name__)


class _Blank(dict):
    def __missing__(self, key):
        return ""


# kind -> (title, requester message, driver message)
TEMPLATES: dict[NotificationKind, tuple[str, str, str]] = {
    NotificationKind.BOOKING_REQUEST: (
        "New Booking Request",
        "Your booking {booking_number} has been requested. Waiting for a driver to accept.",
        "New tow request at {pickup_address}. Accept before {request_expires_at}.",
    ),
    NotificationKind.BOOKING_ACCEPTED: (
        "Booking Accepted",
        "A driver has accepted booking {booking_number}. Pay {total_amount} {currency} before {payment_expires_at}.",
        "You accepted booking {booking_number}.",
    ),
    NotificationKind.PAYMENT_REMINDER: (
        "Payment Pending",
        "Please complete payment of {total_amount} {currency} before {payment_expires_at}.",
        "Waiting for the customer to pay for booking {booking_number}.",
    ),
    NotificationKind.PAYMENT_COMPLETED: (
        "Payment Received",
        "Payment for booking {booking_number} is complete.",
        "The customer has paid for booking {booking_number}. Head to the pickup.",
    ),
    NotificationKind.BOOKING_CANCELLED: (
        "Booking Cancelled",
        "Booking {booking_number} has been cancelled. Reason: {reason}",
        "Booking {booking_number} has been cancelled. Reason: {reason}",
    ),
    NotificationKind.DRIVER_ARRIVED: (
        "Driver Arrived",
        "Your driver has arrived at {pickup_address}.",
        "Arrival recorded for booking {booking_number}.",
    ),
    NotificationKind.TRIP_STARTED: (
        "Trip Started",
        "Your vehicle is now being towed to the destination.",
        "Trip started for booking {booking_number}.",
    ),
    NotificationKind.TRIP_COMPLETED: (
        "Trip Completed",
        "Your trip has been completed. Total: {total_amount} {currency}",
        "Trip completed. Amount earned: {driver_earnings} {currency}",
    ),
}


def render(kind: NotificationKind, role: RecipientRole, payload: dict[str, Any]) -> tuple[str, str]:
    title, to_requester, to_driver = TEMPLATES[kind]
    template = to_requester if role == RecipientRole.REQUESTER else to_driver
    return title, template.format_map(_Blank(payload))


class StoredNotificationGateway:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def notify(
        self,
        kind: NotificationKind,
        recipients: Sequence[Recipient],
        payload: dict[str, Any],
    ) -> None:
        if not recipients:
            return
        async with self.session_factory() as session:
            for recipient in recipients:
                title, message = render(kind, recipient.role, payload)
                session.add(
                    NotificationModel(
                        kind=kind,
                        recipient_role=recipient.role,
                        recipient_id=recipient.id,
                        booking_id=payload.get("booking_id"),
                        title=title,
                        message=message,
                        payload=payload,
                    )
                )
            await session.commit()
        logger.info(
            "Notification %s sent to %d recipient(s)", kind.value, len(recipients)
        )
