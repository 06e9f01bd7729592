"""Domain enumerations and state-transition rules."""

import enum


class BookingStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    DRIVER_ARRIVED = "driver_arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED_BY_USER = "cancelled_by_user"
    CANCELLED_BY_DRIVER = "cancelled_by_driver"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED_BY_USER,
        BookingStatus.CANCELLED_BY_DRIVER,
    }
)


class BookingEvent(str, enum.Enum):
    ACCEPT = "accept"
    EXPIRE_REQUEST = "expire_request"
    COMPLETE_PAYMENT = "complete_payment"
    EXPIRE_PAYMENT = "expire_payment"
    MARK_ARRIVED = "mark_arrived"
    START_TRIP = "start_trip"
    COMPLETE_TRIP = "complete_trip"
    REQUESTER_CANCEL = "requester_cancel"
    DRIVER_CANCEL = "driver_cancel"


# State machine: (current status, event) -> next status.
# COMPLETE_PAYMENT only moves the payment sub-track, so the status is unchanged.
BOOKING_TRANSITIONS: dict[tuple[BookingStatus, BookingEvent], BookingStatus] = {
    (BookingStatus.REQUESTED, BookingEvent.ACCEPT): BookingStatus.ACCEPTED,
    (BookingStatus.REQUESTED, BookingEvent.EXPIRE_REQUEST): BookingStatus.CANCELLED_BY_DRIVER,
    (BookingStatus.REQUESTED, BookingEvent.REQUESTER_CANCEL): BookingStatus.CANCELLED_BY_USER,
    (BookingStatus.ACCEPTED, BookingEvent.COMPLETE_PAYMENT): BookingStatus.ACCEPTED,
    (BookingStatus.ACCEPTED, BookingEvent.EXPIRE_PAYMENT): BookingStatus.CANCELLED_BY_USER,
    (BookingStatus.ACCEPTED, BookingEvent.MARK_ARRIVED): BookingStatus.DRIVER_ARRIVED,
    (BookingStatus.ACCEPTED, BookingEvent.REQUESTER_CANCEL): BookingStatus.CANCELLED_BY_USER,
    (BookingStatus.ACCEPTED, BookingEvent.DRIVER_CANCEL): BookingStatus.CANCELLED_BY_DRIVER,
    (BookingStatus.DRIVER_ARRIVED, BookingEvent.START_TRIP): BookingStatus.IN_PROGRESS,
    (BookingStatus.IN_PROGRESS, BookingEvent.COMPLETE_TRIP): BookingStatus.COMPLETED,
}


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class VehicleClass(str, enum.Enum):
    SMALL_CAR = "small_car"
    SEDAN = "sedan"
    SUV = "suv"
    TRUCK = "truck"
    HEAVY_VEHICLE = "heavy_vehicle"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CancellationActor(str, enum.Enum):
    REQUESTER = "requester"
    DRIVER = "driver"
    SYSTEM = "system"
    ADMIN = "admin"


class RecipientRole(str, enum.Enum):
    REQUESTER = "requester"
    DRIVER = "driver"


class NotificationKind(str, enum.Enum):
    BOOKING_REQUEST = "booking_request"
    BOOKING_ACCEPTED = "booking_accepted"
    BOOKING_CANCELLED = "booking_cancelled"
    DRIVER_ARRIVED = "driver_arrived"
    TRIP_STARTED = "trip_started"
    TRIP_COMPLETED = "trip_completed"
    PAYMENT_REMINDER = "payment_reminder"
    PAYMENT_COMPLETED = "payment_completed"
