"""Domain enumerations and state-transition rules."""

import enum


class Role(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"
    ADMIN = "admin"


class RideStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMING_FOR_PICKUP = "coming-for-pickup"
    PICKED_UP = "picked-up"
    IN_TRANSIT = "in-transit"
    DROPPED_OFF = "dropped-off"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class CancelledBy(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    ONLINE = "online"


class ReviewType(str, enum.Enum):
    PASSENGER_TO_DRIVER = "passenger-to-driver"
    DRIVER_TO_PASSENGER = "driver-to-passenger"


class LuggageSpace(str, enum.Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


# State machine: maps current status -> set of valid next statuses
BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.CONFIRMED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.CONFIRMED: {
        BookingStatus.COMING_FOR_PICKUP,
        BookingStatus.CANCELLED,
    },
    BookingStatus.COMING_FOR_PICKUP: {BookingStatus.PICKED_UP},
    BookingStatus.PICKED_UP: {BookingStatus.IN_TRANSIT},
    BookingStatus.IN_TRANSIT: {BookingStatus.DROPPED_OFF},
    BookingStatus.DROPPED_OFF: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.REJECTED: set(),
}

RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.SCHEDULED: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

# Driver-reported trip progress, in order
PROGRESS_STATUSES: tuple[BookingStatus, ...] = (
    BookingStatus.COMING_FOR_PICKUP,
    BookingStatus.PICKED_UP,
    BookingStatus.IN_TRANSIT,
    BookingStatus.DROPPED_OFF,
    BookingStatus.COMPLETED,
)

# Bookings in these states no longer hold seats on the ride
RELEASED_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.REJECTED}
)

SEAT_HOLDING_STATUSES: frozenset[BookingStatus] = frozenset(
    s for s in BookingStatus if s not in RELEASED_STATUSES
)

# Confirmed-or-later: a ride with any of these can no longer be edited
COMMITTED_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.CONFIRMED, *PROGRESS_STATUSES}
)

ACTIVE_STATUSES: tuple[BookingStatus, ...] = (
    BookingStatus.CONFIRMED,
    BookingStatus.COMING_FOR_PICKUP,
    BookingStatus.PICKED_UP,
    BookingStatus.IN_TRANSIT,
)

# Column stamped when a booking enters each status
STATUS_TIMESTAMP_FIELDS: dict[BookingStatus, str] = {
    BookingStatus.CONFIRMED: "confirmed_at",
    BookingStatus.REJECTED: "rejected_at",
    BookingStatus.CANCELLED: "cancelled_at",
    BookingStatus.COMING_FOR_PICKUP: "coming_for_pickup_at",
    BookingStatus.PICKED_UP: "picked_up_at",
    BookingStatus.IN_TRANSIT: "in_transit_at",
    BookingStatus.DROPPED_OFF: "dropped_off_at",
    BookingStatus.COMPLETED: "completed_at",
}
