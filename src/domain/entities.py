"""
Domain entities with business logic.

Patterns used
-------------
- **Transition tables** for bookings and rides: ``ensure_booking_transition``
  / ``ensure_ride_transition`` are the single validation points for every
  status change (see ``enums.BOOKING_TRANSITIONS``).
- ``SeatInventory`` encapsulates the ``0 <= available <= total`` invariant
  that the repositories enforce at the SQL level with guarded UPDATEs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from .enums import (
    BOOKING_TRANSITIONS,
    RIDE_TRANSITIONS,
    BookingStatus,
    RideStatus,
    Role,
)
from .errors import InsufficientCapacity, InvalidTransition, ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored instant is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, as handed over by the identity gateway."""

    id: int
    roles: frozenset[Role] = field(default_factory=frozenset)

    def has_role(self, *roles: Role) -> bool:
        return any(r in self.roles for r in roles)

    @classmethod
    def from_header(cls, user_id: int, roles_header: str) -> "Principal":
        roles = set()
        for raw in roles_header.split(","):
            try:
                roles.add(Role(raw.strip().lower()))
            except ValueError:
                continue
        return cls(id=user_id, roles=frozenset(roles))


@dataclass(frozen=True)
class Location:
    address: str
    city: Optional[str] = None
    latitude: float = 0.0
    longitude: float = 0.0


# ── State machine ─────────────────────────────────────────────────────


def allowed_booking_transitions(current: BookingStatus) -> set[BookingStatus]:
    return set(BOOKING_TRANSITIONS.get(BookingStatus(current), set()))


def ensure_booking_transition(
    current: BookingStatus, target: BookingStatus
) -> None:
    """Raise ``InvalidTransition`` unless *target* is adjacent to *current*."""
    allowed = allowed_booking_transitions(current)
    if BookingStatus(target) not in allowed:
        raise InvalidTransition(current, target, allowed)


def ensure_ride_transition(current: RideStatus, target: RideStatus) -> None:
    allowed = RIDE_TRANSITIONS.get(RideStatus(current), set())
    if RideStatus(target) not in allowed:
        raise InvalidTransition(current, target, allowed)


def booking_fare(seats: int, fare_per_seat: float) -> float:
    """Fare snapshot taken when the booking is created."""
    return round(seats * fare_per_seat, 2)


def within_edit_window(
    created_at: datetime, window_hours: int, now: Optional[datetime] = None
) -> bool:
    now = now or utcnow()
    return now - as_utc(created_at) <= timedelta(hours=window_hours)


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class SeatInventory:
    total_seats: int
    available_seats: int

    def __post_init__(self) -> None:
        if not 0 <= self.available_seats <= self.total_seats:
            raise ValidationError(
                "Available seats must lie between 0 and total seats",
                total_seats=self.total_seats,
                available_seats=self.available_seats,
            )

    def can_reserve(self, seats: int) -> bool:
        return 0 < seats <= self.available_seats

    def reserve(self, seats: int) -> None:
        if seats < 1:
            raise ValidationError("At least 1 seat must be booked")
        if not self.can_reserve(seats):
            raise InsufficientCapacity(
                f"Only {self.available_seats} seats available",
                available_seats=self.available_seats,
                requested=seats,
            )
        self.available_seats -= seats

    @classmethod
    def resized(
        cls, new_total: int, pending_seats: Iterable[int]
    ) -> "SeatInventory":
        """Inventory after a capacity edit, keeping pending reservations."""
        held = sum(pending_seats)
        if held > new_total:
            raise ValidationError(
                f"Pending bookings already hold {held} seats",
                held_seats=held,
                total_seats=new_total,
            )
        return cls(total_seats=new_total, available_seats=new_total - held)
