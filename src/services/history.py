"""Read-only dashboard aggregations over bookings, rides and driver profiles."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.entities import Principal
from src.domain.enums import (
    BookingStatus,
    Role,
    RideStatus,
)
from src.domain.errors import NotFound
from src.infrastructure.models import BookingModel, DriverProfileModel, RideModel
from src.infrastructure.repositories import (
    BookingRepository,
    DriverProfileRepository,
    RideRepository,
)


@dataclass
class StatusBucket:
    status: BookingStatus
    count: int
    total_amount: float


@dataclass
class PassengerHistory:
    total_bookings: int
    completed_rides: int
    total_spent: float
    by_status: list[StatusBucket]
    recent_bookings: list[BookingModel]


@dataclass
class DriverHistory:
    profile: DriverProfileModel
    completed_bookings: int
    total_earnings: float
    by_status: list[StatusBucket]
    rides_by_status: dict[str, int]
    recent_bookings: list[BookingModel]


@dataclass
class ActiveBookings:
    as_passenger: list[BookingModel] = field(default_factory=list)
    as_driver: list[BookingModel] = field(default_factory=list)


@dataclass
class SeatAudit:
    ride_id: int
    status: RideStatus
    total_seats: int
    available_seats: int
    held_seats: int
    balanced: bool


def _buckets(rows) -> list[StatusBucket]:
    return [StatusBucket(status, count, round(amount, 2)) for status, count, amount in rows]


def _completed(buckets: list[StatusBucket]) -> Optional[StatusBucket]:
    return next((b for b in buckets if b.status == BookingStatus.COMPLETED), None)


class HistoryService:
    def __init__(self, session: AsyncSession, recent_limit: Optional[int] = None):
        self.bookings = BookingRepository(session)
        self.rides = RideRepository(session)
        self.drivers = DriverProfileRepository(session)
        self.recent_limit = recent_limit or settings.history_recent_limit

    async def passenger_history(self, passenger: Principal) -> PassengerHistory:
        buckets = _buckets(await self.bookings.stats_for_passenger(passenger.id))
        completed = _completed(buckets)
        recent = await self.bookings.list_for_passenger(
            passenger.id, limit=self.recent_limit
        )
        return PassengerHistory(
            total_bookings=sum(b.count for b in buckets),
            completed_rides=completed.count if completed else 0,
            total_spent=completed.total_amount if completed else 0.0,
            by_status=buckets,
            recent_bookings=recent,
        )

    async def driver_history(self, driver: Principal) -> DriverHistory:
        profile = await self.drivers.get_by_user(driver.id)
        if not profile:
            raise NotFound("Driver profile not found", driver_id=driver.id)

        buckets = _buckets(await self.bookings.stats_for_driver(driver.id))
        completed = _completed(buckets)
        rides = await self.rides.count_by_status_for_driver(driver.id)
        recent = await self.bookings.list_for_driver(driver.id, limit=self.recent_limit)
        return DriverHistory(
            profile=profile,
            completed_bookings=completed.count if completed else 0,
            total_earnings=completed.total_amount if completed else 0.0,
            by_status=buckets,
            rides_by_status={status.value: count for status, count in rides},
            recent_bookings=recent,
        )

    async def active_bookings(self, principal: Principal) -> ActiveBookings:
        active = ActiveBookings(
            as_passenger=await self.bookings.list_active_for_passenger(principal.id)
        )
        if principal.has_role(Role.DRIVER):
            active.as_driver = await self.bookings.list_active_for_driver(principal.id)
        return active

    async def seat_audit(self, ride_id: int) -> SeatAudit:
        """Compares the ride's counter with the seats its bookings hold."""
        ride: Optional[RideModel] = await self.rides.get_by_id(ride_id)
        if not ride:
            raise NotFound("Ride not found", ride_id=ride_id)
        await self.rides.refresh(ride)
        held = sum(b.seats_booked for b in await self.bookings.seat_holders(ride_id))
        status = RideStatus(ride.status)
        # Ride cancellation voids bookings without returning seats
        balanced = (
            held + ride.available_seats == ride.total_seats
            if status == RideStatus.SCHEDULED
            else ride.available_seats <= ride.total_seats
        )
        return SeatAudit(
            ride_id=ride.id,
            status=status,
            total_seats=ride.total_seats,
            available_seats=ride.available_seats,
            held_seats=held,
            balanced=balanced,
        )
