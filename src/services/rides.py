"""
Ride inventory
==============

Owns the posted trips and their seat counts.  Seat counts change only
through booking transitions (see ``services.bookings``) and through the
capacity edit below, which is an optimistic UPDATE guarded on the
``available_seats`` value it was computed from.

Ride status table: scheduled -> in-progress -> completed, with
``cancelled`` reachable from both live states.  Cancelling a ride cascades
to its pending/confirmed bookings (cancelled_by=driver) without releasing
seats, since a cancelled ride is no longer bookable.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.distance import within_radius
from src.domain.entities import (
    Location,
    Principal,
    SeatInventory,
    as_utc,
    ensure_ride_transition,
    utcnow,
)
from src.domain.enums import COMMITTED_STATUSES, RIDE_TRANSITIONS, RideStatus
from src.domain.errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from src.infrastructure.models import RideModel
from src.infrastructure.repositories import (
    BookingRepository,
    DriverProfileRepository,
    RideRepository,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "departure_at",
    "total_seats",
    "fare_per_seat",
    "preferences",
    "stops",
    "description",
)
# Columns an edit may set but never clear
REQUIRED_FIELDS = ("departure_at", "total_seats", "fare_per_seat")


class RideService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.rides = RideRepository(session)
        self.bookings = BookingRepository(session)
        self.drivers = DriverProfileRepository(session)

    # ── Driver ────────────────────────────────────────────────────────

    async def create_ride(
        self,
        driver: Principal,
        *,
        origin: Location,
        destination: Location,
        departure_at: datetime,
        total_seats: int,
        fare_per_seat: float,
        preferences: Optional[dict[str, Any]] = None,
        stops: Optional[list[dict[str, Any]]] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> RideModel:
        if idempotency_key:
            existing = await self.rides.get_by_idempotency_key(idempotency_key)
            if existing:
                if existing.driver_id != driver.id:
                    raise Conflict("Idempotency key already used")
                if not _same_trip(
                    existing, origin, destination, departure_at, total_seats, fare_per_seat
                ):
                    raise Conflict(
                        "Idempotency key already used for another ride",
                        ride_id=existing.id,
                    )
                return existing

        if not origin.address or not origin.city:
            raise ValidationError("Origin address and city are required")
        if not destination.address or not destination.city:
            raise ValidationError("Destination address and city are required")
        self._check_capacity(total_seats)
        if fare_per_seat < 0:
            raise ValidationError("Valid fare per seat is required")
        self._check_departure(departure_at)
        self._check_stops(stops or [])

        profile = await self.drivers.get_by_user(driver.id)
        if not profile:
            raise ValidationError("Driver profile not found")
        if not profile.is_approved:
            raise ValidationError("Your driver account is pending approval")

        ride = RideModel(
            driver_id=driver.id,
            origin_address=origin.address,
            origin_city=origin.city,
            origin_lat=origin.latitude,
            origin_lng=origin.longitude,
            destination_address=destination.address,
            destination_city=destination.city,
            destination_lat=destination.latitude,
            destination_lng=destination.longitude,
            departure_at=as_utc(departure_at),
            total_seats=total_seats,
            available_seats=total_seats,
            fare_per_seat=fare_per_seat,
            status=RideStatus.SCHEDULED,
            preferences=preferences or {},
            stops=stops or [],
            description=description,
            idempotency_key=idempotency_key,
        )
        ride = await self.rides.create(ride)
        logger.info(
            "Ride %d posted by driver %d (%d seats)", ride.id, driver.id, total_seats
        )
        return ride

    async def update_ride(
        self, driver: Principal, ride_id: int, changes: dict[str, Any]
    ) -> RideModel:
        ride = await self._owned(driver, ride_id)
        if RideStatus(ride.status) != RideStatus.SCHEDULED:
            raise Conflict(
                "Only scheduled rides can be edited",
                ride_status=RideStatus(ride.status).value,
            )
        if await self.bookings.count_for_ride(ride_id, COMMITTED_STATUSES):
            raise Conflict("Cannot update ride with confirmed bookings")

        changes = {
            k: v
            for k, v in changes.items()
            if k in EDITABLE_FIELDS and not (v is None and k in REQUIRED_FIELDS)
        }
        if "departure_at" in changes:
            self._check_departure(changes["departure_at"])
            changes["departure_at"] = as_utc(changes["departure_at"])
        if "fare_per_seat" in changes and changes["fare_per_seat"] < 0:
            raise ValidationError("Valid fare per seat is required")
        if "stops" in changes:
            changes["stops"] = changes["stops"] or []
            self._check_stops(changes["stops"])

        new_total = changes.pop("total_seats", None)
        if new_total is not None and new_total != ride.total_seats:
            self._check_capacity(new_total)
            pending = await self.bookings.seat_holders(ride_id)
            inventory = SeatInventory.resized(
                new_total, (b.seats_booked for b in pending)
            )
            resized = await self.rides.resize(
                ride_id,
                expected_available=ride.available_seats,
                total_seats=inventory.total_seats,
                available_seats=inventory.available_seats,
            )
            if not resized:
                raise Conflict("Ride seats changed concurrently; retry the update")
            await self.rides.refresh(ride)

        for field, value in changes.items():
            setattr(ride, field, value)
        await self.session.flush()
        await self.rides.refresh(ride)
        logger.info("Ride %d updated by driver %d", ride_id, driver.id)
        return ride

    async def set_status(
        self, driver: Principal, ride_id: int, target: RideStatus
    ) -> tuple[RideModel, list[tuple[int, int]]]:
        """Returns the ride and (booking_id, passenger_id) of cascaded cancels."""
        ride = await self._owned(driver, ride_id)
        current = RideStatus(ride.status)
        target = RideStatus(target)
        ensure_ride_transition(current, target)
        if not await self.rides.transition_status(ride_id, current, target):
            await self.rides.refresh(ride)
            fresh = RideStatus(ride.status)
            raise InvalidTransition(fresh, target, RIDE_TRANSITIONS[fresh])

        cancelled: list[tuple[int, int]] = []
        if target == RideStatus.CANCELLED:
            cancelled = await self.bookings.cancel_live_for_ride(
                ride_id, utcnow(), reason="Ride cancelled by driver"
            )
            logger.info(
                "Ride %d cancelled; %d booking(s) cancelled with it",
                ride_id,
                len(cancelled),
            )
        await self.rides.refresh(ride)
        return ride, cancelled

    async def delete_ride(self, driver: Principal, ride_id: int) -> None:
        ride = await self._owned(driver, ride_id)
        if await self.bookings.count_for_ride(ride_id):
            raise Conflict("Cannot delete ride with bookings. Cancel it instead.")
        await self.rides.delete(ride)
        logger.info("Ride %d deleted by driver %d", ride_id, driver.id)

    async def list_mine(
        self, driver: Principal, status: Optional[RideStatus] = None
    ) -> list[RideModel]:
        return await self.rides.list_for_driver(driver.id, status)

    # ── Public reads ──────────────────────────────────────────────────

    async def get_ride(self, ride_id: int) -> RideModel:
        ride = await self.rides.get_by_id(ride_id)
        if not ride:
            raise NotFound("Ride not found", ride_id=ride_id)
        return ride

    async def seat_holder_ids(self, ride_id: int) -> list[int]:
        return [b.id for b in await self.bookings.seat_holders(ride_id)]

    async def list_available(self) -> list[RideModel]:
        return await self.rides.list_bookable(utcnow(), settings.search_result_limit)

    async def search(
        self,
        *,
        origin_city: Optional[str] = None,
        destination_city: Optional[str] = None,
        on_date: Optional[date] = None,
        seats: int = 1,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort_by: str = "departure_at",
        sort_order: str = "asc",
        near_lat: Optional[float] = None,
        near_lng: Optional[float] = None,
        radius_km: float = 10.0,
    ) -> list[RideModel]:
        day_start = day_end = None
        if on_date is not None:
            day_start = datetime.combine(on_date, time.min, tzinfo=timezone.utc)
            day_end = day_start + timedelta(days=1)

        rides = await self.rides.search(
            now=utcnow(),
            seats=seats,
            origin_city=origin_city,
            destination_city=destination_city,
            day_start=day_start,
            day_end=day_end,
            min_price=min_price,
            max_price=max_price,
            sort_by=sort_by,
            descending=sort_order == "desc",
        )
        if near_lat is not None and near_lng is not None:
            rides = [
                r
                for r in rides
                if within_radius(r.origin_lat, r.origin_lng, near_lat, near_lng, radius_km)
            ]
        return rides[: settings.search_result_limit]

    # ── Internals ─────────────────────────────────────────────────────

    async def _owned(self, driver: Principal, ride_id: int) -> RideModel:
        ride = await self.rides.get_by_id(ride_id, for_update=True)
        if not ride:
            raise NotFound("Ride not found", ride_id=ride_id)
        if ride.driver_id != driver.id:
            raise Forbidden("Not authorized to manage this ride")
        return ride

    @staticmethod
    def _check_capacity(total_seats: int) -> None:
        if not 1 <= total_seats <= settings.max_seats_per_ride:
            raise ValidationError(
                f"Total seats must be between 1 and {settings.max_seats_per_ride}",
                total_seats=total_seats,
            )

    @staticmethod
    def _check_stops(stops: list[dict[str, Any]]) -> None:
        for position, stop in enumerate(stops):
            if not stop.get("address"):
                raise ValidationError("Stop address is required", stop=position)
            if stop.get("fare", 0) < 0:
                raise ValidationError("Stop fare cannot be negative", stop=position)

    @staticmethod
    def _check_departure(departure_at: datetime) -> None:
        if as_utc(departure_at) <= utcnow():
            raise ValidationError("Departure date must be in the future")


def _same_trip(
    ride: RideModel,
    origin: Location,
    destination: Location,
    departure_at: datetime,
    total_seats: int,
    fare_per_seat: float,
) -> bool:
    """Whether a retried post describes the ride its idempotency key created."""
    return (
        ride.origin_address == origin.address
        and ride.destination_address == destination.address
        and as_utc(ride.departure_at) == as_utc(departure_at)
        and ride.total_seats == total_seats
        and ride.fare_per_seat == fare_per_seat
    )
