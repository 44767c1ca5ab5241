"""
Booking lifecycle
=================

pending -> confirmed -> coming-for-pickup -> picked-up -> in-transit
        -> dropped-off -> completed
pending | confirmed -> cancelled   (passenger)
pending             -> rejected    (driver)

Concurrency safety
------------------
* Seat reservation is the guarded ``RideRepository.reserve_seats`` UPDATE,
  issued in the same transaction as the booking INSERT.
* Every status change is a compare-and-set on the current status: when a
  passenger cancels while the driver responds, one UPDATE matches and the
  other raises ``InvalidTransition`` carrying the status that won.
* Seats are released only by the winner of the CAS into ``cancelled`` /
  ``rejected``, so a booking can never release twice.
* Completion credits the driver inside the same CAS-guarded transaction,
  exactly once per booking.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import (
    Location,
    Principal,
    SeatInventory,
    allowed_booking_transitions,
    booking_fare,
    ensure_booking_transition,
    utcnow,
)
from src.domain.enums import (
    PROGRESS_STATUSES,
    BookingStatus,
    CancelledBy,
    PaymentMethod,
    PaymentStatus,
    RideStatus,
)
from src.domain.errors import (
    AlreadyBooked,
    Conflict,
    Forbidden,
    InsufficientCapacity,
    InvalidTransition,
    NotFound,
    RideNotBookable,
    ValidationError,
)
from src.infrastructure.models import BookingModel, RideModel
from src.infrastructure.repositories import (
    BookingRepository,
    DriverProfileRepository,
    RideRepository,
)

logger = logging.getLogger(__name__)


class BookingService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.bookings = BookingRepository(session)
        self.rides = RideRepository(session)
        self.drivers = DriverProfileRepository(session)

    # ── Passenger ─────────────────────────────────────────────────────

    async def create_booking(
        self,
        passenger: Principal,
        *,
        ride_id: int,
        seats: int,
        pickup: Location,
        dropoff: Location,
        passenger_note: Optional[str] = None,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        idempotency_key: Optional[str] = None,
    ) -> BookingModel:
        if seats < 1:
            raise ValidationError("At least 1 seat must be booked")
        if not pickup.address:
            raise ValidationError("Pickup location is required")
        if not dropoff.address:
            raise ValidationError("Dropoff location is required")

        # ── Idempotency guard ─────────────────────────────────────────
        if idempotency_key:
            existing = await self.bookings.get_by_idempotency_key(idempotency_key)
            if existing:
                if existing.passenger_id != passenger.id:
                    raise Conflict("Idempotency key already used")
                if existing.ride_id != ride_id:
                    raise Conflict(
                        "Idempotency key already used for another ride",
                        booking_id=existing.id,
                        ride_id=existing.ride_id,
                    )
                return existing

        ride = await self.rides.get_by_id(ride_id, for_update=True)
        if not ride:
            raise NotFound("Ride not found", ride_id=ride_id)
        if RideStatus(ride.status) != RideStatus.SCHEDULED:
            raise RideNotBookable(
                "This ride is no longer available for booking",
                ride_status=RideStatus(ride.status).value,
            )
        self._inventory(ride).reserve(seats)
        if await self.bookings.find_live_for_passenger(ride_id, passenger.id):
            raise AlreadyBooked("You have already booked this ride", ride_id=ride_id)
        if ride.driver_id == passenger.id:
            raise ValidationError("You cannot book your own ride")

        if not await self.rides.reserve_seats(ride_id, seats):
            # Lost a race since the checks above: report the fresh state
            await self.rides.refresh(ride)
            if RideStatus(ride.status) != RideStatus.SCHEDULED:
                raise RideNotBookable("This ride is no longer available for booking")
            self._inventory(ride).reserve(seats)
            raise InsufficientCapacity(
                "Seats were taken by a concurrent booking",
                available_seats=ride.available_seats,
                requested=seats,
            )

        booking = BookingModel(
            ride_id=ride_id,
            passenger_id=passenger.id,
            seats_booked=seats,
            fare_per_seat=ride.fare_per_seat,
            total_fare=booking_fare(seats, ride.fare_per_seat),
            pickup_address=pickup.address,
            pickup_city=pickup.city,
            pickup_lat=pickup.latitude,
            pickup_lng=pickup.longitude,
            dropoff_address=dropoff.address,
            dropoff_city=dropoff.city,
            dropoff_lat=dropoff.latitude,
            dropoff_lng=dropoff.longitude,
            passenger_note=passenger_note,
            payment_method=payment_method,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            idempotency_key=idempotency_key,
        )
        try:
            await self.bookings.create(booking)
        except IntegrityError as exc:
            raise AlreadyBooked(
                "You have already booked this ride", ride_id=ride_id
            ) from exc
        await self.rides.refresh(ride)

        logger.info(
            "Booking %d: passenger %d reserved %d seat(s) on ride %d (%d left)",
            booking.id,
            passenger.id,
            seats,
            ride_id,
            ride.available_seats,
        )
        return booking

    async def cancel_booking(
        self, passenger: Principal, booking_id: int, reason: Optional[str] = None
    ) -> BookingModel:
        booking = await self._get(booking_id)
        if booking.passenger_id != passenger.id:
            raise Forbidden("Only the booking's passenger can cancel it")
        if BookingStatus(booking.status) not in (
            BookingStatus.PENDING,
            BookingStatus.CONFIRMED,
        ):
            raise InvalidTransition(
                booking.status,
                BookingStatus.CANCELLED,
                allowed_booking_transitions(booking.status),
            )

        await self._apply(
            booking,
            BookingStatus.CANCELLED,
            cancelled_by=CancelledBy.PASSENGER,
            cancellation_reason=reason,
        )
        await self._release_seats(booking)
        logger.info("Booking %d cancelled by passenger %d", booking.id, passenger.id)
        return booking

    # ── Driver ────────────────────────────────────────────────────────

    async def respond(
        self,
        driver: Principal,
        booking_id: int,
        action: str,
        driver_note: Optional[str] = None,
    ) -> BookingModel:
        if action not in ("confirm", "reject"):
            raise ValidationError("Invalid action. Use 'confirm' or 'reject'")
        booking = await self._get(booking_id)
        await self._owned_ride(driver, booking)

        target = (
            BookingStatus.CONFIRMED if action == "confirm" else BookingStatus.REJECTED
        )
        if BookingStatus(booking.status) != BookingStatus.PENDING:
            raise InvalidTransition(
                booking.status, target, allowed_booking_transitions(booking.status)
            )

        values = {"driver_note": driver_note} if driver_note else {}
        await self._apply(booking, target, **values)
        if target == BookingStatus.REJECTED:
            await self._release_seats(booking)
        logger.info("Booking %d %s by driver %d", booking.id, target.value, driver.id)
        return booking

    async def advance(
        self, driver: Principal, booking_id: int, target: BookingStatus
    ) -> BookingModel:
        """Driver-reported trip progress, one step at a time."""
        target = BookingStatus(target)
        if target not in PROGRESS_STATUSES:
            raise ValidationError(
                "Invalid status. Valid options: "
                + ", ".join(s.value for s in PROGRESS_STATUSES)
            )
        booking = await self._get(booking_id)
        ride = await self._owned_ride(driver, booking)

        values = {}
        if target == BookingStatus.COMPLETED:
            values["payment_status"] = PaymentStatus.PAID
        await self._apply(booking, target, **values)

        if target == BookingStatus.COMPLETED:
            credited = await self.drivers.record_completed_booking(
                ride.driver_id, booking.total_fare
            )
            if not credited:
                logger.error("No driver profile for user %d", ride.driver_id)
                raise NotFound("Driver profile not found", driver_id=ride.driver_id)
            logger.info(
                "Booking %d completed; driver %d credited %.2f",
                booking.id,
                ride.driver_id,
                booking.total_fare,
            )
        return booking

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_booking(self, principal: Principal, booking_id: int) -> BookingModel:
        booking = await self._get(booking_id)
        if booking.passenger_id == principal.id:
            return booking
        ride = await self.rides.get_by_id(booking.ride_id)
        if ride and ride.driver_id == principal.id:
            return booking
        raise Forbidden("Not authorized to view this booking")

    async def ride_id_of(self, booking_id: int) -> int:
        """Unlocked lookup, used to pick the ride lock before mutating."""
        booking = await self.bookings.get_by_id(booking_id)
        if not booking:
            raise NotFound("Booking not found", booking_id=booking_id)
        return booking.ride_id

    async def list_mine(
        self, passenger: Principal, status: Optional[BookingStatus] = None
    ) -> list[BookingModel]:
        return await self.bookings.list_for_passenger(passenger.id, status=status)

    async def list_for_ride(self, driver: Principal, ride_id: int) -> list[BookingModel]:
        ride = await self.rides.get_by_id(ride_id)
        if not ride:
            raise NotFound("Ride not found", ride_id=ride_id)
        if ride.driver_id != driver.id:
            raise Forbidden("Not authorized")
        return await self.bookings.list_for_ride(ride_id)

    async def list_for_driver(
        self, driver: Principal, status: Optional[BookingStatus] = None
    ) -> list[BookingModel]:
        return await self.bookings.list_for_driver(driver.id, status=status)

    # ── Internals ─────────────────────────────────────────────────────

    @staticmethod
    def _inventory(ride: RideModel) -> SeatInventory:
        return SeatInventory(
            total_seats=ride.total_seats, available_seats=ride.available_seats
        )

    async def _get(self, booking_id: int) -> BookingModel:
        booking = await self.bookings.get_by_id(booking_id, for_update=True)
        if not booking:
            raise NotFound("Booking not found", booking_id=booking_id)
        return booking

    async def _owned_ride(self, driver: Principal, booking: BookingModel) -> RideModel:
        ride = await self.rides.get_by_id(booking.ride_id)
        if not ride or ride.driver_id != driver.id:
            raise Forbidden("Not authorized")
        return ride

    async def _apply(
        self, booking: BookingModel, target: BookingStatus, **values
    ) -> None:
        current = BookingStatus(booking.status)
        ensure_booking_transition(current, target)
        won = await self.bookings.transition(
            booking.id, current, target, utcnow(), **values
        )
        await self.bookings.refresh(booking)
        if not won:
            fresh = BookingStatus(booking.status)
            raise InvalidTransition(fresh, target, allowed_booking_transitions(fresh))

    async def _release_seats(self, booking: BookingModel) -> None:
        if not await self.rides.release_seats(booking.ride_id, booking.seats_booked):
            logger.error(
                "Seat release for booking %d would overflow ride %d",
                booking.id,
                booking.ride_id,
            )
            raise Conflict(
                "Seat ledger out of balance for this ride", ride_id=booking.ride_id
            )
