"""
Booking lifecycle tests against the database.

Covers seat bookkeeping on the parent ride, the compare-and-set status
writes, completion crediting and the ride-cancellation cascade.
"""

import random

import pytest
from sqlalchemy import update

from src.domain.entities import utcnow
from src.domain.enums import (
    PROGRESS_STATUSES,
    BookingStatus,
    CancelledBy,
    PaymentStatus,
    Role,
    RideStatus,
)
from src.domain.errors import (
    AlreadyBooked,
    DomainError,
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
from src.services.bookings import BookingService
from src.services.history import HistoryService
from src.services.rides import RideService
from tests.conftest import make_user, post_ride, where


async def book(session, passenger, ride_id, seats=1, **kwargs):
    return await BookingService(session).create_booking(
        passenger,
        ride_id=ride_id,
        seats=seats,
        pickup=where("Gate 4"),
        dropoff=where("Station road"),
        **kwargs,
    )


class TestCreateBooking:
    @pytest.mark.asyncio
    async def test_reserves_seats_and_snapshots_fare(self, db_session, ride, passenger):
        booking = await book(db_session, passenger, ride.id, seats=3)

        assert booking.status == BookingStatus.PENDING
        assert booking.payment_status == PaymentStatus.PENDING
        assert booking.fare_per_seat == 100.0
        assert booking.total_fare == 300.0
        assert ride.available_seats == 1

    @pytest.mark.asyncio
    async def test_capacity_scenario(self, db_session, driver, ride, passenger, other_passenger):
        """4 seats: A takes 3, B's 2 fail, rejecting A frees all 4."""
        a = await book(db_session, passenger, ride.id, seats=3)
        assert ride.available_seats == 1

        with pytest.raises(InsufficientCapacity):
            await book(db_session, other_passenger, ride.id, seats=2)
        await db_session.refresh(ride)
        assert ride.available_seats == 1

        await BookingService(db_session).respond(driver, a.id, "reject")
        await db_session.refresh(ride)
        assert ride.available_seats == 4
        assert a.status == BookingStatus.REJECTED
        assert a.rejected_at is not None

    @pytest.mark.asyncio
    async def test_fare_change_keeps_snapshot(self, db_session, driver, ride, passenger):
        booking = await book(db_session, passenger, ride.id, seats=2)
        await RideService(db_session).update_ride(driver, ride.id, {"fare_per_seat": 250.0})

        await db_session.refresh(booking)
        assert booking.total_fare == 200.0
        assert ride.fare_per_seat == 250.0

    @pytest.mark.asyncio
    async def test_unknown_ride(self, db_session, passenger):
        with pytest.raises(NotFound):
            await book(db_session, passenger, 999)

    @pytest.mark.asyncio
    async def test_ride_must_be_scheduled(self, db_session, driver, ride, passenger):
        await RideService(db_session).set_status(driver, ride.id, RideStatus.IN_PROGRESS)
        with pytest.raises(RideNotBookable):
            await book(db_session, passenger, ride.id)

    @pytest.mark.asyncio
    async def test_one_live_booking_per_passenger(self, db_session, ride, passenger):
        first = await book(db_session, passenger, ride.id)
        with pytest.raises(AlreadyBooked):
            await book(db_session, passenger, ride.id)

        await BookingService(db_session).cancel_booking(passenger, first.id)
        again = await book(db_session, passenger, ride.id)
        assert again.id != first.id

    @pytest.mark.asyncio
    async def test_driver_cannot_book_own_ride(self, db_session, driver, ride):
        with pytest.raises(ValidationError, match="own ride"):
            await book(db_session, driver, ride.id)

    @pytest.mark.asyncio
    async def test_capacity_checked_before_duplicate(self, db_session, ride, passenger):
        await book(db_session, passenger, ride.id, seats=2)
        with pytest.raises(InsufficientCapacity):
            await book(db_session, passenger, ride.id, seats=3)

    @pytest.mark.asyncio
    async def test_zero_seats_rejected(self, db_session, ride, passenger):
        with pytest.raises(ValidationError):
            await book(db_session, passenger, ride.id, seats=0)

    @pytest.mark.asyncio
    async def test_capacity_error_reports_inventory(self, db_session, ride, passenger):
        with pytest.raises(InsufficientCapacity) as exc:
            await book(db_session, passenger, ride.id, seats=5)
        assert exc.value.context == {"available_seats": 4, "requested": 5}

    @pytest.mark.asyncio
    async def test_lost_race_reports_fresh_inventory(
        self, db_session, ride, passenger, monkeypatch
    ):
        async def seats_taken_meanwhile(repo, ride_id, seats):
            await repo.session.execute(
                update(RideModel)
                .where(RideModel.id == ride_id)
                .values(available_seats=1)
                .execution_options(synchronize_session=False)
            )
            return False

        monkeypatch.setattr(RideRepository, "reserve_seats", seats_taken_meanwhile)
        with pytest.raises(InsufficientCapacity) as exc:
            await book(db_session, passenger, ride.id, seats=2)
        assert exc.value.context == {"available_seats": 1, "requested": 2}


class TestRespondAndCancel:
    @pytest.mark.asyncio
    async def test_confirm_keeps_seats(self, db_session, driver, ride, passenger):
        booking = await book(db_session, passenger, ride.id, seats=2)
        await BookingService(db_session).respond(driver, booking.id, "confirm", "See you at 9")

        await db_session.refresh(ride)
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.driver_note == "See you at 9"
        assert booking.confirmed_at is not None
        assert ride.available_seats == 2

    @pytest.mark.asyncio
    async def test_only_ride_driver_responds(self, db_session, ride, passenger):
        stranger = await make_user(db_session, "Other Driver", Role.DRIVER)
        booking = await book(db_session, passenger, ride.id)
        with pytest.raises(Forbidden):
            await BookingService(db_session).respond(stranger, booking.id, "confirm")

    @pytest.mark.asyncio
    async def test_unknown_action(self, db_session, driver, ride, passenger):
        booking = await book(db_session, passenger, ride.id)
        with pytest.raises(ValidationError):
            await BookingService(db_session).respond(driver, booking.id, "maybe")

    @pytest.mark.asyncio
    async def test_cannot_respond_twice(self, db_session, driver, ride, passenger):
        booking = await book(db_session, passenger, ride.id)
        svc = BookingService(db_session)
        await svc.respond(driver, booking.id, "confirm")
        with pytest.raises(InvalidTransition):
            await svc.respond(driver, booking.id, "reject")

    @pytest.mark.asyncio
    async def test_cancel_confirmed_releases_seats(self, db_session, driver, ride, passenger):
        booking = await book(db_session, passenger, ride.id, seats=3)
        svc = BookingService(db_session)
        await svc.respond(driver, booking.id, "confirm")
        await svc.cancel_booking(passenger, booking.id, "Plans changed")

        await db_session.refresh(ride)
        assert ride.available_seats == 4
        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancelled_by == CancelledBy.PASSENGER
        assert booking.cancellation_reason == "Plans changed"
        assert booking.cancelled_at is not None

    @pytest.mark.asyncio
    async def test_only_passenger_cancels(self, db_session, ride, passenger, other_passenger):
        booking = await book(db_session, passenger, ride.id)
        with pytest.raises(Forbidden):
            await BookingService(db_session).cancel_booking(other_passenger, booking.id)

    @pytest.mark.asyncio
    async def test_cannot_cancel_once_driver_is_coming(self, db_session, driver, ride, passenger):
        booking = await book(db_session, passenger, ride.id)
        svc = BookingService(db_session)
        await svc.respond(driver, booking.id, "confirm")
        await svc.advance(driver, booking.id, BookingStatus.COMING_FOR_PICKUP)

        with pytest.raises(InvalidTransition):
            await svc.cancel_booking(passenger, booking.id)
        await db_session.refresh(ride)
        assert ride.available_seats == 3

    @pytest.mark.asyncio
    async def test_double_cancel_releases_once(self, db_session, ride, passenger):
        booking = await book(db_session, passenger, ride.id, seats=2)
        svc = BookingService(db_session)
        await svc.cancel_booking(passenger, booking.id)
        with pytest.raises(InvalidTransition):
            await svc.cancel_booking(passenger, booking.id)

        await db_session.refresh(ride)
        assert ride.available_seats == 4

    @pytest.mark.asyncio
    async def test_losing_compare_and_set_reports_winning_status(
        self, db_session, driver, ride, passenger
    ):
        booking = await book(db_session, passenger, ride.id)
        # Another request cancels behind this session's back
        await db_session.execute(
            update(BookingModel)
            .where(BookingModel.id == booking.id)
            .values(status=BookingStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )
        assert booking.status == BookingStatus.PENDING

        with pytest.raises(InvalidTransition) as exc:
            await BookingService(db_session)._apply(booking, BookingStatus.CONFIRMED)
        assert exc.value.context["current"] == "cancelled"
        assert booking.status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_transition_is_compare_and_set(self, db_session, ride, passenger):
        booking = await book(db_session, passenger, ride.id)
        repo = BookingRepository(db_session)
        won = await repo.transition(
            booking.id, BookingStatus.PENDING, BookingStatus.CONFIRMED, utcnow()
        )
        lost = await repo.transition(
            booking.id, BookingStatus.PENDING, BookingStatus.REJECTED, utcnow()
        )
        assert (won, lost) == (True, False)


class TestProgress:
    @pytest.mark.asyncio
    async def test_full_chain_completes_and_credits_driver(
        self, db_session, driver, ride, passenger
    ):
        booking = await book(db_session, passenger, ride.id, seats=2)
        svc = BookingService(db_session)
        await svc.respond(driver, booking.id, "confirm")
        for status in PROGRESS_STATUSES:
            await svc.advance(driver, booking.id, status)

        assert booking.status == BookingStatus.COMPLETED
        assert booking.payment_status == PaymentStatus.PAID
        for stamp in (
            "coming_for_pickup_at",
            "picked_up_at",
            "in_transit_at",
            "dropped_off_at",
            "completed_at",
        ):
            assert getattr(booking, stamp) is not None

        profile = await DriverProfileRepository(db_session).get_by_user(driver.id)
        await db_session.refresh(profile)
        assert profile.total_rides == 1
        assert profile.total_earnings == 200.0

    @pytest.mark.asyncio
    async def test_completion_credits_once(self, db_session, driver, ride, passenger):
        booking = await book(db_session, passenger, ride.id)
        svc = BookingService(db_session)
        await svc.respond(driver, booking.id, "confirm")
        for status in PROGRESS_STATUSES:
            await svc.advance(driver, booking.id, status)
        with pytest.raises(InvalidTransition):
            await svc.advance(driver, booking.id, BookingStatus.COMPLETED)

        profile = await DriverProfileRepository(db_session).get_by_user(driver.id)
        await db_session.refresh(profile)
        assert profile.total_rides == 1
        assert profile.total_earnings == 100.0

    @pytest.mark.asyncio
    async def test_skipping_a_step_fails(self, db_session, driver, ride, passenger):
        booking = await book(db_session, passenger, ride.id)
        svc = BookingService(db_session)
        await svc.respond(driver, booking.id, "confirm")

        with pytest.raises(InvalidTransition) as exc:
            await svc.advance(driver, booking.id, BookingStatus.PICKED_UP)
        assert exc.value.context["allowed"] == ["cancelled", "coming-for-pickup"]
        assert booking.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_pending_cannot_progress(self, db_session, driver, ride, passenger):
        booking = await book(db_session, passenger, ride.id)
        with pytest.raises(InvalidTransition):
            await BookingService(db_session).advance(
                driver, booking.id, BookingStatus.COMING_FOR_PICKUP
            )

    @pytest.mark.asyncio
    async def test_progress_target_must_be_a_trip_step(self, db_session, driver, ride, passenger):
        booking = await book(db_session, passenger, ride.id)
        with pytest.raises(ValidationError):
            await BookingService(db_session).advance(driver, booking.id, BookingStatus.CONFIRMED)


class TestRideCancellationCascade:
    @pytest.mark.asyncio
    async def test_cancels_live_bookings_without_releasing(
        self, db_session, driver, ride, passenger, other_passenger
    ):
        svc = BookingService(db_session)
        a = await book(db_session, passenger, ride.id)
        b = await book(db_session, other_passenger, ride.id, seats=2)
        await svc.respond(driver, a.id, "confirm")
        await svc.respond(driver, b.id, "confirm")

        _, cancelled = await RideService(db_session).set_status(
            driver, ride.id, RideStatus.CANCELLED
        )

        assert sorted(cancelled) == sorted([(a.id, passenger.id), (b.id, other_passenger.id)])
        for booking in (a, b):
            await db_session.refresh(booking)
            assert booking.status == BookingStatus.CANCELLED
            assert booking.cancelled_by == CancelledBy.DRIVER
            assert booking.cancellation_reason == "Ride cancelled by driver"
        await db_session.refresh(ride)
        assert ride.status == RideStatus.CANCELLED
        assert ride.available_seats == 1

    @pytest.mark.asyncio
    async def test_leaves_finished_bookings_alone(
        self, db_session, driver, ride, passenger, other_passenger
    ):
        svc = BookingService(db_session)
        kept = await book(db_session, passenger, ride.id)
        rejected = await book(db_session, other_passenger, ride.id)
        await svc.respond(driver, kept.id, "confirm")
        await svc.respond(driver, rejected.id, "reject")
        rides = RideService(db_session)
        await rides.set_status(driver, ride.id, RideStatus.IN_PROGRESS)
        await svc.advance(driver, kept.id, BookingStatus.COMING_FOR_PICKUP)

        _, cancelled = await rides.set_status(driver, ride.id, RideStatus.CANCELLED)

        assert cancelled == []
        await db_session.refresh(kept)
        await db_session.refresh(rejected)
        assert kept.status == BookingStatus.COMING_FOR_PICKUP
        assert rejected.status == BookingStatus.REJECTED


class TestSeatInvariants:
    @pytest.mark.asyncio
    async def test_random_operation_sequences_keep_ledger_balanced(self, db_session, driver):
        rng = random.Random(20261016)
        passengers = [
            await make_user(db_session, f"Rider {i}", Role.PASSENGER) for i in range(6)
        ]
        ride = await post_ride(db_session, driver, seats=5)
        svc = BookingService(db_session)
        history = HistoryService(db_session)
        booking_ids: list[int] = []

        for _ in range(120):
            op = rng.choice(["book", "book", "confirm", "reject", "cancel"])
            try:
                if op == "book" or not booking_ids:
                    p = rng.choice(passengers)
                    b = await book(db_session, p, ride.id, seats=rng.randint(1, 3))
                    booking_ids.append(b.id)
                else:
                    booking_id = rng.choice(booking_ids)
                    if op == "cancel":
                        b = await svc.bookings.get_by_id(booking_id)
                        owner = next(p for p in passengers if p.id == b.passenger_id)
                        await svc.cancel_booking(owner, booking_id)
                    else:
                        await svc.respond(driver, booking_id, op)
            except DomainError:
                pass

            audit = await history.seat_audit(ride.id)
            assert 0 <= audit.available_seats <= audit.total_seats
            assert audit.held_seats <= audit.total_seats
            assert audit.balanced
