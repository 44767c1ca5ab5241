"""Ride posting, editing, status changes and search."""

from datetime import timedelta

import pytest

from src.domain.entities import Location, utcnow
from src.domain.enums import BookingStatus, Role, RideStatus
from src.domain.errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from src.services.bookings import BookingService
from src.services.rides import RideService
from tests.conftest import make_user, post_ride, where


async def hold(session, passenger, ride_id, seats):
    return await BookingService(session).create_booking(
        passenger,
        ride_id=ride_id,
        seats=seats,
        pickup=where("Gate 1"),
        dropoff=where("Gate 2"),
    )


class TestCreateRide:
    @pytest.mark.asyncio
    async def test_new_ride_is_scheduled_with_all_seats_free(self, db_session, driver):
        ride = await post_ride(db_session, driver, seats=3, fare=120.5)

        assert ride.id is not None
        assert ride.status == RideStatus.SCHEDULED
        assert ride.total_seats == 3
        assert ride.available_seats == 3
        assert ride.fare_per_seat == 120.5
        assert ride.driver_id == driver.id

    @pytest.mark.asyncio
    async def test_departure_must_be_in_future(self, db_session, driver):
        with pytest.raises(ValidationError, match="future"):
            await post_ride(db_session, driver, days_ahead=-1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seats", [0, 9])
    async def test_capacity_bounds(self, db_session, driver, seats):
        with pytest.raises(ValidationError):
            await post_ride(db_session, driver, seats=seats)

    @pytest.mark.asyncio
    async def test_negative_fare(self, db_session, driver):
        with pytest.raises(ValidationError):
            await post_ride(db_session, driver, fare=-1.0)

    @pytest.mark.asyncio
    async def test_driver_must_be_approved(self, db_session):
        pending = await make_user(db_session, "New Driver", Role.DRIVER, approved=False)
        with pytest.raises(ValidationError, match="pending approval"):
            await post_ride(db_session, pending)

    @pytest.mark.asyncio
    async def test_driver_needs_profile(self, db_session, passenger):
        with pytest.raises(ValidationError, match="profile"):
            await post_ride(db_session, passenger)

    @pytest.mark.asyncio
    async def test_origin_city_required(self, db_session, driver):
        with pytest.raises(ValidationError):
            await RideService(db_session).create_ride(
                driver,
                origin=Location(address="Somewhere"),
                destination=where(),
                departure_at=utcnow() + timedelta(days=1),
                total_seats=2,
                fare_per_seat=50.0,
            )

    @pytest.mark.asyncio
    async def test_idempotency_key_replays(self, db_session, driver):
        svc = RideService(db_session)
        kwargs = dict(
            origin=where("A", "Mumbai"),
            destination=where("B", "Pune"),
            departure_at=utcnow() + timedelta(days=2),
            total_seats=2,
            fare_per_seat=80.0,
            idempotency_key="ride-abc",
        )
        first = await svc.create_ride(driver, **kwargs)
        second = await svc.create_ride(driver, **kwargs)
        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_idempotency_key_bound_to_original_trip(self, db_session, driver):
        svc = RideService(db_session)
        kwargs = dict(
            origin=where("A", "Mumbai"),
            destination=where("B", "Pune"),
            departure_at=utcnow() + timedelta(days=2),
            total_seats=2,
            fare_per_seat=80.0,
            idempotency_key="ride-xyz",
        )
        first = await svc.create_ride(driver, **kwargs)

        with pytest.raises(Conflict) as exc:
            await svc.create_ride(driver, **{**kwargs, "fare_per_seat": 95.0})
        assert exc.value.context == {"ride_id": first.id}
        with pytest.raises(Conflict):
            await svc.create_ride(driver, **{**kwargs, "destination": where("C", "Nashik")})

    @pytest.mark.asyncio
    async def test_stops_are_stored_in_order(self, db_session, driver):
        stops = [
            {"address": "Lonavala bus stand", "city": "Lonavala", "fare": 60.0},
            {"address": "Talegaon chowk", "city": "Talegaon", "fare": 85.0},
        ]
        ride = await RideService(db_session).create_ride(
            driver,
            origin=where("Dadar station", "Mumbai"),
            destination=where("Shivaji Nagar", "Pune"),
            departure_at=utcnow() + timedelta(days=1),
            total_seats=3,
            fare_per_seat=100.0,
            stops=stops,
        )
        await db_session.refresh(ride)
        assert ride.stops == stops

    @pytest.mark.asyncio
    async def test_stops_default_to_empty(self, db_session, driver):
        ride = await post_ride(db_session, driver)
        assert ride.stops == []

    @pytest.mark.asyncio
    async def test_negative_stop_fare_rejected(self, db_session, driver):
        with pytest.raises(ValidationError, match="Stop fare"):
            await RideService(db_session).create_ride(
                driver,
                origin=where(),
                destination=where(),
                departure_at=utcnow() + timedelta(days=1),
                total_seats=2,
                fare_per_seat=50.0,
                stops=[{"address": "Halfway", "fare": -5.0}],
            )


class TestUpdateRide:
    @pytest.mark.asyncio
    async def test_edits_fare_and_description(self, db_session, driver, ride):
        updated = await RideService(db_session).update_ride(
            driver, ride.id, {"fare_per_seat": 150.0, "description": "AC car"}
        )
        assert updated.fare_per_seat == 150.0
        assert updated.description == "AC car"

    @pytest.mark.asyncio
    async def test_null_clears_optional_fields_only(self, db_session, driver, ride):
        svc = RideService(db_session)
        await svc.update_ride(
            driver, ride.id, {"description": "AC car", "preferences": {"pets": True}}
        )

        updated = await svc.update_ride(
            driver,
            ride.id,
            {"description": None, "preferences": None, "fare_per_seat": None},
        )
        assert updated.description is None
        assert updated.preferences is None
        assert updated.fare_per_seat == 100.0

    @pytest.mark.asyncio
    async def test_edits_and_clears_stops(self, db_session, driver, ride):
        svc = RideService(db_session)
        stop = {"address": "Khopoli exit", "city": "Khopoli", "fare": 40.0}
        updated = await svc.update_ride(driver, ride.id, {"stops": [stop]})
        assert updated.stops == [stop]

        updated = await svc.update_ride(driver, ride.id, {"stops": None})
        assert updated.stops == []

    @pytest.mark.asyncio
    async def test_resize_keeps_pending_reservations(self, db_session, driver, ride, passenger):
        await hold(db_session, passenger, ride.id, 2)
        updated = await RideService(db_session).update_ride(
            driver, ride.id, {"total_seats": 3}
        )
        assert updated.total_seats == 3
        assert updated.available_seats == 1

    @pytest.mark.asyncio
    async def test_cannot_shrink_below_pending(self, db_session, driver, ride, passenger):
        await hold(db_session, passenger, ride.id, 3)
        with pytest.raises(ValidationError):
            await RideService(db_session).update_ride(driver, ride.id, {"total_seats": 2})
        await db_session.refresh(ride)
        assert (ride.total_seats, ride.available_seats) == (4, 1)

    @pytest.mark.asyncio
    async def test_confirmed_bookings_lock_the_ride(self, db_session, driver, ride, passenger):
        booking = await hold(db_session, passenger, ride.id, 1)
        await BookingService(db_session).respond(driver, booking.id, "confirm")
        with pytest.raises(Conflict):
            await RideService(db_session).update_ride(driver, ride.id, {"fare_per_seat": 1.0})

    @pytest.mark.asyncio
    async def test_only_owner_edits(self, db_session, ride):
        stranger = await make_user(db_session, "Other Driver", Role.DRIVER)
        with pytest.raises(Forbidden):
            await RideService(db_session).update_ride(stranger, ride.id, {"description": "x"})

    @pytest.mark.asyncio
    async def test_only_scheduled_rides_edit(self, db_session, driver, ride):
        svc = RideService(db_session)
        await svc.set_status(driver, ride.id, RideStatus.IN_PROGRESS)
        with pytest.raises(Conflict):
            await svc.update_ride(driver, ride.id, {"description": "late"})


class TestRideStatus:
    @pytest.mark.asyncio
    async def test_runs_to_completion(self, db_session, driver, ride):
        svc = RideService(db_session)
        await svc.set_status(driver, ride.id, RideStatus.IN_PROGRESS)
        updated, cancelled = await svc.set_status(driver, ride.id, RideStatus.COMPLETED)
        assert updated.status == RideStatus.COMPLETED
        assert cancelled == []

    @pytest.mark.asyncio
    async def test_cannot_skip_in_progress(self, db_session, driver, ride):
        with pytest.raises(InvalidTransition):
            await RideService(db_session).set_status(driver, ride.id, RideStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_cancelled_is_terminal(self, db_session, driver, ride):
        svc = RideService(db_session)
        await svc.set_status(driver, ride.id, RideStatus.CANCELLED)
        with pytest.raises(InvalidTransition):
            await svc.set_status(driver, ride.id, RideStatus.SCHEDULED)

    @pytest.mark.asyncio
    async def test_only_owner_changes_status(self, db_session, ride):
        stranger = await make_user(db_session, "Other Driver", Role.DRIVER)
        with pytest.raises(Forbidden):
            await RideService(db_session).set_status(stranger, ride.id, RideStatus.CANCELLED)


class TestDeleteRide:
    @pytest.mark.asyncio
    async def test_delete_without_bookings(self, db_session, driver, ride):
        svc = RideService(db_session)
        await svc.delete_ride(driver, ride.id)
        with pytest.raises(NotFound):
            await svc.get_ride(ride.id)

    @pytest.mark.asyncio
    async def test_any_booking_blocks_delete(self, db_session, driver, ride, passenger):
        booking = await hold(db_session, passenger, ride.id, 1)
        await BookingService(db_session).cancel_booking(passenger, booking.id)
        with pytest.raises(Conflict):
            await RideService(db_session).delete_ride(driver, ride.id)


class TestSearch:
    @pytest.mark.asyncio
    async def test_city_match_is_case_insensitive_substring(self, db_session, driver):
        await post_ride(db_session, driver, origin_city="Mumbai", destination_city="Pune")
        await post_ride(db_session, driver, origin_city="Delhi", destination_city="Jaipur")

        found = await RideService(db_session).search(origin_city="mum", destination_city="PUN")
        assert [(r.origin_city, r.destination_city) for r in found] == [("Mumbai", "Pune")]

    @pytest.mark.asyncio
    async def test_seat_and_price_filters(self, db_session, driver):
        small = await post_ride(db_session, driver, seats=1, fare=50.0)
        big = await post_ride(db_session, driver, seats=4, fare=300.0)
        svc = RideService(db_session)

        assert [r.id for r in await svc.search(seats=2)] == [big.id]
        assert [r.id for r in await svc.search(max_price=100.0)] == [small.id]
        assert [r.id for r in await svc.search(min_price=100.0)] == [big.id]

    @pytest.mark.asyncio
    async def test_date_filter_and_sorting(self, db_session, driver):
        cheap = await post_ride(db_session, driver, fare=80.0, days_ahead=1)
        dear = await post_ride(db_session, driver, fare=200.0, days_ahead=1)
        later = await post_ride(db_session, driver, fare=90.0, days_ahead=3)
        svc = RideService(db_session)

        tomorrow = (utcnow() + timedelta(days=1)).date()
        on_day = await svc.search(on_date=tomorrow, sort_by="fare_per_seat", sort_order="desc")
        assert [r.id for r in on_day] == [dear.id, cheap.id]

        everything = await svc.search(sort_by="fare_per_seat")
        assert [r.id for r in everything] == [cheap.id, later.id, dear.id]

    @pytest.mark.asyncio
    async def test_excludes_full_and_cancelled_rides(self, db_session, driver, passenger):
        full = await post_ride(db_session, driver, seats=1)
        gone = await post_ride(db_session, driver)
        open_ride = await post_ride(db_session, driver)
        await hold(db_session, passenger, full.id, 1)
        await RideService(db_session).set_status(driver, gone.id, RideStatus.CANCELLED)

        svc = RideService(db_session)
        assert [r.id for r in await svc.search()] == [open_ride.id]
        assert [r.id for r in await svc.list_available()] == [open_ride.id]

    @pytest.mark.asyncio
    async def test_proximity_filter(self, db_session, driver):
        svc = RideService(db_session)
        far = await svc.create_ride(
            driver,
            origin=Location("Connaught Place", "Delhi", 28.6315, 77.2167),
            destination=Location("Pink City", "Jaipur", 26.9124, 75.7873),
            departure_at=utcnow() + timedelta(days=1),
            total_seats=3,
            fare_per_seat=500.0,
        )
        near = await post_ride(db_session, driver)

        found = await svc.search(near_lat=18.53, near_lng=73.86, radius_km=5)
        assert [r.id for r in found] == [near.id]
        assert far.id not in [r.id for r in found]

    @pytest.mark.asyncio
    async def test_seat_holder_ids(self, db_session, driver, ride, passenger, other_passenger):
        kept = await hold(db_session, passenger, ride.id, 1)
        dropped = await hold(db_session, other_passenger, ride.id, 1)
        await BookingService(db_session).respond(driver, dropped.id, "reject")

        assert await RideService(db_session).seat_holder_ids(ride.id) == [kept.id]
        assert dropped.status == BookingStatus.REJECTED
