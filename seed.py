"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 8 sample users (3 of them approved drivers)
  - 5 sample rides between Indian cities (scheduled, one cancelled)
  - bookings in pending / confirmed / completed / rejected states
  - passenger-to-driver and driver-to-passenger reviews on completed trips

Everything after the users goes through the service layer, so seat counts,
fare snapshots, driver totals and ratings come out consistent.
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from src.domain.entities import Location, Principal, utcnow
from src.domain.enums import PROGRESS_STATUSES, Role, RideStatus
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import DriverProfileModel, UserModel
from src.services.bookings import BookingService
from src.services.reviews import ReviewService
from src.services.rides import RideService

USERS = [
    {"name": "Aarav Sharma", "email": "aarav@example.com", "driver": True},
    {"name": "Priya Patel", "email": "priya@example.com", "driver": True},
    {"name": "Rohan Mehta", "email": "rohan@example.com", "driver": True},
    {"name": "Sneha Gupta", "email": "sneha@example.com", "driver": False},
    {"name": "Vikram Singh", "email": "vikram@example.com", "driver": False},
    {"name": "Ananya Reddy", "email": "ananya@example.com", "driver": False},
    {"name": "Karan Joshi", "email": "karan@example.com", "driver": False},
    {"name": "Meera Nair", "email": "meera@example.com", "driver": False},
]

CITIES = {
    "Mumbai": (19.0760, 72.8777),
    "Pune": (18.5204, 73.8567),
    "Bengaluru": (12.9716, 77.5946),
    "Mysuru": (12.2958, 76.6394),
    "Delhi": (28.6139, 77.2090),
    "Jaipur": (26.9124, 75.7873),
}

# (driver index, origin, destination, days ahead, seats, fare)
RIDES = [
    (0, "Mumbai", "Pune", 1, 4, 450.0),
    (0, "Pune", "Mumbai", 3, 3, 450.0),
    (1, "Bengaluru", "Mysuru", 2, 4, 300.0),
    (2, "Delhi", "Jaipur", 1, 6, 600.0),
    (2, "Jaipur", "Delhi", 5, 4, 600.0),
]


def _where(city: str, address: str) -> Location:
    lat, lng = CITIES[city]
    return Location(address=address, city=city, latitude=lat, longitude=lng)


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users / driver profiles ───────────────────────────────────
        principals = []
        for u in USERS:
            m = UserModel(name=u["name"], email=u["email"])
            session.add(m)
            await session.flush()
            roles = {Role.PASSENGER}
            if u["driver"]:
                roles.add(Role.DRIVER)
                session.add(DriverProfileModel(user_id=m.id, is_approved=True))
            principals.append(Principal(id=m.id, roles=frozenset(roles)))
        await session.flush()
        drivers, passengers = principals[:3], principals[3:]
        print(f"  Created {len(principals)} users ({len(drivers)} drivers)")

        # ── Rides ─────────────────────────────────────────────────────
        rides_svc = RideService(session)
        rides = []
        for driver_idx, origin, destination, days, seats, fare in RIDES:
            ride = await rides_svc.create_ride(
                drivers[driver_idx],
                origin=_where(origin, f"{origin} central bus stand"),
                destination=_where(destination, f"{destination} railway station"),
                departure_at=utcnow() + timedelta(days=days, hours=2),
                total_seats=seats,
                fare_per_seat=fare,
                preferences={"smoking": False, "pets": False, "music": True,
                             "ac": True, "luggage_space": "medium"},
            )
            rides.append(ride)
        print(f"  Created {len(rides)} rides")

        # ── Bookings ──────────────────────────────────────────────────
        bookings_svc = BookingService(session)

        async def book(passenger, ride, seats=1):
            return await bookings_svc.create_booking(
                passenger,
                ride_id=ride.id,
                seats=seats,
                pickup=_where(ride.origin_city, "Pickup near main gate"),
                dropoff=_where(ride.destination_city, "Drop at city centre"),
            )

        pending = await book(passengers[0], rides[1], seats=2)
        confirmed = await book(passengers[1], rides[2])
        await bookings_svc.respond(drivers[1], confirmed.id, "confirm")
        rejected = await book(passengers[2], rides[4])
        await bookings_svc.respond(drivers[2], rejected.id, "reject", "Car is full of luggage")

        # A completed trip on ride 0 and one on ride 3
        completed = []
        for passenger, ride, driver in (
            (passengers[3], rides[0], drivers[0]),
            (passengers[4], rides[3], drivers[2]),
        ):
            booking = await book(passenger, ride)
            await bookings_svc.respond(driver, booking.id, "confirm")
            for status in PROGRESS_STATUSES:
                await bookings_svc.advance(driver, booking.id, status)
            completed.append((booking, passenger, driver))

        # One ride cancelled by its driver after a booking
        doomed = await rides_svc.create_ride(
            drivers[1],
            origin=_where("Mysuru", "Mysuru palace"),
            destination=_where("Bengaluru", "Majestic"),
            departure_at=utcnow() + timedelta(days=4),
            total_seats=3,
            fare_per_seat=280.0,
        )
        await book(passengers[0], doomed)
        await rides_svc.set_status(drivers[1], doomed.id, RideStatus.CANCELLED)
        print(
            "  Created bookings: 1 pending (#%d), 1 confirmed, 1 rejected, "
            "%d completed, 1 cancelled with its ride" % (pending.id, len(completed))
        )

        # ── Reviews ───────────────────────────────────────────────────
        reviews_svc = ReviewService(session)
        for (booking, passenger, driver), (p_rating, d_rating) in zip(
            completed, ((5, 4), (4, 5))
        ):
            await reviews_svc.create_review(
                passenger, booking.id, p_rating, "Smooth ride, on time.",
                {"punctuality": 5, "driving_skills": p_rating},
            )
            await reviews_svc.create_review(
                driver, booking.id, d_rating, "Polite passenger."
            )
        print(f"  Created {len(completed) * 2} reviews")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
