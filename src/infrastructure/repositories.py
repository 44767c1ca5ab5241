"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Shared counters and statuses are never read-modified-written in Python:
``reserve_seats`` / ``release_seats`` and the status ``transition`` methods
are single guarded UPDATEs whose WHERE clause re-checks the precondition,
so of two racing writers exactly one sees ``rowcount == 1``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    BookingModel,
    DriverProfileModel,
    ReviewModel,
    RideModel,
    UserModel,
)
from src.domain.enums import (
    ACTIVE_STATUSES,
    STATUS_TIMESTAMP_FIELDS,
    BookingStatus,
    CancelledBy,
    ReviewType,
    RideStatus,
    SEAT_HOLDING_STATUSES,
)


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(
        self, ride_id: int, *, for_update: bool = False
    ) -> Optional[RideModel]:
        return await self.session.get(
            RideModel, ride_id, with_for_update=for_update, populate_existing=for_update
        )

    async def get_by_idempotency_key(self, key: str) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel).where(RideModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def refresh(self, ride: RideModel) -> RideModel:
        await self.session.refresh(ride)
        return ride

    async def reserve_seats(self, ride_id: int, seats: int) -> bool:
        """Atomic check-and-decrement; False when the guard rejects it."""
        result = await self.session.execute(
            update(RideModel)
            .where(
                RideModel.id == ride_id,
                RideModel.status == RideStatus.SCHEDULED,
                RideModel.available_seats >= seats,
            )
            .values(available_seats=RideModel.available_seats - seats)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_seats(self, ride_id: int, seats: int) -> bool:
        result = await self.session.execute(
            update(RideModel)
            .where(
                RideModel.id == ride_id,
                RideModel.available_seats + seats <= RideModel.total_seats,
            )
            .values(available_seats=RideModel.available_seats + seats)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def resize(
        self,
        ride_id: int,
        *,
        expected_available: int,
        total_seats: int,
        available_seats: int,
    ) -> bool:
        """Optimistic capacity edit: applies only if no seat moved meanwhile."""
        result = await self.session.execute(
            update(RideModel)
            .where(
                RideModel.id == ride_id,
                RideModel.status == RideStatus.SCHEDULED,
                RideModel.available_seats == expected_available,
            )
            .values(total_seats=total_seats, available_seats=available_seats)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def transition_status(
        self, ride_id: int, expected: RideStatus, target: RideStatus
    ) -> bool:
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.status == expected)
            .values(status=target)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete(self, ride: RideModel) -> None:
        await self.session.delete(ride)
        await self.session.flush()

    async def list_bookable(self, now: datetime, limit: int) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.status == RideStatus.SCHEDULED,
                RideModel.available_seats >= 1,
                RideModel.departure_at >= now,
            )
            .order_by(RideModel.departure_at, RideModel.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def search(
        self,
        *,
        now: datetime,
        seats: int = 1,
        origin_city: Optional[str] = None,
        destination_city: Optional[str] = None,
        day_start: Optional[datetime] = None,
        day_end: Optional[datetime] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort_by: str = "departure_at",
        descending: bool = False,
    ) -> list[RideModel]:
        query = select(RideModel).where(
            RideModel.status == RideStatus.SCHEDULED,
            RideModel.available_seats >= seats,
        )
        if origin_city:
            query = query.where(RideModel.origin_city.ilike(f"%{origin_city}%"))
        if destination_city:
            query = query.where(
                RideModel.destination_city.ilike(f"%{destination_city}%")
            )
        if day_start is not None and day_end is not None:
            query = query.where(
                RideModel.departure_at >= day_start, RideModel.departure_at < day_end
            )
        else:
            query = query.where(RideModel.departure_at >= now)
        if min_price is not None:
            query = query.where(RideModel.fare_per_seat >= min_price)
        if max_price is not None:
            query = query.where(RideModel.fare_per_seat <= max_price)

        column = RideModel.fare_per_seat if sort_by == "fare_per_seat" else RideModel.departure_at
        query = query.order_by(column.desc() if descending else column.asc(), RideModel.id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_for_driver(
        self, driver_id: int, status: Optional[RideStatus] = None
    ) -> list[RideModel]:
        query = select(RideModel).where(RideModel.driver_id == driver_id)
        if status is not None:
            query = query.where(RideModel.status == status)
        result = await self.session.execute(
            query.order_by(RideModel.departure_at.desc(), RideModel.id.desc())
        )
        return list(result.scalars().all())

    async def count_by_status_for_driver(self, driver_id: int) -> list[tuple[RideStatus, int]]:
        result = await self.session.execute(
            select(RideModel.status, func.count())
            .where(RideModel.driver_id == driver_id)
            .group_by(RideModel.status)
        )
        return [(RideStatus(s), c) for s, c in result.all()]


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: BookingModel) -> BookingModel:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_by_id(
        self, booking_id: int, *, for_update: bool = False
    ) -> Optional[BookingModel]:
        return await self.session.get(
            BookingModel,
            booking_id,
            with_for_update=for_update,
            populate_existing=for_update,
        )

    async def get_by_idempotency_key(self, key: str) -> Optional[BookingModel]:
        result = await self.session.execute(
            select(BookingModel).where(BookingModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def refresh(self, booking: BookingModel) -> BookingModel:
        await self.session.refresh(booking)
        return booking

    async def find_live_for_passenger(
        self, ride_id: int, passenger_id: int
    ) -> Optional[BookingModel]:
        result = await self.session.execute(
            select(BookingModel).where(
                BookingModel.ride_id == ride_id,
                BookingModel.passenger_id == passenger_id,
                BookingModel.status.in_(list(SEAT_HOLDING_STATUSES)),
            )
        )
        return result.scalars().first()

    async def transition(
        self,
        booking_id: int,
        expected: BookingStatus,
        target: BookingStatus,
        now: datetime,
        **values,
    ) -> bool:
        """Compare-and-set the status, stamping the target's timestamp."""
        stamp = STATUS_TIMESTAMP_FIELDS.get(target)
        if stamp:
            values[stamp] = now
        result = await self.session.execute(
            update(BookingModel)
            .where(BookingModel.id == booking_id, BookingModel.status == expected)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def cancel_live_for_ride(
        self, ride_id: int, now: datetime, reason: Optional[str] = None
    ) -> list[tuple[int, int]]:
        """Bulk-cancel pending/confirmed bookings; returns (id, passenger_id)."""
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.ride_id == ride_id,
                BookingModel.status.in_(
                    [BookingStatus.PENDING, BookingStatus.CONFIRMED]
                ),
            )
            .values(
                status=BookingStatus.CANCELLED,
                cancelled_by=CancelledBy.DRIVER,
                cancellation_reason=reason,
                cancelled_at=now,
            )
            .returning(BookingModel.id, BookingModel.passenger_id)
            .execution_options(synchronize_session=False)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def list_for_ride(self, ride_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.ride_id == ride_id)
            .order_by(BookingModel.created_at, BookingModel.id)
        )
        return list(result.scalars().all())

    async def seat_holders(self, ride_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.ride_id == ride_id,
                BookingModel.status.in_(list(SEAT_HOLDING_STATUSES)),
            )
            .order_by(BookingModel.created_at, BookingModel.id)
        )
        return list(result.scalars().all())

    async def count_for_ride(
        self, ride_id: int, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> int:
        query = (
            select(func.count())
            .select_from(BookingModel)
            .where(BookingModel.ride_id == ride_id)
        )
        if statuses is not None:
            query = query.where(BookingModel.status.in_(list(statuses)))
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def list_for_passenger(
        self,
        passenger_id: int,
        status: Optional[BookingStatus] = None,
        statuses: Optional[Sequence[BookingStatus]] = None,
        limit: Optional[int] = None,
    ) -> list[BookingModel]:
        query = select(BookingModel).where(BookingModel.passenger_id == passenger_id)
        if status is not None:
            query = query.where(BookingModel.status == status)
        if statuses is not None:
            query = query.where(BookingModel.status.in_(list(statuses)))
        query = query.order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_for_driver(
        self,
        driver_id: int,
        status: Optional[BookingStatus] = None,
        statuses: Optional[Sequence[BookingStatus]] = None,
        limit: Optional[int] = None,
    ) -> list[BookingModel]:
        """Bookings across every ride posted by *driver_id*."""
        query = (
            select(BookingModel)
            .join(RideModel, RideModel.id == BookingModel.ride_id)
            .where(RideModel.driver_id == driver_id)
        )
        if status is not None:
            query = query.where(BookingModel.status == status)
        if statuses is not None:
            query = query.where(BookingModel.status.in_(list(statuses)))
        query = query.order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_active_for_passenger(self, passenger_id: int) -> list[BookingModel]:
        return await self.list_for_passenger(passenger_id, statuses=ACTIVE_STATUSES)

    async def list_active_for_driver(self, driver_id: int) -> list[BookingModel]:
        return await self.list_for_driver(driver_id, statuses=ACTIVE_STATUSES)

    async def stats_for_passenger(
        self, passenger_id: int
    ) -> list[tuple[BookingStatus, int, float]]:
        result = await self.session.execute(
            select(
                BookingModel.status,
                func.count(),
                func.coalesce(func.sum(BookingModel.total_fare), 0.0),
            )
            .where(BookingModel.passenger_id == passenger_id)
            .group_by(BookingModel.status)
        )
        return [(BookingStatus(s), c, float(t)) for s, c, t in result.all()]

    async def stats_for_driver(
        self, driver_id: int
    ) -> list[tuple[BookingStatus, int, float]]:
        result = await self.session.execute(
            select(
                BookingModel.status,
                func.count(),
                func.coalesce(func.sum(BookingModel.total_fare), 0.0),
            )
            .join(RideModel, RideModel.id == BookingModel.ride_id)
            .where(RideModel.driver_id == driver_id)
            .group_by(BookingModel.status)
        )
        return [(BookingStatus(s), c, float(t)) for s, c, t in result.all()]


class ReviewRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, review: ReviewModel) -> ReviewModel:
        self.session.add(review)
        await self.session.flush()
        return review

    async def get_by_id(self, review_id: int) -> Optional[ReviewModel]:
        return await self.session.get(ReviewModel, review_id)

    async def get_for_reviewer(
        self, review_id: int, reviewer_id: int
    ) -> Optional[ReviewModel]:
        result = await self.session.execute(
            select(ReviewModel).where(
                ReviewModel.id == review_id, ReviewModel.reviewer_id == reviewer_id
            )
        )
        return result.scalar_one_or_none()

    async def find(self, booking_id: int, reviewer_id: int) -> Optional[ReviewModel]:
        result = await self.session.execute(
            select(ReviewModel).where(
                ReviewModel.booking_id == booking_id,
                ReviewModel.reviewer_id == reviewer_id,
            )
        )
        return result.scalar_one_or_none()

    async def delete(self, review: ReviewModel) -> None:
        await self.session.delete(review)
        await self.session.flush()

    async def flush(self) -> None:
        await self.session.flush()

    async def visible_driver_ratings(self, driver_id: int) -> list[int]:
        result = await self.session.execute(
            select(ReviewModel.rating).where(
                ReviewModel.reviewee_id == driver_id,
                ReviewModel.review_type == ReviewType.PASSENGER_TO_DRIVER,
                ReviewModel.is_visible.is_(True),
            )
        )
        return list(result.scalars().all())

    async def list_for_reviewee(
        self,
        reviewee_id: int,
        review_type: Optional[ReviewType] = None,
        visible_only: bool = True,
    ) -> list[ReviewModel]:
        query = select(ReviewModel).where(ReviewModel.reviewee_id == reviewee_id)
        if review_type is not None:
            query = query.where(ReviewModel.review_type == review_type)
        if visible_only:
            query = query.where(ReviewModel.is_visible.is_(True))
        result = await self.session.execute(
            query.order_by(ReviewModel.created_at.desc(), ReviewModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_by_reviewer(self, reviewer_id: int) -> list[ReviewModel]:
        result = await self.session.execute(
            select(ReviewModel)
            .where(ReviewModel.reviewer_id == reviewer_id)
            .order_by(ReviewModel.created_at.desc(), ReviewModel.id.desc())
        )
        return list(result.scalars().all())


class DriverProfileRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_user(self, user_id: int) -> Optional[DriverProfileModel]:
        result = await self.session.execute(
            select(DriverProfileModel).where(DriverProfileModel.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def record_completed_booking(self, user_id: int, fare: float) -> bool:
        """Atomic increment of the driver's ride count and earnings."""
        result = await self.session.execute(
            update(DriverProfileModel)
            .where(DriverProfileModel.user_id == user_id)
            .values(
                total_rides=DriverProfileModel.total_rides + 1,
                total_earnings=DriverProfileModel.total_earnings + fare,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_rating(self, user_id: int, rating: float) -> bool:
        result = await self.session.execute(
            update(DriverProfileModel)
            .where(DriverProfileModel.user_id == user_id)
            .values(rating=rating)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def emails_for(self, user_ids: Iterable[int]) -> dict[int, str]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        result = await self.session.execute(
            select(UserModel.id, UserModel.email).where(UserModel.id.in_(ids))
        )
        return {uid: email for uid, email in result.all()}
