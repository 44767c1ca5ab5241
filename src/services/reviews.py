"""
Review ledger and rating aggregator.

* One review per (booking, reviewer); only on completed bookings.
* The reviewer is either the booking's passenger (passenger-to-driver) or
  the ride's driver (driver-to-passenger); the other party is the reviewee.
* Edits and deletions are limited to the reviewer, inside the edit window.
* Any change to a passenger-to-driver review recomputes the driver's
  rating from the full visible review set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.entities import Principal, within_edit_window
from src.domain.enums import BookingStatus, ReviewType
from src.domain.errors import (
    DuplicateReview,
    EditWindowExpired,
    NotCompleted,
    NotFound,
    NotParticipant,
    ValidationError,
)
from src.domain.rating import average_rating, rating_breakdown
from src.infrastructure.models import ReviewModel
from src.infrastructure.repositories import (
    BookingRepository,
    DriverProfileRepository,
    ReviewRepository,
    RideRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class ReviewEligibility:
    can_review: bool
    message: str = ""
    review_type: Optional[ReviewType] = None
    review: Optional[ReviewModel] = None


class RatingAggregator:
    """Stores the mean of a driver's visible passenger-to-driver ratings."""

    def __init__(self, session: AsyncSession):
        self.reviews = ReviewRepository(session)
        self.drivers = DriverProfileRepository(session)

    async def recompute(self, driver_id: int) -> float:
        rating = average_rating(await self.reviews.visible_driver_ratings(driver_id))
        if not await self.drivers.set_rating(driver_id, rating):
            logger.warning("No driver profile for user %d; rating not stored", driver_id)
        else:
            logger.info("Driver %d rating recomputed: %.1f", driver_id, rating)
        return rating


class ReviewService:
    def __init__(self, session: AsyncSession, edit_window_hours: Optional[int] = None):
        self.session = session
        self.reviews = ReviewRepository(session)
        self.bookings = BookingRepository(session)
        self.rides = RideRepository(session)
        self.aggregator = RatingAggregator(session)
        self.edit_window_hours = (
            edit_window_hours
            if edit_window_hours is not None
            else settings.review_edit_window_hours
        )

    async def create_review(
        self,
        reviewer: Principal,
        booking_id: int,
        rating: int,
        comment: Optional[str] = None,
        aspects: Optional[dict[str, int]] = None,
    ) -> ReviewModel:
        self._check_rating(rating)
        booking = await self.bookings.get_by_id(booking_id)
        if not booking:
            raise NotFound("Booking not found", booking_id=booking_id)
        if BookingStatus(booking.status) != BookingStatus.COMPLETED:
            raise NotCompleted("Can only review completed rides")

        ride = await self.rides.get_by_id(booking.ride_id)
        review_type, reviewee_id = self._role_in(reviewer, booking, ride)

        if await self.reviews.find(booking_id, reviewer.id):
            raise DuplicateReview("You have already reviewed this ride")

        review = ReviewModel(
            booking_id=booking_id,
            ride_id=booking.ride_id,
            reviewer_id=reviewer.id,
            reviewee_id=reviewee_id,
            review_type=review_type,
            rating=rating,
            comment=comment,
            aspects=aspects or None,
            is_visible=True,
        )
        try:
            await self.reviews.create(review)
        except IntegrityError as exc:
            raise DuplicateReview("You have already reviewed this ride") from exc

        if review_type == ReviewType.PASSENGER_TO_DRIVER:
            await self.aggregator.recompute(reviewee_id)
        return review

    async def update_review(
        self, reviewer: Principal, review_id: int, changes: dict[str, Any]
    ) -> ReviewModel:
        review = await self._editable(reviewer, review_id)
        if changes.get("rating") is not None:
            self._check_rating(changes["rating"])
            review.rating = changes["rating"]
        if "comment" in changes:
            review.comment = changes["comment"]
        if changes.get("aspects"):
            review.aspects = changes["aspects"]
        await self.reviews.flush()

        if ReviewType(review.review_type) == ReviewType.PASSENGER_TO_DRIVER:
            await self.aggregator.recompute(review.reviewee_id)
        return review

    async def delete_review(self, reviewer: Principal, review_id: int) -> None:
        review = await self._editable(reviewer, review_id)
        reviewee_id = review.reviewee_id
        review_type = ReviewType(review.review_type)
        await self.reviews.delete(review)

        if review_type == ReviewType.PASSENGER_TO_DRIVER:
            await self.aggregator.recompute(reviewee_id)

    async def set_visibility(self, review_id: int, visible: bool) -> ReviewModel:
        review = await self.reviews.get_by_id(review_id)
        if not review:
            raise NotFound("Review not found", review_id=review_id)
        review.is_visible = visible
        await self.reviews.flush()
        if ReviewType(review.review_type) == ReviewType.PASSENGER_TO_DRIVER:
            await self.aggregator.recompute(review.reviewee_id)
        return review

    async def can_review(self, principal: Principal, booking_id: int) -> ReviewEligibility:
        booking = await self.bookings.get_by_id(booking_id)
        if not booking:
            raise NotFound("Booking not found", booking_id=booking_id)
        ride = await self.rides.get_by_id(booking.ride_id)
        try:
            review_type, _ = self._role_in(principal, booking, ride)
        except NotParticipant:
            return ReviewEligibility(False, "Not part of this booking")
        if BookingStatus(booking.status) != BookingStatus.COMPLETED:
            return ReviewEligibility(False, "Ride not completed yet")
        existing = await self.reviews.find(booking_id, principal.id)
        if existing:
            return ReviewEligibility(False, "Already reviewed", review=existing)
        return ReviewEligibility(True, review_type=review_type)

    # ── Reads ─────────────────────────────────────────────────────────

    async def driver_reviews(self, driver_id: int) -> tuple[list[ReviewModel], float]:
        reviews = await self.reviews.list_for_reviewee(
            driver_id, ReviewType.PASSENGER_TO_DRIVER
        )
        profile = await self.aggregator.drivers.get_by_user(driver_id)
        return reviews, (profile.rating if profile else 0.0)

    async def user_reviews(
        self, user_id: int, review_type: Optional[ReviewType] = None
    ) -> tuple[list[ReviewModel], dict]:
        reviews = await self.reviews.list_for_reviewee(user_id, review_type)
        everything = (
            reviews
            if review_type is None
            else await self.reviews.list_for_reviewee(user_id)
        )
        return reviews, rating_breakdown(r.rating for r in everything)

    async def given_by(self, principal: Principal) -> list[ReviewModel]:
        return await self.reviews.list_by_reviewer(principal.id)

    async def received_by(self, principal: Principal) -> tuple[list[ReviewModel], dict]:
        reviews = await self.reviews.list_for_reviewee(principal.id)
        ratings = [r.rating for r in reviews]
        return reviews, {
            "avg_rating": average_rating(ratings),
            "total_reviews": len(ratings),
        }

    # ── Internals ─────────────────────────────────────────────────────

    @staticmethod
    def _check_rating(rating: int) -> None:
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")

    @staticmethod
    def _role_in(principal: Principal, booking, ride) -> tuple[ReviewType, int]:
        if booking.passenger_id == principal.id:
            return ReviewType.PASSENGER_TO_DRIVER, ride.driver_id
        if ride is not None and ride.driver_id == principal.id:
            return ReviewType.DRIVER_TO_PASSENGER, booking.passenger_id
        raise NotParticipant("You are not part of this booking")

    async def _editable(self, reviewer: Principal, review_id: int) -> ReviewModel:
        review = await self.reviews.get_for_reviewer(review_id, reviewer.id)
        if not review:
            raise NotFound("Review not found", review_id=review_id)
        if not within_edit_window(review.created_at, self.edit_window_hours):
            raise EditWindowExpired(
                f"Can only edit reviews within {self.edit_window_hours} hours"
            )
        return review
