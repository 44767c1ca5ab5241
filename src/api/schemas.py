"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.domain.entities import Location
from src.domain.enums import (
    BookingStatus,
    CancelledBy,
    LuggageSpace,
    PaymentMethod,
    PaymentStatus,
    ReviewType,
    RideStatus,
)


# ── Shared ────────────────────────────────────────────────────────────


class LocationIn(BaseModel):
    address: str = Field(..., min_length=1, max_length=255)
    city: Optional[str] = Field(None, max_length=120)
    latitude: float = Field(0.0, ge=-90, le=90)
    longitude: float = Field(0.0, ge=-180, le=180)

    def to_domain(self) -> Location:
        return Location(self.address, self.city, self.latitude, self.longitude)


class Preferences(BaseModel):
    smoking: bool = False
    pets: bool = False
    music: bool = True
    ac: bool = True
    luggage_space: LuggageSpace = LuggageSpace.MEDIUM


class StopIn(BaseModel):
    address: str = Field(..., min_length=1, max_length=255)
    city: Optional[str] = Field(None, max_length=120)
    fare: float = Field(..., ge=0, description="Fare from the origin to this stop.")
    latitude: float = Field(0.0, ge=-90, le=90)
    longitude: float = Field(0.0, ge=-180, le=180)


# ── Ride requests ─────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    origin: LocationIn
    destination: LocationIn
    departure_at: datetime
    total_seats: int = Field(..., ge=1)
    fare_per_seat: float = Field(..., ge=0)
    preferences: Optional[Preferences] = None
    stops: Optional[list[StopIn]] = None
    description: Optional[str] = Field(None, max_length=500)
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID so a retried post creates one ride.",
    )


class RideUpdateRequest(BaseModel):
    departure_at: Optional[datetime] = None
    total_seats: Optional[int] = Field(None, ge=1)
    fare_per_seat: Optional[float] = Field(None, ge=0)
    preferences: Optional[Preferences] = None
    stops: Optional[list[StopIn]] = None
    description: Optional[str] = Field(None, max_length=500)


class RideStatusUpdateRequest(BaseModel):
    status: RideStatus


# ── Booking requests ──────────────────────────────────────────────────


class BookingCreateRequest(BaseModel):
    ride_id: int
    seats_booked: int = Field(1, ge=1)
    pickup_location: LocationIn
    dropoff_location: LocationIn
    passenger_note: Optional[str] = Field(None, max_length=200)
    payment_method: PaymentMethod = PaymentMethod.CASH
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class BookingRespondRequest(BaseModel):
    action: str = Field(..., description="'confirm' or 'reject'")
    driver_note: Optional[str] = Field(None, max_length=200)


class BookingCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingStatusUpdateRequest(BaseModel):
    status: BookingStatus


# ── Review requests ───────────────────────────────────────────────────


class ReviewAspects(BaseModel):
    punctuality: Optional[int] = Field(None, ge=1, le=5)
    behavior: Optional[int] = Field(None, ge=1, le=5)
    communication: Optional[int] = Field(None, ge=1, le=5)
    driving_skills: Optional[int] = Field(None, ge=1, le=5)
    vehicle_condition: Optional[int] = Field(None, ge=1, le=5)

    model_config = {"extra": "forbid"}


class ReviewCreateRequest(BaseModel):
    booking_id: int
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    aspects: Optional[ReviewAspects] = None


class ReviewUpdateRequest(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    aspects: Optional[ReviewAspects] = None


class ReviewVisibilityRequest(BaseModel):
    is_visible: bool


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    driver_id: int
    origin_address: str
    origin_city: str
    origin_lat: float
    origin_lng: float
    destination_address: str
    destination_city: str
    destination_lat: float
    destination_lng: float
    departure_at: datetime
    total_seats: int
    available_seats: int
    fare_per_seat: float
    status: RideStatus
    preferences: Optional[dict[str, Any]] = None
    stops: Optional[list[dict[str, Any]]] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RideDetailResponse(RideResponse):
    booking_ids: list[int] = []


class BookingResponse(BaseModel):
    id: int
    ride_id: int
    passenger_id: int
    seats_booked: int
    fare_per_seat: float
    total_fare: float
    pickup_address: str
    pickup_city: Optional[str] = None
    dropoff_address: str
    dropoff_city: Optional[str] = None
    status: BookingStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    passenger_note: Optional[str] = None
    driver_note: Optional[str] = None
    cancelled_by: Optional[CancelledBy] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    coming_for_pickup_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    in_transit_at: Optional[datetime] = None
    dropped_off_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ReviewResponse(BaseModel):
    id: int
    booking_id: int
    ride_id: int
    reviewer_id: int
    reviewee_id: int
    review_type: ReviewType
    rating: int
    comment: Optional[str] = None
    aspects: Optional[dict[str, int]] = None
    is_visible: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RatingStats(BaseModel):
    avg_rating: float
    total_reviews: int
    five_stars: int = 0
    four_stars: int = 0
    three_stars: int = 0
    two_stars: int = 0
    one_star: int = 0


class DriverReviewsResponse(BaseModel):
    driver_id: int
    rating: float
    total_reviews: int
    reviews: list[ReviewResponse]


class UserReviewsResponse(BaseModel):
    user_id: int
    stats: RatingStats
    reviews: list[ReviewResponse]


class ReceivedReviewsResponse(BaseModel):
    avg_rating: float
    total_reviews: int
    reviews: list[ReviewResponse]


class CanReviewResponse(BaseModel):
    can_review: bool
    message: str = ""
    review_type: Optional[ReviewType] = None
    review: Optional[ReviewResponse] = None

    model_config = {"from_attributes": True}


class StatusBucketResponse(BaseModel):
    status: BookingStatus
    count: int
    total_amount: float

    model_config = {"from_attributes": True}


class PassengerHistoryResponse(BaseModel):
    total_bookings: int
    completed_rides: int
    total_spent: float
    by_status: list[StatusBucketResponse]
    recent_bookings: list[BookingResponse]

    model_config = {"from_attributes": True}


class DriverProfileSummary(BaseModel):
    rating: float
    total_rides: int
    total_earnings: float
    is_approved: bool
    is_available: bool

    model_config = {"from_attributes": True}


class DriverHistoryResponse(BaseModel):
    profile: DriverProfileSummary
    completed_bookings: int
    total_earnings: float
    by_status: list[StatusBucketResponse]
    rides_by_status: dict[str, int]
    recent_bookings: list[BookingResponse]

    model_config = {"from_attributes": True}


class ActiveBookingsResponse(BaseModel):
    as_passenger: list[BookingResponse] = []
    as_driver: list[BookingResponse] = []

    model_config = {"from_attributes": True}


class SeatAuditResponse(BaseModel):
    ride_id: int
    status: RideStatus
    total_seats: int
    available_seats: int
    held_seats: int
    balanced: bool

    model_config = {"from_attributes": True}


class RatingRecomputeResponse(BaseModel):
    driver_id: int
    rating: float


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    detail: str
    context: dict[str, Any] = {}
