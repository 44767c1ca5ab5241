"""
SQLAlchemy ORM models  (maps to PostgreSQL; SQLite in tests).

Tables
------
* ``users``            -- identity mirror (name / email for notifications)
* ``driver_profiles``  -- approval flag, rating aggregate, ride/earning totals
* ``rides``            -- posted trips with their seat inventory
* ``bookings``         -- one passenger's reservation against one ride
* ``reviews``          -- post-ride mutual reviews

Constraints
-----------
* CHECK ``0 <= available_seats <= total_seats`` on ``rides``.
* Partial UNIQUE on ``bookings(ride_id, passenger_id)`` for seat-holding
  statuses: a passenger holds at most one live booking per ride.
* UNIQUE ``reviews(booking_id, reviewer_id)``.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)

from .database import Base
from src.domain.entities import utcnow
from src.domain.enums import (
    BookingStatus,
    CancelledBy,
    PaymentMethod,
    PaymentStatus,
    ReviewType,
    RideStatus,
)


def _enum(enum_cls):
    """Store enum *values* ("in-transit"), not member names."""
    return Enum(
        enum_cls,
        values_callable=lambda e: [m.value for m in e],
        native_enum=False,
        length=32,
    )


_RELEASED_SQL = "status NOT IN ('cancelled', 'rejected')"


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class DriverProfileModel(Base):
    __tablename__ = "driver_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    is_approved = Column(Boolean, default=True, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    rating = Column(Float, default=0.0, nullable=False)
    total_rides = Column(Integer, default=0, nullable=False)
    total_earnings = Column(Float, default=0.0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_driver_rating_range"),
    )


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    origin_address = Column(String(255), nullable=False)
    origin_city = Column(String(120), nullable=False)
    origin_lat = Column(Float, nullable=False, default=0.0)
    origin_lng = Column(Float, nullable=False, default=0.0)
    destination_address = Column(String(255), nullable=False)
    destination_city = Column(String(120), nullable=False)
    destination_lat = Column(Float, nullable=False, default=0.0)
    destination_lng = Column(Float, nullable=False, default=0.0)

    departure_at = Column(DateTime(timezone=True), nullable=False)
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    fare_per_seat = Column(Float, nullable=False)
    status = Column(_enum(RideStatus), default=RideStatus.SCHEDULED, nullable=False)

    preferences = Column(JSON, nullable=True)
    stops = Column(JSON, nullable=True)
    description = Column(String(500), nullable=True)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_rides_available_seats",
        ),
        CheckConstraint("total_seats >= 1", name="ck_rides_total_seats"),
        CheckConstraint("fare_per_seat >= 0", name="ck_rides_fare"),
        Index("idx_rides_cities", "origin_city", "destination_city"),
        Index("idx_rides_departure", "departure_at"),
        Index("idx_rides_status", "status"),
        Index("idx_rides_driver", "driver_id"),
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    passenger_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    seats_booked = Column(Integer, nullable=False)
    # Snapshotted at creation; never recomputed from the ride
    fare_per_seat = Column(Float, nullable=False)
    total_fare = Column(Float, nullable=False)

    pickup_address = Column(String(255), nullable=False)
    pickup_city = Column(String(120), nullable=True)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    dropoff_address = Column(String(255), nullable=False)
    dropoff_city = Column(String(120), nullable=True)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)

    status = Column(_enum(BookingStatus), default=BookingStatus.PENDING, nullable=False)
    payment_status = Column(
        _enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    payment_method = Column(_enum(PaymentMethod), default=PaymentMethod.CASH, nullable=False)

    passenger_note = Column(String(200), nullable=True)
    driver_note = Column(String(200), nullable=True)

    cancelled_by = Column(_enum(CancelledBy), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    coming_for_pickup_at = Column(DateTime(timezone=True), nullable=True)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    in_transit_at = Column(DateTime(timezone=True), nullable=True)
    dropped_off_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("seats_booked >= 1", name="ck_bookings_seats"),
        Index("idx_bookings_ride_passenger", "ride_id", "passenger_id"),
        Index("idx_bookings_passenger_status", "passenger_id", "status"),
        Index("idx_bookings_status", "status"),
        Index(
            "uq_bookings_live_passenger_ride",
            "ride_id",
            "passenger_id",
            unique=True,
            postgresql_where=text(_RELEASED_SQL),
            sqlite_where=text(_RELEASED_SQL),
        ),
    )


class ReviewModel(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    reviewer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    reviewee_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    review_type = Column(_enum(ReviewType), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(String(500), nullable=True)
    aspects = Column(JSON, nullable=True)
    is_visible = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("booking_id", "reviewer_id", name="uq_reviews_booking_reviewer"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating"),
        Index("idx_reviews_reviewee", "reviewee_id"),
        Index("idx_reviews_type", "review_type"),
    )
