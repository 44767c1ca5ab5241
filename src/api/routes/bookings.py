"""
Booking endpoints
=================

POST  /api/v1/bookings                    -- request seats on a ride (passenger)
PATCH /api/v1/bookings/{id}/cancel        -- passenger cancels (pending / confirmed)
PATCH /api/v1/bookings/{id}/respond       -- driver confirms or rejects (pending)
PATCH /api/v1/bookings/{id}/status        -- driver reports trip progress
GET   /api/v1/bookings/my-bookings        -- the passenger's bookings
GET   /api/v1/bookings/active             -- bookings currently under way
GET   /api/v1/bookings/passenger/history  -- passenger dashboard
GET   /api/v1/bookings/driver/history     -- driver dashboard
GET   /api/v1/bookings/driver/all         -- bookings across the driver's rides
GET   /api/v1/bookings/ride/{ride_id}     -- one ride's bookings (its driver)
GET   /api/v1/bookings/{id}               -- booking details (passenger or driver)
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import (
    RideLockFactory,
    get_db,
    get_notifier,
    get_principal,
    get_ride_lock,
    queue_notifications,
    require_roles,
)
from src.api.middleware import limiter
from src.api.schemas import (
    ActiveBookingsResponse,
    BookingCancelRequest,
    BookingCreateRequest,
    BookingRespondRequest,
    BookingResponse,
    BookingStatusUpdateRequest,
    DriverHistoryResponse,
    PassengerHistoryResponse,
)
from src.config import settings
from src.domain.entities import Principal
from src.domain.enums import BookingStatus, Role
from src.infrastructure.mailer import Notifier
from src.services.bookings import BookingService
from src.services.history import HistoryService
from src.services.notifications import NotificationBuilder
from src.services.rides import RideService

router = APIRouter(prefix="/bookings", tags=["bookings"])

passenger_only = require_roles(Role.PASSENGER)
driver_only = require_roles(Role.DRIVER)


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Book seats on a ride",
    responses={409: {"description": "Not enough seats, ride not bookable, or already booked."}},
)
@limiter.limit(settings.rate_limit)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    background_tasks: BackgroundTasks,
    passenger: Principal = Depends(passenger_only),
    db: AsyncSession = Depends(get_db),
    lock: RideLockFactory = Depends(get_ride_lock),
    notifier: Notifier = Depends(get_notifier),
):
    async with lock(body.ride_id):
        booking = await BookingService(db).create_booking(
            passenger,
            ride_id=body.ride_id,
            seats=body.seats_booked,
            pickup=body.pickup_location.to_domain(),
            dropoff=body.dropoff_location.to_domain(),
            passenger_note=body.passenger_note,
            payment_method=body.payment_method,
            idempotency_key=body.idempotency_key,
        )
        ride = await RideService(db).get_ride(booking.ride_id)
        notes = await NotificationBuilder(db).booking_requested(ride, booking)
        await db.commit()
    queue_notifications(background_tasks, notifier, notes)
    return booking


@router.patch("/{booking_id}/cancel", response_model=BookingResponse, summary="Cancel a booking")
@limiter.limit(settings.rate_limit)
async def cancel_booking(
    request: Request,
    booking_id: int,
    background_tasks: BackgroundTasks,
    body: Optional[BookingCancelRequest] = None,
    passenger: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    lock: RideLockFactory = Depends(get_ride_lock),
    notifier: Notifier = Depends(get_notifier),
):
    service = BookingService(db)
    ride_id = await service.ride_id_of(booking_id)
    async with lock(ride_id):
        booking = await service.cancel_booking(
            passenger, booking_id, body.reason if body else None
        )
        ride = await RideService(db).get_ride(ride_id)
        notes = await NotificationBuilder(db).booking_cancelled(ride, booking)
        await db.commit()
    queue_notifications(background_tasks, notifier, notes)
    return booking


@router.patch(
    "/{booking_id}/respond",
    response_model=BookingResponse,
    summary="Confirm or reject a pending booking",
)
@limiter.limit(settings.rate_limit)
async def respond_to_booking(
    request: Request,
    booking_id: int,
    body: BookingRespondRequest,
    background_tasks: BackgroundTasks,
    driver: Principal = Depends(driver_only),
    db: AsyncSession = Depends(get_db),
    lock: RideLockFactory = Depends(get_ride_lock),
    notifier: Notifier = Depends(get_notifier),
):
    service = BookingService(db)
    ride_id = await service.ride_id_of(booking_id)
    async with lock(ride_id):
        booking = await service.respond(driver, booking_id, body.action, body.driver_note)
        ride = await RideService(db).get_ride(ride_id)
        notes = await NotificationBuilder(db).booking_responded(ride, booking)
        await db.commit()
    queue_notifications(background_tasks, notifier, notes)
    return booking


@router.patch(
    "/{booking_id}/status",
    response_model=BookingResponse,
    summary="Advance trip progress",
    description=(
        "confirmed -> coming-for-pickup -> picked-up -> in-transit -> "
        "dropped-off -> completed, one step at a time."
    ),
)
@limiter.limit(settings.rate_limit)
async def update_booking_status(
    request: Request,
    booking_id: int,
    body: BookingStatusUpdateRequest,
    driver: Principal = Depends(driver_only),
    db: AsyncSession = Depends(get_db),
):
    return await BookingService(db).advance(driver, booking_id, body.status)


@router.get("/my-bookings", response_model=list[BookingResponse], summary="My bookings")
@limiter.limit(settings.rate_limit)
async def my_bookings(
    request: Request,
    status: Optional[BookingStatus] = None,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    return await BookingService(db).list_mine(principal, status)


@router.get("/active", response_model=ActiveBookingsResponse, summary="Active bookings")
@limiter.limit(settings.rate_limit)
async def active_bookings(
    request: Request,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    active = await HistoryService(db).active_bookings(principal)
    return ActiveBookingsResponse.model_validate(active)


@router.get(
    "/passenger/history",
    response_model=PassengerHistoryResponse,
    summary="Passenger booking history and totals",
)
@limiter.limit(settings.rate_limit)
async def passenger_history(
    request: Request,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    history = await HistoryService(db).passenger_history(principal)
    return PassengerHistoryResponse.model_validate(history)


@router.get(
    "/driver/history",
    response_model=DriverHistoryResponse,
    summary="Driver booking history and earnings",
)
@limiter.limit(settings.rate_limit)
async def driver_history(
    request: Request,
    driver: Principal = Depends(driver_only),
    db: AsyncSession = Depends(get_db),
):
    history = await HistoryService(db).driver_history(driver)
    return DriverHistoryResponse.model_validate(history)


@router.get(
    "/driver/all",
    response_model=list[BookingResponse],
    summary="Bookings across all of the driver's rides",
)
@limiter.limit(settings.rate_limit)
async def driver_bookings(
    request: Request,
    status: Optional[BookingStatus] = None,
    driver: Principal = Depends(driver_only),
    db: AsyncSession = Depends(get_db),
):
    return await BookingService(db).list_for_driver(driver, status)


@router.get(
    "/ride/{ride_id}",
    response_model=list[BookingResponse],
    summary="Bookings for one ride",
)
@limiter.limit(settings.rate_limit)
async def ride_bookings(
    request: Request,
    ride_id: int,
    driver: Principal = Depends(driver_only),
    db: AsyncSession = Depends(get_db),
):
    return await BookingService(db).list_for_ride(driver, ride_id)


@router.get("/{booking_id}", response_model=BookingResponse, summary="Booking details")
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    return await BookingService(db).get_booking(principal, booking_id)
