"""
Ride endpoints
==============

POST   /api/v1/rides                  -- post a ride (driver)
GET    /api/v1/rides                  -- bookable rides, soonest first
GET    /api/v1/rides/search           -- filter by city, date, seats, fare, proximity
GET    /api/v1/rides/mine             -- the driver's own rides
GET    /api/v1/rides/{ride_id}        -- ride details with seat-holding booking ids
PATCH  /api/v1/rides/{ride_id}/status -- start / complete / cancel (driver)
PUT    /api/v1/rides/{ride_id}        -- edit while no booking is confirmed (driver)
DELETE /api/v1/rides/{ride_id}        -- delete while no booking exists (driver)
"""

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import (
    RideLockFactory,
    get_db,
    get_notifier,
    get_ride_lock,
    queue_notifications,
    require_roles,
)
from src.api.middleware import limiter
from src.api.schemas import (
    RideCreateRequest,
    RideDetailResponse,
    RideResponse,
    RideStatusUpdateRequest,
    RideUpdateRequest,
)
from src.config import settings
from src.domain.entities import Principal
from src.domain.enums import Role, RideStatus
from src.infrastructure.mailer import Notifier
from src.services.notifications import NotificationBuilder
from src.services.rides import RideService

router = APIRouter(prefix="/rides", tags=["rides"])

driver_only = require_roles(Role.DRIVER)


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Post a ride",
)
@limiter.limit(settings.rate_limit)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    driver: Principal = Depends(driver_only),
    db: AsyncSession = Depends(get_db),
):
    preferences = (
        body.preferences.model_dump(mode="json") if body.preferences else None
    )
    stops = [stop.model_dump() for stop in body.stops] if body.stops else None
    return await RideService(db).create_ride(
        driver,
        origin=body.origin.to_domain(),
        destination=body.destination.to_domain(),
        departure_at=body.departure_at,
        total_seats=body.total_seats,
        fare_per_seat=body.fare_per_seat,
        preferences=preferences,
        stops=stops,
        description=body.description,
        idempotency_key=body.idempotency_key,
    )


@router.get("", response_model=list[RideResponse], summary="List bookable rides")
@limiter.limit(settings.rate_limit)
async def list_rides(request: Request, db: AsyncSession = Depends(get_db)):
    return await RideService(db).list_available()


@router.get("/search", response_model=list[RideResponse], summary="Search rides")
@limiter.limit(settings.rate_limit)
async def search_rides(
    request: Request,
    origin_city: Optional[str] = None,
    destination_city: Optional[str] = None,
    on_date: Optional[date] = Query(None, alias="date"),
    seats: int = Query(1, ge=1),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort_by: Literal["departure_at", "fare_per_seat"] = "departure_at",
    sort_order: Literal["asc", "desc"] = "asc",
    near_lat: Optional[float] = Query(None, ge=-90, le=90),
    near_lng: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: float = Query(10.0, gt=0),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).search(
        origin_city=origin_city,
        destination_city=destination_city,
        on_date=on_date,
        seats=seats,
        min_price=min_price,
        max_price=max_price,
        sort_by=sort_by,
        sort_order=sort_order,
        near_lat=near_lat,
        near_lng=near_lng,
        radius_km=radius_km,
    )


@router.get("/mine", response_model=list[RideResponse], summary="The driver's rides")
@limiter.limit(settings.rate_limit)
async def my_rides(
    request: Request,
    status: Optional[RideStatus] = None,
    driver: Principal = Depends(driver_only),
    db: AsyncSession = Depends(get_db),
):
    return await RideService(db).list_mine(driver, status)


@router.get("/{ride_id}", response_model=RideDetailResponse, summary="Ride details")
@limiter.limit(settings.rate_limit)
async def get_ride(request: Request, ride_id: int, db: AsyncSession = Depends(get_db)):
    service = RideService(db)
    detail = RideDetailResponse.model_validate(await service.get_ride(ride_id))
    detail.booking_ids = await service.seat_holder_ids(ride_id)
    return detail


@router.patch(
    "/{ride_id}/status",
    response_model=RideResponse,
    summary="Change ride status",
    description=(
        "scheduled -> in-progress | cancelled; in-progress -> completed | cancelled. "
        "Cancelling also cancels every pending / confirmed booking on the ride."
    ),
)
@limiter.limit(settings.rate_limit)
async def update_ride_status(
    request: Request,
    ride_id: int,
    body: RideStatusUpdateRequest,
    background_tasks: BackgroundTasks,
    driver: Principal = Depends(driver_only),
    db: AsyncSession = Depends(get_db),
    lock: RideLockFactory = Depends(get_ride_lock),
    notifier: Notifier = Depends(get_notifier),
):
    async with lock(ride_id):
        ride, cancelled = await RideService(db).set_status(driver, ride_id, body.status)
        notes = await NotificationBuilder(db).ride_cancelled(ride, cancelled)
        await db.commit()
    queue_notifications(background_tasks, notifier, notes)
    return ride


@router.put("/{ride_id}", response_model=RideResponse, summary="Edit a ride")
@limiter.limit(settings.rate_limit)
async def update_ride(
    request: Request,
    ride_id: int,
    body: RideUpdateRequest,
    driver: Principal = Depends(driver_only),
    db: AsyncSession = Depends(get_db),
    lock: RideLockFactory = Depends(get_ride_lock),
):
    changes = body.model_dump(exclude_unset=True)
    if body.preferences is not None:
        changes["preferences"] = body.preferences.model_dump(mode="json")
    async with lock(ride_id):
        ride = await RideService(db).update_ride(driver, ride_id, changes)
        await db.commit()
    return ride


@router.delete("/{ride_id}", status_code=204, summary="Delete a ride without bookings")
@limiter.limit(settings.rate_limit)
async def delete_ride(
    request: Request,
    ride_id: int,
    driver: Principal = Depends(driver_only),
    db: AsyncSession = Depends(get_db),
    lock: RideLockFactory = Depends(get_ride_lock),
):
    async with lock(ride_id):
        await RideService(db).delete_ride(driver, ride_id)
        await db.commit()
