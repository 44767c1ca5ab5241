"""
Admin / observability endpoints
===============================

GET  /api/v1/admin/health                            -- simple health check
GET  /api/v1/admin/rides/{ride_id}/seat-audit        -- seat counter vs. held seats
POST /api/v1/admin/drivers/{driver_id}/recompute-rating -- rebuild a driver's rating
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, require_roles
from src.api.middleware import limiter
from src.api.schemas import HealthResponse, RatingRecomputeResponse, SeatAuditResponse
from src.config import settings
from src.domain.entities import Principal
from src.domain.enums import Role
from src.services.history import HistoryService
from src.services.reviews import RatingAggregator

router = APIRouter(prefix="/admin", tags=["admin"])

admin_only = require_roles(Role.ADMIN)


@router.get(
    "/rides/{ride_id}/seat-audit",
    response_model=SeatAuditResponse,
    summary="Compare a ride's seat counter with its bookings",
)
@limiter.limit(settings.rate_limit)
async def seat_audit(
    request: Request,
    ride_id: int,
    admin: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    audit = await HistoryService(db).seat_audit(ride_id)
    return SeatAuditResponse.model_validate(audit)


@router.post(
    "/drivers/{driver_id}/recompute-rating",
    response_model=RatingRecomputeResponse,
    summary="Recompute a driver's rating from visible reviews",
)
@limiter.limit(settings.rate_limit)
async def recompute_rating(
    request: Request,
    driver_id: int,
    admin: Principal = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    rating = await RatingAggregator(db).recompute(driver_id)
    return RatingRecomputeResponse(driver_id=driver_id, rating=rating)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
