"""
Review endpoints
================

POST   /api/v1/reviews                       -- review a completed booking
PUT    /api/v1/reviews/{id}                  -- edit own review (within the window)
DELETE /api/v1/reviews/{id}                  -- delete own review (within the window)
GET    /api/v1/reviews/driver/{driver_id}    -- a driver's public reviews and rating
GET    /api/v1/reviews/user/{user_id}        -- any user's received reviews with stats
GET    /api/v1/reviews/my-reviews            -- reviews the caller wrote
GET    /api/v1/reviews/received              -- reviews the caller received
GET    /api/v1/reviews/can-review/{booking}  -- review eligibility for a booking
PATCH  /api/v1/reviews/{id}/visibility       -- moderation toggle (admin)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_principal, require_roles
from src.api.middleware import limiter
from src.api.schemas import (
    CanReviewResponse,
    DriverReviewsResponse,
    RatingStats,
    ReceivedReviewsResponse,
    ReviewCreateRequest,
    ReviewResponse,
    ReviewUpdateRequest,
    ReviewVisibilityRequest,
    UserReviewsResponse,
)
from src.config import settings
from src.domain.entities import Principal
from src.domain.enums import ReviewType, Role
from src.services.reviews import ReviewService

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.post("", status_code=201, response_model=ReviewResponse, summary="Create a review")
@limiter.limit(settings.rate_limit)
async def create_review(
    request: Request,
    body: ReviewCreateRequest,
    reviewer: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    aspects = body.aspects.model_dump(exclude_none=True) if body.aspects else None
    return await ReviewService(db).create_review(
        reviewer, body.booking_id, body.rating, body.comment, aspects
    )


@router.get(
    "/driver/{driver_id}",
    response_model=DriverReviewsResponse,
    summary="A driver's public reviews",
)
@limiter.limit(settings.rate_limit)
async def driver_reviews(request: Request, driver_id: int, db: AsyncSession = Depends(get_db)):
    reviews, rating = await ReviewService(db).driver_reviews(driver_id)
    return DriverReviewsResponse(
        driver_id=driver_id,
        rating=rating,
        total_reviews=len(reviews),
        reviews=[ReviewResponse.model_validate(r) for r in reviews],
    )


@router.get(
    "/user/{user_id}",
    response_model=UserReviewsResponse,
    summary="Reviews a user received, with star breakdown",
)
@limiter.limit(settings.rate_limit)
async def user_reviews(
    request: Request,
    user_id: int,
    review_type: Optional[ReviewType] = None,
    db: AsyncSession = Depends(get_db),
):
    reviews, stats = await ReviewService(db).user_reviews(user_id, review_type)
    return UserReviewsResponse(
        user_id=user_id,
        stats=RatingStats(**stats),
        reviews=[ReviewResponse.model_validate(r) for r in reviews],
    )


@router.get("/my-reviews", response_model=list[ReviewResponse], summary="Reviews I wrote")
@limiter.limit(settings.rate_limit)
async def my_reviews(
    request: Request,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    return await ReviewService(db).given_by(principal)


@router.get("/received", response_model=ReceivedReviewsResponse, summary="Reviews I received")
@limiter.limit(settings.rate_limit)
async def received_reviews(
    request: Request,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    reviews, stats = await ReviewService(db).received_by(principal)
    return ReceivedReviewsResponse(
        avg_rating=stats["avg_rating"],
        total_reviews=stats["total_reviews"],
        reviews=[ReviewResponse.model_validate(r) for r in reviews],
    )


@router.get(
    "/can-review/{booking_id}",
    response_model=CanReviewResponse,
    summary="Whether the caller may review a booking",
)
@limiter.limit(settings.rate_limit)
async def can_review(
    request: Request,
    booking_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    eligibility = await ReviewService(db).can_review(principal, booking_id)
    return CanReviewResponse.model_validate(eligibility)


@router.put("/{review_id}", response_model=ReviewResponse, summary="Edit a review")
@limiter.limit(settings.rate_limit)
async def update_review(
    request: Request,
    review_id: int,
    body: ReviewUpdateRequest,
    reviewer: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True)
    if body.aspects is not None:
        changes["aspects"] = body.aspects.model_dump(exclude_none=True)
    return await ReviewService(db).update_review(reviewer, review_id, changes)


@router.delete("/{review_id}", status_code=204, summary="Delete a review")
@limiter.limit(settings.rate_limit)
async def delete_review(
    request: Request,
    review_id: int,
    reviewer: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    await ReviewService(db).delete_review(reviewer, review_id)


@router.patch(
    "/{review_id}/visibility",
    response_model=ReviewResponse,
    summary="Show or hide a review",
)
@limiter.limit(settings.rate_limit)
async def set_review_visibility(
    request: Request,
    review_id: int,
    body: ReviewVisibilityRequest,
    admin: Principal = Depends(require_roles(Role.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await ReviewService(db).set_visibility(review_id, body.is_visible)
