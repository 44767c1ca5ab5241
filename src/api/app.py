"""
FastAPI application factory.

* Registers routes for rides, bookings, reviews and admin.
* Maps domain errors to ``{"error", "detail", "context"}`` JSON bodies.
* Applies rate-limiting middleware.
* Closes the Redis pool on shutdown via lifespan events.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, bookings, reviews, rides
from src.config import settings
from src.domain.errors import DomainError, ResourceBusy
from src.infrastructure.locks import LockNotAcquired
from src.infrastructure.redis_client import close_redis

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_redis()


# ── Error handlers ────────────────────────────────────────────────────


def _error(status_code: int, code: str, detail: str, context: Optional[dict] = None):
    return JSONResponse(
        status_code=status_code,
        content={"error": code, "detail": detail, "context": jsonable_encoder(context or {})},
    )


async def domain_error_handler(request: Request, exc: DomainError):
    return _error(exc.status_code, exc.code, exc.message, exc.context)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    return _error(
        400,
        "validation_error",
        "Request validation failed",
        {"errors": exc.errors()},
    )


async def lock_error_handler(request: Request, exc: LockNotAcquired):
    return _error(
        ResourceBusy.status_code,
        ResourceBusy.code,
        "Another request is updating this ride; retry shortly",
        {"lock": exc.key},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "detail": "Internal server error"},
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Carpool Booking API",
        description=(
            "Drivers post rides with a fixed number of seats; passengers book "
            "them.  Keeps seat counts consistent under concurrent bookings, "
            "runs the booking lifecycle and aggregates post-ride reviews "
            "into driver ratings."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Errors
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(LockNotAcquired, lock_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(reviews.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
