"""FastAPI dependency injection helpers."""

from contextlib import AbstractAsyncContextManager, nullcontext
from typing import Callable, Iterable, Optional

from fastapi import BackgroundTasks, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.entities import Principal
from src.domain.enums import Role
from src.domain.errors import Forbidden, Unauthenticated
from src.infrastructure.database import async_session_factory
from src.infrastructure.locks import ride_lock
from src.infrastructure.mailer import Notification, Notifier, build_notifier
from src.infrastructure.redis_client import get_redis
from src.services.notifications import deliver

RideLockFactory = Callable[[int], AbstractAsyncContextManager]

_notifier: Optional[Notifier] = None


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_principal(
    user_id: Optional[int] = Header(None, alias="X-User-Id"),
    roles: str = Header("", alias="X-User-Roles"),
) -> Principal:
    """The gateway authenticates; we only read what it forwards."""
    if user_id is None:
        raise Unauthenticated("Missing X-User-Id header")
    return Principal.from_header(user_id, roles)


def require_roles(*roles: Role):
    async def _check(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.has_role(*roles):
            raise Forbidden(
                "Requires role: " + " or ".join(r.value for r in roles),
                required=[r.value for r in roles],
            )
        return principal

    return _check


async def get_ride_lock() -> RideLockFactory:
    """Per-ride Redis lock, or a no-op when locking is switched off."""
    if not settings.ride_locks_enabled:
        return lambda ride_id: nullcontext()
    client = await get_redis()

    def _lock(ride_id: int) -> AbstractAsyncContextManager:
        return ride_lock(
            client,
            ride_id,
            ttl_seconds=settings.ride_lock_ttl_seconds,
            retry_attempts=settings.ride_lock_retry_attempts,
            retry_delay=settings.ride_lock_retry_delay_seconds,
        )

    return _lock


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = build_notifier(settings)
    return _notifier


def queue_notifications(
    background_tasks: BackgroundTasks,
    notifier: Notifier,
    notifications: Iterable[Notification],
) -> None:
    for notification in notifications:
        background_tasks.add_task(deliver, notifier, notification)
