"""
Booking / ride notifications.

Builders turn a committed state change into ``Notification`` records
addressed by email; ``deliver`` is what the routes queue as a background
task once the transaction is committed.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.enums import BookingStatus
from src.infrastructure.mailer import Notification, Notifier
from src.infrastructure.models import BookingModel, RideModel
from src.infrastructure.repositories import UserRepository

logger = logging.getLogger(__name__)


def _route(ride: RideModel) -> str:
    return f"{ride.origin_city} -> {ride.destination_city}"


class NotificationBuilder:
    def __init__(self, session: AsyncSession):
        self.users = UserRepository(session)

    async def _to(self, user_id: int, subject: str, body: str) -> list[Notification]:
        emails = await self.users.emails_for([user_id])
        if user_id not in emails:
            logger.warning("No email on file for user %d; notification dropped", user_id)
            return []
        return [Notification(emails[user_id], subject, body)]

    async def booking_requested(
        self, ride: RideModel, booking: BookingModel
    ) -> list[Notification]:
        return await self._to(
            ride.driver_id,
            "New booking request",
            f"{booking.seats_booked} seat(s) requested on your ride {_route(ride)} "
            f"departing {ride.departure_at:%Y-%m-%d %H:%M} (booking #{booking.id}).",
        )

    async def booking_responded(
        self, ride: RideModel, booking: BookingModel
    ) -> list[Notification]:
        verb = (
            "confirmed"
            if BookingStatus(booking.status) == BookingStatus.CONFIRMED
            else "rejected"
        )
        body = f"Your booking #{booking.id} on {_route(ride)} was {verb}."
        if booking.driver_note:
            body += f" Driver note: {booking.driver_note}"
        return await self._to(booking.passenger_id, f"Booking {verb}", body)

    async def booking_cancelled(
        self, ride: RideModel, booking: BookingModel
    ) -> list[Notification]:
        body = f"Booking #{booking.id} on your ride {_route(ride)} was cancelled."
        if booking.cancellation_reason:
            body += f" Reason: {booking.cancellation_reason}"
        return await self._to(ride.driver_id, "Booking cancelled", body)

    async def ride_cancelled(
        self, ride: RideModel, cancelled: Iterable[tuple[int, int]]
    ) -> list[Notification]:
        cancelled = list(cancelled)
        emails = await self.users.emails_for(passenger_id for _, passenger_id in cancelled)
        return [
            Notification(
                emails[passenger_id],
                "Ride cancelled",
                f"The ride {_route(ride)} was cancelled by the driver; "
                f"booking #{booking_id} is cancelled.",
            )
            for booking_id, passenger_id in cancelled
            if passenger_id in emails
        ]


async def deliver(notifier: Notifier, notification: Notification) -> None:
    try:
        await notifier.send(notification)
    except Exception:
        logger.warning(
            "Failed to deliver %r to %s", notification.subject, notification.to, exc_info=True
        )
