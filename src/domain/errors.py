"""
Domain error taxonomy.

Every error carries the HTTP status it maps to and a machine-readable
``code``; the API layer renders them as
``{"error": code, "detail": message, "context": {...}}``.
"""

from __future__ import annotations

from typing import Any, Iterable


class DomainError(Exception):
    status_code = 400
    code = "domain_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(DomainError):
    """Malformed or missing input the caller can fix."""

    status_code = 400
    code = "validation_error"


class Unauthenticated(DomainError):
    status_code = 401
    code = "unauthenticated"


class Forbidden(DomainError):
    """Role or ownership mismatch."""

    status_code = 403
    code = "forbidden"


class NotParticipant(Forbidden):
    code = "not_participant"


class NotFound(DomainError):
    status_code = 404
    code = "not_found"


class Conflict(DomainError):
    status_code = 409
    code = "conflict"


class InsufficientCapacity(Conflict):
    code = "insufficient_capacity"


class RideNotBookable(Conflict):
    code = "ride_not_bookable"


class AlreadyBooked(Conflict):
    code = "already_booked"


class DuplicateReview(Conflict):
    code = "duplicate_review"


class NotCompleted(Conflict):
    code = "not_completed"


class EditWindowExpired(Conflict):
    code = "edit_window_expired"


class ResourceBusy(Conflict):
    code = "resource_busy"


class InvalidTransition(Conflict):
    """A status change that is not adjacent in the transition table."""

    code = "invalid_transition"

    def __init__(self, current: Any, target: Any, allowed: Iterable[Any]):
        current_v = getattr(current, "value", current)
        target_v = getattr(target, "value", target)
        allowed_v = sorted(getattr(a, "value", a) for a in allowed)
        super().__init__(
            f"Cannot change status from '{current_v}' to '{target_v}'",
            current=current_v,
            target=target_v,
            allowed=allowed_v,
        )
        self.current = current
        self.target = target
