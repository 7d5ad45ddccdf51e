"""Exceptions raised by the booking service.

Every error carries a machine readable ``code`` and the HTTP status the API
layer answers with, so route handlers never translate errors themselves.
"""

from typing import Any, Dict, List, Optional


class BookingServiceError(Exception):
    """Base class for all errors surfaced to API callers."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details


class ValidationError(BookingServiceError):
    """Malformed or out-of-range input. Never retried."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(BookingServiceError):
    """A referenced room or booking does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class NoValidRoomsError(BookingServiceError):
    """None of the requested room ids resolved to an active room."""

    code = "NO_VALID_ROOMS"
    status_code = 404

    def __init__(self, room_ids: List[str]):
        super().__init__("No valid rooms found", roomIds=list(room_ids))


class RoomConflictError(BookingServiceError):
    """The candidate interval overlaps an existing non-cancelled booking."""

    code = "ROOM_CONFLICT"
    status_code = 409

    def __init__(self, room_id: str, conflicting_ids: List[str]):
        super().__init__(
            "Room is already booked for the specified time",
            roomId=room_id,
            conflictingBookingIds=list(conflicting_ids),
        )


class DuplicateRoomError(BookingServiceError):
    """An active room with the same name or calendar already exists."""

    code = "DUPLICATE_ROOM"
    status_code = 409


class ExternalProviderError(BookingServiceError):
    """The calendar provider call failed (network, auth or quota)."""

    code = "EXTERNAL_PROVIDER_ERROR"
    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message, upstreamStatus=upstream_status)
        self.upstream_status = upstream_status


class AuthenticationError(BookingServiceError):
    """No usable credentials were supplied with the request."""

    code = "UNAUTHENTICATED"
    status_code = 401
