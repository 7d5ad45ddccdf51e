"""In-memory room and booking stores.

Each store is a plain ``dict`` keyed by id and guarded by a lock. Stores are
created by the application factory and handed to the services, so every test
can start from empty instances. Nothing here is durable; a real database is a
deployment concern.

Returned models are copies, so callers never mutate stored state by accident.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .intervals import Interval, overlaps
from .models import Booking, BookingFilters, BookingStatus, MeetingRoom, RoomFilters

logger = logging.getLogger(__name__)


def _paginate(items: List[Any], page: int, limit: Optional[int]) -> List[Any]:
    if limit is None:
        return items
    skip = (page - 1) * limit
    return items[skip : skip + limit]


class RoomStore:
    """Meeting rooms keyed by id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rooms: Dict[str, MeetingRoom] = {}

    def create(self, room: MeetingRoom) -> MeetingRoom:
        with self._lock:
            self._rooms[room.id] = room
        logger.info("Room created in store: %s", room.id)
        return room.model_copy(deep=True)

    def get(self, room_id: str) -> Optional[MeetingRoom]:
        with self._lock:
            room = self._rooms.get(room_id)
        return room.model_copy(deep=True) if room else None

    def find_many(self, filters: Optional[RoomFilters] = None) -> Tuple[List[MeetingRoom], int]:
        """Return the rooms matching ``filters`` and the total before pagination.

        ``capacity`` is a lower bound and every requested piece of equipment
        must be present. Results are unpaginated unless a limit is given.
        """
        filters = filters or RoomFilters()
        with self._lock:
            rooms = [r.model_copy(deep=True) for r in self._rooms.values()]

        if filters.isActive is not None:
            rooms = [r for r in rooms if r.isActive == filters.isActive]
        if filters.capacity is not None:
            rooms = [r for r in rooms if r.capacity >= filters.capacity]
        if filters.equipment:
            rooms = [r for r in rooms if all(eq in r.equipment for eq in filters.equipment)]

        total = len(rooms)
        return _paginate(rooms, filters.page, filters.limit), total

    def update(self, room_id: str, changes: Dict[str, Any]) -> Optional[MeetingRoom]:
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return None
            updated = room.model_copy(update={**changes, "updatedAt": datetime.now(timezone.utc)})
            self._rooms[room_id] = updated
        logger.info("Room updated in store: %s", room_id)
        return updated.model_copy(deep=True)

    def delete(self, room_id: str) -> bool:
        with self._lock:
            deleted = self._rooms.pop(room_id, None) is not None
        if deleted:
            logger.info("Room deleted from store: %s", room_id)
        return deleted

    def find_by_calendar_id(self, calendar_id: str) -> Optional[MeetingRoom]:
        with self._lock:
            for room in self._rooms.values():
                if room.calendarId == calendar_id:
                    return room.model_copy(deep=True)
        return None

    def find_active_by_name(self, name: str, exclude_id: Optional[str] = None) -> Optional[MeetingRoom]:
        """Case-insensitive lookup among active rooms."""
        wanted = name.strip().lower()
        with self._lock:
            for room in self._rooms.values():
                if room.id != exclude_id and room.isActive and room.name.lower() == wanted:
                    return room.model_copy(deep=True)
        return None


class BookingStore:
    """Bookings keyed by id, plus the conflict detector."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._bookings: Dict[str, Booking] = {}

    def create(self, booking: Booking) -> Booking:
        with self._lock:
            self._bookings[booking.id] = booking
        logger.info("Booking created in store: %s", booking.id)
        return booking.model_copy(deep=True)

    def get(self, booking_id: str) -> Optional[Booking]:
        with self._lock:
            booking = self._bookings.get(booking_id)
        return booking.model_copy(deep=True) if booking else None

    def all(self) -> List[Booking]:
        with self._lock:
            return [b.model_copy(deep=True) for b in self._bookings.values()]

    def find_many(self, filters: Optional[BookingFilters] = None) -> Tuple[List[Booking], int]:
        """Return bookings matching ``filters`` sorted by start, and the total.

        A date window keeps bookings that overlap it; an open-ended window
        keeps bookings ending after ``startDate`` or starting before
        ``endDate``.
        """
        filters = filters or BookingFilters()
        bookings = self.all()

        if filters.roomId:
            bookings = [b for b in bookings if b.roomId == filters.roomId]
        if filters.status is not None:
            bookings = [b for b in bookings if b.status == filters.status]
        if filters.organizer:
            needle = filters.organizer.lower()
            bookings = [b for b in bookings if needle in b.organizer.lower()]
        if filters.startDate is not None:
            bookings = [b for b in bookings if b.endTime > filters.startDate]
        if filters.endDate is not None:
            bookings = [b for b in bookings if b.startTime < filters.endDate]

        bookings.sort(key=lambda b: b.startTime)
        total = len(bookings)
        return _paginate(bookings, filters.page, filters.limit), total

    def update(self, booking_id: str, changes: Dict[str, Any]) -> Optional[Booking]:
        with self._lock:
            booking = self._bookings.get(booking_id)
            if booking is None:
                return None
            updated = booking.model_copy(update={**changes, "updatedAt": datetime.now(timezone.utc)})
            self._bookings[booking_id] = updated
        logger.info("Booking updated in store: %s", booking_id)
        return updated.model_copy(deep=True)

    def delete(self, booking_id: str) -> bool:
        with self._lock:
            deleted = self._bookings.pop(booking_id, None) is not None
        if deleted:
            logger.info("Booking deleted from store: %s", booking_id)
        return deleted

    def find_by_event_id(self, event_id: str) -> Optional[Booking]:
        with self._lock:
            for booking in self._bookings.values():
                if booking.eventId == event_id:
                    return booking.model_copy(deep=True)
        return None

    def find_conflicting(
        self,
        room_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> List[Booking]:
        """Return the non-cancelled bookings of ``room_id`` overlapping ``[start, end)``.

        ``exclude_id`` skips the booking being re-validated during an update.
        """
        candidate = Interval(start, end)
        with self._lock:
            bookings = list(self._bookings.values())
        return [
            b.model_copy(deep=True)
            for b in bookings
            if b.id != exclude_id
            and b.roomId == room_id
            and b.status != BookingStatus.CANCELLED
            and overlaps(candidate, Interval(b.startTime, b.endTime))
        ]
