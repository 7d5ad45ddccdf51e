"""Booking lifecycle: create, update and delete against the room calendars.

Creates and updates are validated against the room's existing bookings
before the calendar provider is called, so a rejected request never leaves
an event behind. Deletion is two-phase: the calendar event is removed on a
best-effort basis and the local booking is always deleted.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .config import Settings, settings
from .errors import ExternalProviderError, NotFoundError, RoomConflictError, ValidationError
from .models import (
    Booking,
    BookingCreate,
    BookingFilters,
    BookingStats,
    BookingStatus,
    BookingUpdate,
    CleanupOutcome,
    MeetingRoom,
    PeakHour,
)
from .stores import BookingStore, RoomStore

logger = logging.getLogger(__name__)


def _event_time(value: datetime, time_zone: str) -> Dict[str, str]:
    return {"dateTime": value.isoformat(), "timeZone": time_zone}


def _event_attendees(calendar_id: str, attendees: List[str]) -> List[Dict[str, Any]]:
    # The room's own calendar joins as a resource so the room shows as booked.
    return [{"email": calendar_id, "resource": True}] + [{"email": email} for email in attendees]


class BookingService:
    def __init__(self, provider: Any, rooms: RoomStore, bookings: BookingStore, config: Settings = settings):
        self.provider = provider
        self.rooms = rooms
        self.bookings = bookings
        self.config = config
        self._locks_guard = threading.Lock()
        self._room_locks: Dict[str, threading.Lock] = {}

    def _room_lock(self, room_id: str) -> threading.Lock:
        """Serialise check-then-write sequences for one room."""
        with self._locks_guard:
            return self._room_locks.setdefault(room_id, threading.Lock())

    def _ensure_no_conflict(
        self, room_id: str, start: datetime, end: datetime, exclude_id: Optional[str] = None
    ) -> None:
        conflicts = self.bookings.find_conflicting(room_id, start, end, exclude_id=exclude_id)
        if conflicts:
            logger.info("Booking rejected, room %s has %d conflicting booking(s)", room_id, len(conflicts))
            raise RoomConflictError(room_id, [b.id for b in conflicts])

    def _room_time_zone(self, room: Optional[MeetingRoom]) -> str:
        return room.timeZone if room else self.config.default_time_zone

    # Reads ---------------------------------------------------------------

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", bookingId=booking_id)
        return booking

    def list_bookings(self, filters: Optional[BookingFilters] = None) -> Tuple[List[Booking], int]:
        return self.bookings.find_many(filters)

    def get_user_bookings(
        self, organizer: str, filters: Optional[BookingFilters] = None
    ) -> Tuple[List[Booking], int]:
        filters = (filters or BookingFilters()).model_copy(update={"organizer": organizer})
        return self.bookings.find_many(filters)

    def get_upcoming_bookings(self, limit: int = 10, now: Optional[datetime] = None) -> List[Booking]:
        now = now or datetime.now(timezone.utc)
        upcoming, _ = self.bookings.find_many(
            BookingFilters(startDate=now, status=BookingStatus.CONFIRMED, limit=limit)
        )
        return upcoming

    def get_conflicting_bookings(
        self, room_id: str, start: datetime, end: datetime, exclude_id: Optional[str] = None
    ) -> List[Booking]:
        return self.bookings.find_conflicting(room_id, start, end, exclude_id=exclude_id)

    def get_booking_stats(self, start: datetime, end: datetime) -> BookingStats:
        """Summarise every booking overlapping ``[start, end)``.

        Peak hours are counted in each room's local time.
        """
        in_range = [b for b in self.bookings.all() if b.startTime < end and b.endTime > start]
        if not in_range:
            return BookingStats()

        by_status = Counter(b.status for b in in_range)
        total_minutes = sum((b.endTime - b.startTime) / timedelta(minutes=1) for b in in_range)

        hours: Counter = Counter()
        for booking in in_range:
            tz = ZoneInfo(self._room_time_zone(self.rooms.get(booking.roomId)))
            hours[booking.startTime.astimezone(tz).hour] += 1

        return BookingStats(
            totalBookings=len(in_range),
            confirmedBookings=by_status[BookingStatus.CONFIRMED],
            tentativeBookings=by_status[BookingStatus.TENTATIVE],
            cancelledBookings=by_status[BookingStatus.CANCELLED],
            averageDuration=round(total_minutes / len(in_range)),
            peakHours=[PeakHour(hour=h, count=c) for h, c in hours.most_common(5)],
        )

    # Writes --------------------------------------------------------------

    def create_booking(self, credentials: Any, data: BookingCreate, organizer: str = "") -> Booking:
        """Validate, create the calendar event, then store the booking.

        Raises:
            ValidationError: the end is not after the start.
            NotFoundError: the room does not exist.
            RoomConflictError: the room is already booked for part of the interval.
            ExternalProviderError: the calendar event could not be created.
        """
        if data.startTime >= data.endTime:
            raise ValidationError("End time must be after start time")

        room = self.rooms.get(data.roomId)
        if room is None:
            raise NotFoundError("Room not found", roomId=data.roomId)

        with self._room_lock(room.id):
            self._ensure_no_conflict(room.id, data.startTime, data.endTime)

            event = {
                "summary": data.title,
                "description": data.description,
                "start": _event_time(data.startTime, room.timeZone),
                "end": _event_time(data.endTime, room.timeZone),
                "attendees": _event_attendees(room.calendarId, data.attendees),
                "status": data.status.value,
            }
            if data.recurrence is not None:
                event["recurrence"] = [data.recurrence.to_rrule()]
            created = self.provider.create_event(credentials, room.calendarId, event)

            booking = self.bookings.create(
                Booking(
                    eventId=created["id"],
                    calendarId=room.calendarId,
                    roomId=room.id,
                    title=data.title,
                    description=data.description,
                    startTime=data.startTime,
                    endTime=data.endTime,
                    organizer=organizer,
                    attendees=data.attendees,
                    status=data.status,
                    recurringEventId=created.get("recurringEventId"),
                    isRecurring=data.recurrence is not None,
                )
            )
        logger.info("Booking created: %s (room %s, event %s)", booking.id, room.id, booking.eventId)
        return booking

    def update_booking(self, credentials: Any, booking_id: str, data: BookingUpdate) -> Booking:
        """Apply ``data`` to the booking and its calendar event.

        Time and status changes are re-validated against the room's other
        bookings unless the booking ends up cancelled.
        """
        room_id = self.get_booking(booking_id).roomId
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key == "description"
        }
        time_zone = self._room_time_zone(self.rooms.get(room_id))

        with self._room_lock(room_id):
            # Another update may have landed while waiting for the lock.
            existing = self.get_booking(booking_id)
            start = changes.get("startTime", existing.startTime)
            end = changes.get("endTime", existing.endTime)
            status = changes.get("status", existing.status)
            if start >= end:
                raise ValidationError("End time must be after start time")

            times_changed = start != existing.startTime or end != existing.endTime
            status_changed = status != existing.status
            if (times_changed or status_changed) and status != BookingStatus.CANCELLED:
                self._ensure_no_conflict(existing.roomId, start, end, exclude_id=existing.id)

            event_changes: Dict[str, Any] = {}
            if "title" in changes:
                event_changes["summary"] = changes["title"]
            if "description" in changes:
                event_changes["description"] = changes["description"]
            if times_changed:
                event_changes["start"] = _event_time(start, time_zone)
                event_changes["end"] = _event_time(end, time_zone)
            if "attendees" in changes:
                event_changes["attendees"] = _event_attendees(existing.calendarId, changes["attendees"])
            if status_changed:
                event_changes["status"] = status.value
            if event_changes:
                self.provider.update_event(credentials, existing.calendarId, existing.eventId, event_changes)

            updated = self.bookings.update(booking_id, changes)
        if updated is None:
            raise NotFoundError("Booking not found", bookingId=booking_id)
        logger.info("Booking updated: %s", booking_id)
        return updated

    def delete_booking(self, credentials: Any, booking_id: str) -> Tuple[Booking, CleanupOutcome]:
        """Delete the booking; the calendar event is removed on a best-effort basis.

        Returns the deleted booking and the outcome of the calendar cleanup.
        """
        existing = self.get_booking(booking_id)
        try:
            self.provider.delete_event(credentials, existing.calendarId, existing.eventId)
            cleanup = CleanupOutcome(succeeded=True)
        except ExternalProviderError as exc:
            logger.warning(
                "Failed to delete calendar event %s, proceeding with booking deletion: %s",
                existing.eventId,
                exc.message,
            )
            cleanup = CleanupOutcome(succeeded=False, error=exc.message)

        self.bookings.delete(booking_id)
        logger.info("Booking deleted: %s", booking_id)
        return existing, cleanup
