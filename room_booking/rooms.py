"""Meeting room catalog backed by one calendar per room.

At most one active room may use a given name (case-insensitive) and a
calendar id is never shared between rooms.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .config import Settings, settings
from .errors import BookingServiceError, DuplicateRoomError, ExternalProviderError, NotFoundError
from .intervals import iter_days, working_window
from .models import (
    BookingStatus,
    CleanupOutcome,
    MeetingRoom,
    RoomCreate,
    RoomFilters,
    RoomUpdate,
    RoomUtilization,
    SyncSummary,
)
from .stores import BookingStore, RoomStore

logger = logging.getLogger(__name__)

ROOM_KEYWORDS = ("会議室", "会議", "meeting", "room", "conference", "ミーティング")
EXCLUDE_KEYWORDS = ("勉強会", "study", "event", "イベント", "セミナー", "seminar", "workshop")
APP_MARKERS = ("meeting room manager", "会議室管理")

# Calendars this app manages live in the shared group namespace.
GROUP_CALENDAR_SUFFIX = "@group.calendar.google.com"

DEFAULT_SYNCED_CAPACITY = 6


def is_room_calendar(calendar: Dict[str, Any]) -> bool:
    """Guess whether a calendar list entry represents a meeting room."""
    name = (calendar.get("summary") or "").lower()
    description = (calendar.get("description") or "").lower()
    text = f"{name} {description}"
    if any(keyword in text for keyword in EXCLUDE_KEYWORDS):
        return False
    if any(keyword in text for keyword in ROOM_KEYWORDS):
        return True
    return any(marker in description for marker in APP_MARKERS)


class RoomService:
    def __init__(
        self,
        provider: Any,
        rooms: RoomStore,
        bookings: BookingStore,
        config: Settings = settings,
    ):
        self.provider = provider
        self.rooms = rooms
        self.bookings = bookings
        self.config = config

    def _ensure_unique_name(self, name: str, exclude_id: Optional[str] = None) -> None:
        if self.rooms.find_active_by_name(name, exclude_id=exclude_id) is not None:
            raise DuplicateRoomError("Room with this name already exists", name=name)

    # Directory -----------------------------------------------------------

    def get_room(self, room_id: str) -> MeetingRoom:
        room = self.rooms.get(room_id)
        if room is None:
            raise NotFoundError("Room not found", roomId=room_id)
        return room

    def get_rooms(self, filters: Optional[RoomFilters] = None) -> Tuple[List[MeetingRoom], int]:
        return self.rooms.find_many(filters)

    def get_room_by_calendar_id(self, calendar_id: str) -> MeetingRoom:
        room = self.rooms.find_by_calendar_id(calendar_id)
        if room is None:
            raise NotFoundError("Room not found", calendarId=calendar_id)
        return room

    # Mutations -----------------------------------------------------------

    def create_room(self, credentials: Any, data: RoomCreate) -> MeetingRoom:
        """Create the backing calendar, then register the room."""
        self._ensure_unique_name(data.name)
        time_zone = data.timeZone or self.config.default_time_zone

        calendar = self.provider.create_calendar(
            credentials,
            {
                "summary": data.name,
                "description": data.description,
                "location": data.location,
                "timeZone": time_zone,
            },
        )
        calendar_id = calendar["id"]
        if self.rooms.find_by_calendar_id(calendar_id) is not None:
            raise DuplicateRoomError("Room with this calendar ID already exists", calendarId=calendar_id)

        room = self.rooms.create(
            MeetingRoom(
                name=data.name,
                calendarId=calendar_id,
                description=data.description,
                location=data.location,
                capacity=data.capacity,
                equipment=list(dict.fromkeys(data.equipment)),
                timeZone=time_zone,
            )
        )
        logger.info("Room created: %s (%s, calendar %s)", room.id, room.name, calendar_id)
        return room

    def update_room(self, credentials: Any, room_id: str, data: RoomUpdate) -> MeetingRoom:
        existing = self.get_room(room_id)
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None or k in ("description", "location")}

        name = changes.get("name", existing.name)
        becomes_active = changes.get("isActive", existing.isActive)
        if becomes_active and ("name" in changes or not existing.isActive):
            self._ensure_unique_name(name, exclude_id=room_id)
        if "equipment" in changes:
            changes["equipment"] = list(dict.fromkeys(changes["equipment"]))

        calendar_fields = {"name": "summary", "description": "description", "location": "location", "timeZone": "timeZone"}
        metadata = {calendar_fields[k]: v for k, v in changes.items() if k in calendar_fields}
        if metadata:
            self.provider.update_calendar(credentials, existing.calendarId, metadata)

        updated = self.rooms.update(room_id, changes)
        if updated is None:
            raise NotFoundError("Room not found", roomId=room_id)
        logger.info("Room updated: %s", room_id)
        return updated

    def delete_room(self, credentials: Any, room_id: str) -> Tuple[MeetingRoom, CleanupOutcome]:
        """Delete the room; the backing calendar is removed on a best-effort basis."""
        existing = self.get_room(room_id)
        try:
            self.provider.delete_calendar(credentials, existing.calendarId)
            cleanup = CleanupOutcome(succeeded=True)
        except ExternalProviderError as exc:
            logger.warning(
                "Failed to delete calendar %s, proceeding with room deletion: %s",
                existing.calendarId,
                exc.message,
            )
            cleanup = CleanupOutcome(succeeded=False, error=exc.message)

        self.rooms.delete(room_id)
        logger.info("Room deleted: %s", room_id)
        return existing, cleanup

    # Reporting -----------------------------------------------------------

    def get_room_utilization(self, room_id: str, start: datetime, end: datetime) -> RoomUtilization:
        """Confirmed booked hours against weekday working hours in ``[start, end)``."""
        room = self.get_room(room_id)
        tz = ZoneInfo(room.timeZone)

        total = timedelta()
        for day in iter_days(start.astimezone(tz), end.astimezone(tz)):
            if day.weekday() >= 5:
                continue
            window = working_window(day, tz, self.config.working_day_start_hour, self.config.working_day_end_hour)
            overlap = min(window.day_end, end) - max(window.day_start, start)
            if overlap > timedelta():
                total += overlap

        booked = timedelta()
        for booking in self.bookings.all():
            if booking.roomId != room_id or booking.status != BookingStatus.CONFIRMED:
                continue
            overlap = min(booking.endTime, end) - max(booking.startTime, start)
            if overlap > timedelta():
                booked += overlap

        total_hours = total / timedelta(hours=1)
        booked_hours = booked / timedelta(hours=1)
        rate = (booked_hours / total_hours) * 100 if total_hours > 0 else 0.0
        return RoomUtilization(
            roomId=room_id,
            totalHours=round(total_hours, 2),
            bookedHours=round(booked_hours, 2),
            utilizationRate=round(rate, 2),
        )

    # Calendar sync -------------------------------------------------------

    def sync_rooms(
        self,
        credentials: Any,
        auto_filter: bool = True,
        selected_calendar_ids: Optional[Sequence[str]] = None,
    ) -> SyncSummary:
        """Import secondary calendars from the caller's calendar list as rooms.

        Existing rooms (matched by calendar id) get their metadata refreshed;
        new calendars become active rooms with a default capacity. When
        ``selected_calendar_ids`` is given only those calendars are considered
        and the keyword filter is skipped.
        """
        summary = SyncSummary()
        selected = set(selected_calendar_ids) if selected_calendar_ids is not None else None

        for calendar in self.provider.list_calendars(credentials):
            calendar_id = calendar.get("id") or ""
            if calendar.get("primary") or not calendar.get("summary") or GROUP_CALENDAR_SUFFIX not in calendar_id:
                continue
            if selected is not None:
                if calendar_id not in selected:
                    summary.skipped += 1
                    continue
            elif auto_filter and not is_room_calendar(calendar):
                logger.debug("Skipped non-room calendar %s (%s)", calendar_id, calendar.get("summary"))
                summary.skipped += 1
                continue

            time_zone = calendar.get("timeZone") or self.config.default_time_zone
            try:
                existing = self.rooms.find_by_calendar_id(calendar_id)
                if existing is not None:
                    if existing.isActive:
                        self._ensure_unique_name(calendar["summary"], exclude_id=existing.id)
                    self.rooms.update(
                        existing.id,
                        {
                            "name": calendar["summary"],
                            "description": calendar.get("description"),
                            "location": calendar.get("location"),
                            "timeZone": time_zone,
                        },
                    )
                    summary.updated += 1
                else:
                    self._ensure_unique_name(calendar["summary"])
                    self.rooms.create(
                        MeetingRoom(
                            name=calendar["summary"],
                            calendarId=calendar_id,
                            description=calendar.get("description"),
                            location=calendar.get("location"),
                            capacity=DEFAULT_SYNCED_CAPACITY,
                            equipment=[],
                            timeZone=time_zone,
                        )
                    )
                    summary.created += 1
                summary.synced += 1
            except BookingServiceError as exc:
                message = f"Failed to sync calendar {calendar['summary']}: {exc.message}"
                logger.error(message)
                summary.errors.append(message)

        logger.info(
            "Calendar sync completed: synced=%d created=%d updated=%d skipped=%d errors=%d",
            summary.synced,
            summary.created,
            summary.updated,
            summary.skipped,
            len(summary.errors),
        )
        return summary
