"""Availability aggregation and room recommendation.

``AvailabilityService`` resolves rooms, fetches their busy blocks from the
calendar provider in one batched call and runs the slot generator for every
room on every day of the requested range.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from .config import Settings, settings
from .errors import BookingServiceError, NoValidRoomsError, ValidationError
from .intervals import Interval, WorkingWindow, contains, iter_days, working_window
from .models import (
    AvailabilityDay,
    AvailabilityRequest,
    BulkAvailabilityItem,
    BulkAvailabilityResult,
    MeetingRoom,
    RoomFilters,
    RoomSuggestion,
    TimeSlot,
    assume_utc,
)
from .slots import generate_slots
from .stores import RoomStore

logger = logging.getLogger(__name__)


def score_room(room: MeetingRoom, required_capacity: int, preferred_equipment: Sequence[str]) -> tuple:
    """Return ``(score, matching_equipment)`` for a room that fits the request.

    Ten points per preferred item the room has, plus up to fifty points for a
    capacity close to the requirement.
    """
    wanted = list(dict.fromkeys(preferred_equipment))
    matching = [eq for eq in wanted if eq in room.equipment]
    score = 10 * len(matching) + max(0, 50 - (room.capacity - required_capacity))
    return score, matching


class AvailabilityService:
    def __init__(self, provider: Any, rooms: RoomStore, config: Settings = settings):
        self.provider = provider
        self.rooms = rooms
        self.config = config

    def _window(self, room: MeetingRoom, day: date) -> WorkingWindow:
        return working_window(
            day,
            ZoneInfo(room.timeZone),
            self.config.working_day_start_hour,
            self.config.working_day_end_hour,
        )

    def _resolve_rooms(self, room_ids: Sequence[str]) -> List[MeetingRoom]:
        resolved: List[MeetingRoom] = []
        for room_id in dict.fromkeys(room_ids):
            room = self.rooms.get(room_id)
            if room is None or not room.isActive:
                logger.info("Skipping unknown or inactive room %s", room_id)
                continue
            resolved.append(room)
        return resolved

    def get_availability(self, credentials: Any, request: AvailabilityRequest) -> List[AvailabilityDay]:
        """Return free slots per day for the requested rooms, sorted by date.

        Raises:
            NoValidRoomsError: none of the room ids resolved to an active room.
            ExternalProviderError: the free/busy lookup failed.
        """
        rooms = self._resolve_rooms(request.roomIds)
        if not rooms:
            raise NoValidRoomsError(request.roomIds)

        days = list(iter_days(request.startDate, request.endDate))
        windows: Dict[str, Dict[date, WorkingWindow]] = {
            room.id: {day: self._window(room, day) for day in days} for room in rooms
        }

        # Cover both the requested range and every working window in it.
        time_min: datetime = request.startDate
        time_max: datetime = request.endDate
        for per_day in windows.values():
            time_min = min(time_min, per_day[days[0]].day_start)
            time_max = max(time_max, per_day[days[-1]].day_end)

        calendar_ids = [room.calendarId for room in rooms]
        busy_map = self.provider.get_free_busy(credentials, calendar_ids, time_min, time_max)

        result: List[AvailabilityDay] = []
        for day in days:
            day_slots: List[TimeSlot] = []
            for room in rooms:
                day_slots.extend(
                    generate_slots(
                        windows[room.id][day],
                        busy_map.get(room.calendarId, []),
                        request.duration,
                        room.id,
                        step_minutes=self.config.slot_step_minutes,
                    )
                )
            day_slots.sort(key=lambda s: s.start)
            result.append(AvailabilityDay(date=day, slots=day_slots))

        result.sort(key=lambda d: d.date)
        logger.info(
            "Computed availability for %d room(s) over %d day(s): %d slot(s)",
            len(rooms),
            len(days),
            sum(len(d.slots) for d in result),
        )
        return result

    def _bulk_one(self, credentials: Any, item: BulkAvailabilityItem, duration: int) -> BulkAvailabilityResult:
        try:
            request = AvailabilityRequest(
                roomIds=item.roomIds,
                startDate=item.startDate,
                endDate=item.endDate,
                duration=duration,
            )
            data = self.get_availability(credentials, request)
        except BookingServiceError as exc:
            logger.error("Bulk availability request %s failed: %s", item.id, exc.message)
            return BulkAvailabilityResult(requestId=item.id, success=False, error=exc.message, code=exc.code)
        except Exception as exc:
            logger.exception("Bulk availability request %s failed unexpectedly", item.id)
            return BulkAvailabilityResult(requestId=item.id, success=False, error=str(exc), code="INTERNAL_ERROR")
        return BulkAvailabilityResult(requestId=item.id, success=True, data=data)

    def get_bulk_availability(
        self, credentials: Any, items: Sequence[BulkAvailabilityItem], duration: int
    ) -> List[BulkAvailabilityResult]:
        """Run every request concurrently; results keep the request order.

        A failing request is reported in its own result and never aborts the
        others.
        """
        if duration <= 0:
            raise ValidationError("Duration must be a positive number of minutes")
        if not items:
            return []
        workers = min(self.config.bulk_max_workers, len(items))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bulk-availability") as pool:
            return list(pool.map(lambda item: self._bulk_one(credentials, item, duration), items))

    def suggest_best_room(
        self,
        credentials: Any,
        start: datetime,
        end: datetime,
        required_capacity: int,
        preferred_equipment: Optional[Sequence[str]] = None,
    ) -> List[RoomSuggestion]:
        """Rank active rooms that are free for ``[start, end)`` and fit the group.

        Ordered by score descending, then by room id.
        """
        candidates, _ = self.rooms.find_many(RoomFilters(isActive=True, capacity=required_capacity))
        if not candidates:
            return []

        start, end = assume_utc(start), assume_utc(end)
        wanted = Interval(start, end)
        duration = math.ceil((end - start) / timedelta(minutes=1))
        # Days are UTC dates; a room's local working day can start on the
        # UTC date before or after the requested one.
        request = AvailabilityRequest(
            roomIds=[room.id for room in candidates],
            startDate=start - timedelta(days=1),
            endDate=end + timedelta(days=1),
            duration=duration,
        )
        availability = self.get_availability(credentials, request)

        suggestions: List[RoomSuggestion] = []
        for room in candidates:
            free = any(
                slot.roomId == room.id and contains(Interval(slot.start, slot.end), wanted)
                for day in availability
                for slot in day.slots
            )
            if not free:
                continue
            score, matching = score_room(room, required_capacity, preferred_equipment or [])
            suggestions.append(RoomSuggestion(room=room, score=score, matchingEquipment=matching))

        suggestions.sort(key=lambda s: (-s.score, s.room.id))
        return suggestions
