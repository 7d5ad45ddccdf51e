"""Shared fixtures: a fake calendar provider, fresh stores and an API client."""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from room_booking.auth import get_credentials
from room_booking.availability import AvailabilityService
from room_booking.bookings import BookingService
from room_booking.config import Settings
from room_booking.errors import ExternalProviderError
from room_booking.intervals import Interval
from room_booking.main import create_app
from room_booking.models import MeetingRoom
from room_booking.rooms import RoomService
from room_booking.stores import BookingStore, RoomStore

FAKE_CREDENTIALS = object()


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


# ─────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────


class FakeCalendarProvider:
    """In-memory stand-in for ``GoogleCalendarProvider``.

    ``busy`` maps calendar ids to busy intervals. Calendars listed in
    ``failing_calendars`` make any free/busy lookup that includes them fail,
    and the ``fail_*`` flags make the matching call raise.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counter = 0
        self.busy: Dict[str, List[Interval]] = {}
        self.failing_calendars: set = set()
        self.calendars: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        self.fail_create_event = False
        self.fail_delete_event = False
        self.fail_delete_calendar = False

    def _next_id(self, prefix: str) -> str:
        with self._lock:
            self._counter += 1
            return f"{prefix}-{self._counter}"

    def _record(self, *call: Any) -> None:
        with self._lock:
            self.calls.append(call)

    def calls_named(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    def get_free_busy(self, credentials, calendar_ids, time_min, time_max):
        ids = list(calendar_ids)
        self._record("get_free_busy", ids, time_min, time_max)
        if self.failing_calendars.intersection(ids):
            raise ExternalProviderError("FreeBusy query failed", upstream_status=503)
        return {cid: list(self.busy.get(cid, [])) for cid in ids}

    def create_event(self, credentials, calendar_id, event):
        self._record("create_event", calendar_id, event)
        if self.fail_create_event:
            raise ExternalProviderError("Event creation failed", upstream_status=500)
        return {"id": self._next_id("event"), **event}

    def update_event(self, credentials, calendar_id, event_id, changes):
        self._record("update_event", calendar_id, event_id, changes)
        return {"id": event_id, **changes}

    def delete_event(self, credentials, calendar_id, event_id):
        self._record("delete_event", calendar_id, event_id)
        if self.fail_delete_event:
            raise ExternalProviderError("Event deletion failed", upstream_status=410)

    def create_calendar(self, credentials, metadata):
        self._record("create_calendar", metadata)
        return {"id": f"{self._next_id('room')}@group.calendar.google.com", **metadata}

    def update_calendar(self, credentials, calendar_id, metadata):
        self._record("update_calendar", calendar_id, metadata)
        return {"id": calendar_id, **metadata}

    def delete_calendar(self, credentials, calendar_id):
        self._record("delete_calendar", calendar_id)
        if self.fail_delete_calendar:
            raise ExternalProviderError("Calendar deletion failed", upstream_status=404)

    def list_calendars(self, credentials):
        self._record("list_calendars")
        return list(self.calendars)


# ─────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────


@pytest.fixture
def config() -> Settings:
    return Settings(_env_file=None, default_time_zone="UTC", google_backoff_seconds=0.0)


@pytest.fixture
def provider() -> FakeCalendarProvider:
    return FakeCalendarProvider()


@pytest.fixture
def room_store() -> RoomStore:
    return RoomStore()


@pytest.fixture
def booking_store() -> BookingStore:
    return BookingStore()


@pytest.fixture
def add_room(room_store):
    """Factory storing a room directly, bypassing the calendar provider."""

    def _add(
        name: str = "Room A",
        capacity: int = 6,
        equipment: Optional[List[str]] = None,
        time_zone: str = "UTC",
        is_active: bool = True,
        room_id: Optional[str] = None,
    ) -> MeetingRoom:
        fields: Dict[str, Any] = dict(
            name=name,
            calendarId=f"{name.lower().replace(' ', '-')}@group.calendar.google.com",
            capacity=capacity,
            equipment=equipment or [],
            timeZone=time_zone,
            isActive=is_active,
        )
        if room_id is not None:
            fields["id"] = room_id
        return room_store.create(MeetingRoom(**fields))

    return _add


@pytest.fixture
def availability_service(provider, room_store, config) -> AvailabilityService:
    return AvailabilityService(provider, room_store, config)


@pytest.fixture
def booking_service(provider, room_store, booking_store, config) -> BookingService:
    return BookingService(provider, room_store, booking_store, config)


@pytest.fixture
def room_service(provider, room_store, booking_store, config) -> RoomService:
    return RoomService(provider, room_store, booking_store, config)


@pytest.fixture
def client(provider, room_store, booking_store, config):
    app = create_app(provider=provider, room_store=room_store, booking_store=booking_store, config=config)
    app.dependency_overrides[get_credentials] = lambda: FAKE_CREDENTIALS
    with TestClient(app) as c:
        yield c
