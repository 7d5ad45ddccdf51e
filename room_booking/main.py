"""Main application entry point for the meeting room booking service.

This module defines the FastAPI application, configures logging and wires
the in-memory stores, the Google Calendar provider and the services
together. ``create_app`` builds a fresh application; tests pass their own
provider and stores, while ``app`` is the instance served in production.

Endpoints:
  - ``/api/rooms``: room directory, creation and calendar sync.
  - ``/api/availability``: free slots, bulk queries and room suggestions.
  - ``/api/bookings``: booking lifecycle, statistics and upcoming bookings.
  - ``/healthz``: simple health check endpoint.

Successful responses are wrapped as ``{"success": true, "data": ...}``.
Errors raised by the services are rendered as
``{"error": {"message", "code", "timestamp", ...}}`` with the status code
the error class carries.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .auth import get_credentials, get_organizer
from .availability import AvailabilityService
from .bookings import BookingService
from .config import Settings, settings
from .errors import BookingServiceError, ValidationError
from .google_client import GoogleCalendarProvider, iso_z
from .models import (
    AvailabilityQuery,
    BookingCreate,
    BookingFilters,
    BookingStatus,
    BookingUpdate,
    BulkAvailabilityRequest,
    RoomCreate,
    RoomFilters,
    RoomUpdate,
    SuggestRoomRequest,
    SyncRequest,
    assume_utc,
    check_duration,
)
from .rooms import RoomService
from .stores import BookingStore, RoomStore

logger = logging.getLogger("room_booking")
logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

M = TypeVar("M", bound=BaseModel)

router = APIRouter()


def _utcnow() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


def _error_entries(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    entries = []
    for err in errors:
        msg = str(err.get("msg", ""))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        entries.append({"loc": [str(part) for part in err.get("loc", ())], "msg": msg})
    return entries


def _parse(model: Type[M], context: Optional[Dict[str, Any]] = None, **data: Any) -> M:
    """Build ``model`` from query parameters, reporting failures as ``ValidationError``."""
    try:
        return model.model_validate(data, context=context)
    except PydanticValidationError as exc:
        entries = _error_entries(exc.errors())
        raise ValidationError(entries[0]["msg"], errors=entries) from exc


def _check_range(start: datetime, end: datetime) -> None:
    if start >= end:
        raise ValidationError("End date must be after start date")


def _ok(data: Any, **extra: Any) -> Dict[str, Any]:
    return {"success": True, "data": data, **extra}


# Service lookups. The services live on ``app.state`` so every application
# instance owns its stores.


def _room_service(request: Request) -> RoomService:
    return request.app.state.room_service


def _booking_service(request: Request) -> BookingService:
    return request.app.state.booking_service


def _availability_service(request: Request) -> AvailabilityService:
    return request.app.state.availability_service


def _config(request: Request) -> Settings:
    return request.app.state.config


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/healthz")
def healthz() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return {"ok": True, "time": iso_z(_utcnow())}


# ---------------------------------------------------------------------------
# Rooms
# ---------------------------------------------------------------------------


@router.get("/api/rooms")
def list_rooms(
    isActive: Optional[bool] = None,
    capacity: Optional[int] = Query(default=None, ge=0),
    equipment: List[str] = Query(default=[]),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    service: RoomService = Depends(_room_service),
) -> Dict[str, Any]:
    filters = RoomFilters(isActive=isActive, capacity=capacity, equipment=equipment, page=page, limit=limit)
    rooms, total = service.get_rooms(filters)
    return _ok(rooms, meta={"total": total, "page": page, "limit": limit})


@router.post("/api/rooms", status_code=201)
def create_room(
    body: RoomCreate,
    credentials: Any = Depends(get_credentials),
    service: RoomService = Depends(_room_service),
) -> Dict[str, Any]:
    return _ok(service.create_room(credentials, body))


@router.post("/api/rooms/sync")
def sync_rooms(
    body: Optional[SyncRequest] = None,
    credentials: Any = Depends(get_credentials),
    service: RoomService = Depends(_room_service),
) -> Dict[str, Any]:
    """Import room calendars from the caller's calendar list."""
    body = body or SyncRequest()
    summary = service.sync_rooms(
        credentials,
        auto_filter=body.autoFilter,
        selected_calendar_ids=body.selectedCalendarIds,
    )
    return _ok(summary)


@router.get("/api/rooms/{room_id}")
def get_room(room_id: str, service: RoomService = Depends(_room_service)) -> Dict[str, Any]:
    return _ok(service.get_room(room_id))


@router.put("/api/rooms/{room_id}")
def update_room(
    room_id: str,
    body: RoomUpdate,
    credentials: Any = Depends(get_credentials),
    service: RoomService = Depends(_room_service),
) -> Dict[str, Any]:
    return _ok(service.update_room(credentials, room_id, body))


@router.delete("/api/rooms/{room_id}")
def delete_room(
    room_id: str,
    credentials: Any = Depends(get_credentials),
    service: RoomService = Depends(_room_service),
) -> Dict[str, Any]:
    """Delete a room. ``cleanup`` reports whether its calendar was removed too."""
    room, cleanup = service.delete_room(credentials, room_id)
    return _ok(room, cleanup=cleanup)


@router.get("/api/rooms/{room_id}/utilization")
def room_utilization(
    room_id: str,
    startDate: datetime,
    endDate: datetime,
    service: RoomService = Depends(_room_service),
) -> Dict[str, Any]:
    start, end = assume_utc(startDate), assume_utc(endDate)
    _check_range(start, end)
    return _ok(service.get_room_utilization(room_id, start, end))


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


@router.get("/api/availability")
def get_availability(
    roomIds: List[str] = Query(...),
    startDate: datetime = Query(...),
    endDate: datetime = Query(...),
    duration: int = Query(...),
    credentials: Any = Depends(get_credentials),
    service: AvailabilityService = Depends(_availability_service),
    config: Settings = Depends(_config),
) -> Dict[str, Any]:
    """Free slots for every requested room, grouped by day."""
    query = _parse(
        AvailabilityQuery,
        {"config": config},
        roomIds=roomIds,
        startDate=startDate,
        endDate=endDate,
        duration=duration,
    )
    return _ok(service.get_availability(credentials, query))


@router.post("/api/availability/bulk")
def bulk_availability(
    body: BulkAvailabilityRequest,
    duration: int = Query(...),
    credentials: Any = Depends(get_credentials),
    service: AvailabilityService = Depends(_availability_service),
    config: Settings = Depends(_config),
) -> Dict[str, Any]:
    """Run several availability requests at once.

    Each entry of ``data`` reports its own success or failure.
    """
    try:
        check_duration(duration, config)
    except ValueError as exc:
        raise ValidationError(str(exc), duration=duration) from exc
    results = service.get_bulk_availability(credentials, body.requests, duration)
    return _ok([r.model_dump(mode="json", exclude_none=True) for r in results])


@router.post("/api/availability/suggest")
def suggest_room(
    body: SuggestRoomRequest,
    credentials: Any = Depends(get_credentials),
    service: AvailabilityService = Depends(_availability_service),
) -> Dict[str, Any]:
    suggestions = service.suggest_best_room(
        credentials,
        body.startTime,
        body.endTime,
        body.requiredCapacity,
        body.preferredEquipment,
    )
    return _ok(suggestions)


@router.get("/api/availability/{room_id}")
def get_room_availability(
    room_id: str,
    day: date = Query(..., alias="date"),
    duration: int = Query(default=60),
    credentials: Any = Depends(get_credentials),
    service: AvailabilityService = Depends(_availability_service),
    config: Settings = Depends(_config),
) -> Dict[str, Any]:
    """Free slots for one room on one day."""
    start = datetime.combine(day, time(0, 0), tzinfo=timezone.utc)
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    query = _parse(
        AvailabilityQuery, {"config": config}, roomIds=[room_id], startDate=start, endDate=end, duration=duration
    )
    return _ok(service.get_availability(credentials, query))


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


@router.get("/api/bookings")
def list_bookings(
    roomId: Optional[str] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    status: Optional[BookingStatus] = None,
    organizer: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    service: BookingService = Depends(_booking_service),
) -> Dict[str, Any]:
    filters = _parse(
        BookingFilters,
        roomId=roomId,
        startDate=startDate,
        endDate=endDate,
        status=status,
        organizer=organizer,
        page=page,
        limit=limit,
    )
    bookings, total = service.list_bookings(filters)
    return _ok(bookings, meta={"total": total, "page": page, "limit": limit})


@router.post("/api/bookings", status_code=201)
def create_booking(
    body: BookingCreate,
    credentials: Any = Depends(get_credentials),
    organizer: str = Depends(get_organizer),
    service: BookingService = Depends(_booking_service),
) -> Dict[str, Any]:
    return _ok(service.create_booking(credentials, body, organizer=organizer))


@router.get("/api/bookings/stats")
def booking_stats(
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    service: BookingService = Depends(_booking_service),
) -> Dict[str, Any]:
    """Booking statistics; defaults to the last 30 days."""
    end = assume_utc(endDate) if endDate else _utcnow()
    start = assume_utc(startDate) if startDate else end - timedelta(days=30)
    _check_range(start, end)
    return _ok(service.get_booking_stats(start, end))


@router.get("/api/bookings/upcoming")
def upcoming_bookings(
    limit: int = Query(default=10, ge=1, le=100),
    service: BookingService = Depends(_booking_service),
) -> Dict[str, Any]:
    return _ok(service.get_upcoming_bookings(limit))


@router.get("/api/bookings/mine")
def my_bookings(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    organizer: str = Depends(get_organizer),
    service: BookingService = Depends(_booking_service),
) -> Dict[str, Any]:
    """Bookings organised by the caller named in ``X-User-Email``."""
    if not organizer:
        raise ValidationError("X-User-Email header is required")
    bookings, total = service.get_user_bookings(organizer, BookingFilters(page=page, limit=limit))
    return _ok(bookings, meta={"total": total, "page": page, "limit": limit})


@router.get("/api/bookings/conflicts")
def booking_conflicts(
    roomId: str,
    startTime: datetime,
    endTime: datetime,
    excludeId: Optional[str] = None,
    service: BookingService = Depends(_booking_service),
) -> Dict[str, Any]:
    """Existing bookings that a candidate interval would collide with."""
    start, end = assume_utc(startTime), assume_utc(endTime)
    _check_range(start, end)
    return _ok(service.get_conflicting_bookings(roomId, start, end, exclude_id=excludeId))


@router.get("/api/bookings/{booking_id}")
def get_booking(booking_id: str, service: BookingService = Depends(_booking_service)) -> Dict[str, Any]:
    return _ok(service.get_booking(booking_id))


@router.put("/api/bookings/{booking_id}")
def update_booking(
    booking_id: str,
    body: BookingUpdate,
    credentials: Any = Depends(get_credentials),
    service: BookingService = Depends(_booking_service),
) -> Dict[str, Any]:
    return _ok(service.update_booking(credentials, booking_id, body))


@router.delete("/api/bookings/{booking_id}")
def delete_booking(
    booking_id: str,
    credentials: Any = Depends(get_credentials),
    service: BookingService = Depends(_booking_service),
) -> Dict[str, Any]:
    """Delete a booking. ``cleanup`` reports whether its calendar event was removed too."""
    booking, cleanup = service.delete_booking(credentials, booking_id)
    return _ok(booking, cleanup=cleanup)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


def _error_body(message: str, code: str, **details: Any) -> Dict[str, Any]:
    return {"error": {"message": message, "code": code, "timestamp": iso_z(_utcnow()), **details}}


async def _service_error_handler(request: Request, exc: BookingServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.code, **exc.details))


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=_error_body("Validation failed", ValidationError.code, errors=_error_entries(exc.errors())),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_error_body("Internal server error", BookingServiceError.code))


def create_app(
    provider: Any = None,
    room_store: Optional[RoomStore] = None,
    booking_store: Optional[BookingStore] = None,
    config: Settings = settings,
) -> FastAPI:
    """Build the application with its own stores and services."""
    provider = provider if provider is not None else GoogleCalendarProvider(config)
    room_store = room_store if room_store is not None else RoomStore()
    booking_store = booking_store if booking_store is not None else BookingStore()

    application = FastAPI(title="Meeting Room Booking Service")
    application.state.config = config
    application.state.room_service = RoomService(provider, room_store, booking_store, config)
    application.state.booking_service = BookingService(provider, room_store, booking_store, config)
    application.state.availability_service = AvailabilityService(provider, room_store, config)

    application.add_exception_handler(BookingServiceError, _service_error_handler)
    application.add_exception_handler(RequestValidationError, _request_validation_handler)
    application.add_exception_handler(Exception, _unhandled_error_handler)
    application.include_router(router)
    return application


app = create_app()
