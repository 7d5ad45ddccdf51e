"""Pydantic data models used by the services and the API.

These models define the structure of rooms, bookings and availability
results exchanged with API callers. They are separate from the Google API
data structures to decouple our internal representation from external
dependencies. Field names are camelCase because that is what travels on the
wire.
"""

import math
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, List, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AfterValidator, BaseModel, Field, ValidationInfo, field_validator, model_validator

from .config import Settings, settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


def assume_utc(value: datetime) -> datetime:
    """Naive datetimes from the wire are treated as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(assume_utc)]


def _check_time_zone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown time zone: {value}")
    return value


TimeZoneName = Annotated[Optional[str], AfterValidator(_check_time_zone)]


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class TimeSlot(BaseModel):
    """A free candidate interval of exactly the requested duration."""

    start: datetime
    end: datetime
    roomId: str
    isAvailable: bool = True


class AvailabilityDay(BaseModel):
    """All rooms' free slots for one calendar day, ordered by start."""

    date: date
    slots: List[TimeSlot] = []


def check_duration(duration: int, config: Settings) -> None:
    """Raise ``ValueError`` unless ``duration`` is within the configured bounds."""
    low, high = config.min_duration_minutes, config.max_duration_minutes
    if not low <= duration <= high:
        raise ValueError(f"Duration must be between {low} and {high} minutes")


class AvailabilityRequest(BaseModel):
    """Core availability request: rooms, an inclusive date range and a duration."""

    roomIds: List[str] = Field(..., min_length=1)
    startDate: UtcDatetime
    endDate: UtcDatetime
    duration: int = Field(..., gt=0, description="Meeting length in minutes.")

    @model_validator(mode="after")
    def _check_range(self) -> "AvailabilityRequest":
        if self.startDate >= self.endDate:
            raise ValueError("End date must be after start date")
        return self


class AvailabilityQuery(AvailabilityRequest):
    """Availability request as accepted by the HTTP surface.

    Duration and range bounds are read from the ``Settings`` passed as
    ``context={"config": ...}``, else from the module-level settings.
    """

    @model_validator(mode="after")
    def _check_limits(self, info: ValidationInfo) -> "AvailabilityQuery":
        config = (info.context or {}).get("config", settings)
        check_duration(self.duration, config)
        max_days = config.max_range_days
        days = math.ceil((self.endDate - self.startDate).total_seconds() / 86400)
        if days > max_days:
            raise ValueError(f"Search period cannot exceed {max_days} days")
        return self


class BulkAvailabilityItem(BaseModel):
    """One request inside a bulk availability call."""

    id: Optional[str] = None
    roomIds: List[str] = Field(..., min_length=1)
    startDate: UtcDatetime
    endDate: UtcDatetime

    @model_validator(mode="after")
    def _check_range(self) -> "BulkAvailabilityItem":
        if self.startDate >= self.endDate:
            raise ValueError("End date must be after start date for all requests")
        return self


class BulkAvailabilityRequest(BaseModel):
    requests: List[BulkAvailabilityItem] = Field(..., min_length=1)


class BulkAvailabilityResult(BaseModel):
    """Outcome of one bulk sub-request; failures do not abort the batch."""

    requestId: Optional[str] = None
    success: bool
    data: Optional[List[AvailabilityDay]] = None
    error: Optional[str] = None
    code: Optional[str] = None


# ---------------------------------------------------------------------------
# Rooms
# ---------------------------------------------------------------------------


class MeetingRoom(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    calendarId: str
    description: Optional[str] = None
    location: Optional[str] = None
    capacity: int
    equipment: List[str] = []
    timeZone: str
    isActive: bool = True
    createdAt: datetime = Field(default_factory=_utcnow)
    updatedAt: datetime = Field(default_factory=_utcnow)


class RoomCreate(BaseModel):
    name: str = Field(..., min_length=1)
    capacity: int = Field(..., ge=1)
    description: Optional[str] = None
    location: Optional[str] = None
    equipment: List[str] = []
    timeZone: TimeZoneName = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Room name is required")
        return value


class RoomUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    capacity: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None
    location: Optional[str] = None
    equipment: Optional[List[str]] = None
    timeZone: TimeZoneName = None
    isActive: Optional[bool] = None


class RoomFilters(BaseModel):
    isActive: Optional[bool] = None
    capacity: Optional[int] = Field(default=None, ge=0, description="Minimum capacity.")
    equipment: List[str] = []
    page: int = Field(default=1, ge=1)
    limit: Optional[int] = Field(default=None, ge=1, le=100)


class RoomSuggestion(BaseModel):
    room: MeetingRoom
    score: int
    matchingEquipment: List[str] = []


class SuggestRoomRequest(BaseModel):
    startTime: UtcDatetime
    endTime: UtcDatetime
    requiredCapacity: int = Field(..., ge=1)
    preferredEquipment: List[str] = []

    @model_validator(mode="after")
    def _check_range(self) -> "SuggestRoomRequest":
        if self.startTime >= self.endTime:
            raise ValueError("End time must be after start time")
        return self


class RoomUtilization(BaseModel):
    roomId: str
    totalHours: float
    bookedHours: float
    utilizationRate: float


class SyncRequest(BaseModel):
    autoFilter: bool = True
    selectedCalendarIds: Optional[List[str]] = None


class SyncSummary(BaseModel):
    synced: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[str] = []


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class RecurrenceFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Recurrence(BaseModel):
    frequency: RecurrenceFrequency
    interval: int = Field(default=1, ge=1)
    endDate: Optional[UtcDatetime] = None

    def to_rrule(self) -> str:
        rule = f"RRULE:FREQ={self.frequency.value.upper()};INTERVAL={self.interval}"
        if self.endDate is not None:
            until = self.endDate.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
            rule += f";UNTIL={until}"
        return rule


class Booking(BaseModel):
    id: str = Field(default_factory=_new_id)
    eventId: str
    calendarId: str
    roomId: str
    title: str
    description: Optional[str] = None
    startTime: datetime
    endTime: datetime
    organizer: str = ""
    attendees: List[str] = []
    status: BookingStatus = BookingStatus.CONFIRMED
    recurringEventId: Optional[str] = None
    isRecurring: bool = False
    createdAt: datetime = Field(default_factory=_utcnow)
    updatedAt: datetime = Field(default_factory=_utcnow)


class BookingCreate(BaseModel):
    roomId: str
    title: str = Field(..., min_length=1)
    startTime: UtcDatetime
    endTime: UtcDatetime
    description: Optional[str] = None
    attendees: List[str] = []
    status: BookingStatus = BookingStatus.CONFIRMED
    recurrence: Optional[Recurrence] = None

    @field_validator("status")
    @classmethod
    def _not_cancelled(cls, value: BookingStatus) -> BookingStatus:
        if value is BookingStatus.CANCELLED:
            raise ValueError("A new booking cannot be cancelled")
        return value


class BookingUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    startTime: Optional[UtcDatetime] = None
    endTime: Optional[UtcDatetime] = None
    attendees: Optional[List[str]] = None
    status: Optional[BookingStatus] = None


class BookingFilters(BaseModel):
    roomId: Optional[str] = None
    startDate: Optional[UtcDatetime] = None
    endDate: Optional[UtcDatetime] = None
    status: Optional[BookingStatus] = None
    organizer: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=100)


class PeakHour(BaseModel):
    hour: int
    count: int


class BookingStats(BaseModel):
    totalBookings: int = 0
    confirmedBookings: int = 0
    tentativeBookings: int = 0
    cancelledBookings: int = 0
    averageDuration: int = Field(default=0, description="Minutes, rounded.")
    peakHours: List[PeakHour] = []


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


class CleanupOutcome(BaseModel):
    """Result of the best-effort remote cleanup that accompanies a deletion."""

    attempted: bool = True
    succeeded: bool
    error: Optional[str] = None
