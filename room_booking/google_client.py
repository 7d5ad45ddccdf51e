"""Google Calendar client utilities for the booking service.

This module provides helpers to build credentials and the ``GoogleCalendarProvider``
used by the services for free/busy queries and for event and calendar
management. It encapsulates retry logic with exponential back-off for
transient errors and converts every remaining Google failure into
``ExternalProviderError`` so callers deal with a single error type. All
settings are provided via the ``Settings`` object in ``room_booking.config``.

The calls here are deliberately synchronous, matching the Google API client
library. Request handlers run in FastAPI's thread pool and bulk requests fan
out over a thread pool of their own.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import credentials as user_credentials
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import Settings, settings
from .errors import ExternalProviderError
from .intervals import Interval

logger = logging.getLogger(__name__)

# Scopes required for this application: free/busy, events and the room
# calendars themselves.
SCOPES: Tuple[str, ...] = (
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


def iso_z(dt: datetime) -> str:
    """Return an RFC3339 timestamp in UTC with a Z suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_rfc3339(s: str) -> datetime:
    """Parse RFC3339 timestamps returned by Google into timezone-aware datetimes."""
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return datetime.fromisoformat(s).astimezone(timezone.utc)


def _load_sa_info(raw: str) -> dict:
    """Load the service account key from inline JSON or a filesystem path."""
    raw = raw.strip()
    # Detect inline JSON by looking for a brace at the start.
    if raw.startswith("{"):
        return json.loads(raw)
    with open(raw, "r", encoding="utf-8") as fh:
        return json.load(fh)


def get_delegated_credentials(config: Settings = settings) -> Optional[service_account.Credentials]:
    """Return delegated service account credentials, or None when not configured.

    Domain-wide delegation impersonates ``GOOGLE_IMPERSONATE_USER``.
    """
    if not config.google_service_account_json:
        return None
    sa_info = _load_sa_info(config.google_service_account_json)
    creds = service_account.Credentials.from_service_account_info(sa_info, scopes=list(SCOPES))
    if config.google_impersonate_user:
        creds = creds.with_subject(config.google_impersonate_user)
    return creds


def credentials_from_token(
    access_token: str,
    refresh_token: Optional[str] = None,
    config: Settings = settings,
) -> user_credentials.Credentials:
    """Wrap a user's OAuth access token so the API client can use it.

    The token is passed through untouched; refreshing only happens inside
    the Google auth library when a refresh token and client are available.
    """
    return user_credentials.Credentials(
        token=access_token,
        refresh_token=refresh_token,
        token_uri=config.google_token_uri,
        client_id=config.google_client_id or None,
        client_secret=config.google_client_secret or None,
        scopes=list(SCOPES),
    )


def get_calendar_service(credentials: Any):
    """Build and return a Calendar service client."""
    return build("calendar", "v3", credentials=credentials, cache_discovery=False)


class GoogleCalendarProvider:
    """Calendar provider backed by the Google Calendar v3 API.

    Every method takes the caller's credentials first; the provider never
    inspects or stores them.
    """

    def __init__(self, config: Settings = settings):
        self.config = config

    def _execute(self, request: Any, what: str) -> Any:
        """Execute ``request``, retrying 5xx and rate-limit errors with back-off."""
        attempt = 0
        max_retries = self.config.google_max_retries
        while True:
            try:
                return request.execute()
            except HttpError as exc:
                attempt += 1
                status = getattr(exc.resp, "status", None)
                if attempt <= max_retries and status in RETRYABLE_STATUSES:
                    delay = self.config.google_backoff_seconds * (2 ** (attempt - 1))
                    logger.warning(
                        "%s transient error (status=%s), retrying in %.1fs (attempt %s/%s)",
                        what,
                        status,
                        delay,
                        attempt,
                        max_retries,
                    )
                    time.sleep(delay)
                    continue
                logger.error("%s failed after %s attempts: %s", what, attempt, exc)
                raise ExternalProviderError(f"{what} failed", upstream_status=status) from exc
            except GoogleAuthError as exc:
                logger.error("%s failed to authenticate: %s", what, exc)
                raise ExternalProviderError(f"{what} failed: invalid or expired credentials", upstream_status=401) from exc

    # Free/busy -----------------------------------------------------------

    def get_free_busy(
        self,
        credentials: Any,
        calendar_ids: Iterable[str],
        time_min: datetime,
        time_max: datetime,
    ) -> Dict[str, List[Interval]]:
        """Retrieve busy blocks for multiple calendars within a time window.

        Calendars are sent in batches of ``freebusy_batch_size`` to avoid
        hitting request size limits. A calendar-level error in the response
        (unknown calendar, missing access) fails the whole call.

        Returns:
            A mapping from calendar ID to busy intervals in UTC. Every
            requested calendar is present, possibly with an empty list.
        """
        ids = list(dict.fromkeys(calendar_ids))
        if not ids:
            return {}
        service = get_calendar_service(credentials)
        batch_size = max(self.config.freebusy_batch_size, 1)
        result: Dict[str, List[Interval]] = {cid: [] for cid in ids}

        for i in range(0, len(ids), batch_size):
            chunk = ids[i : i + batch_size]
            body = {
                "timeMin": iso_z(time_min),
                "timeMax": iso_z(time_max),
                "items": [{"id": cid} for cid in chunk],
            }
            response = self._execute(service.freebusy().query(body=body), "FreeBusy query")
            calendars: Dict[str, Any] = response.get("calendars", {})
            for cid, data in calendars.items():
                errors = data.get("errors") or []
                if errors:
                    reasons = ", ".join(str(e.get("reason", "unknown")) for e in errors)
                    logger.error("FreeBusy returned errors for calendar %s: %s", cid, reasons)
                    raise ExternalProviderError(f"Free/busy lookup failed for calendar {cid}: {reasons}")
                blocks: List[Interval] = []
                for block in data.get("busy", []):
                    start = parse_rfc3339(block["start"])
                    end = parse_rfc3339(block["end"])
                    if end <= start:
                        continue
                    blocks.append(Interval(start, end))
                result[cid] = blocks
        return result

    # Events --------------------------------------------------------------

    def create_event(self, credentials: Any, calendar_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
        service = get_calendar_service(credentials)
        body = dict(event)
        body.setdefault("status", "confirmed")
        created = self._execute(
            service.events().insert(calendarId=calendar_id, body=body, sendUpdates="all"),
            "Event creation",
        )
        logger.info("Event created: %s on %s", created.get("id"), calendar_id)
        return created

    def update_event(
        self, credentials: Any, calendar_id: str, event_id: str, changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Patch only the given event fields."""
        service = get_calendar_service(credentials)
        updated = self._execute(
            service.events().patch(calendarId=calendar_id, eventId=event_id, body=changes, sendUpdates="all"),
            "Event update",
        )
        logger.info("Event updated: %s on %s", event_id, calendar_id)
        return updated

    def delete_event(self, credentials: Any, calendar_id: str, event_id: str) -> None:
        service = get_calendar_service(credentials)
        self._execute(
            service.events().delete(calendarId=calendar_id, eventId=event_id, sendUpdates="all"),
            "Event deletion",
        )
        logger.info("Event deleted: %s on %s", event_id, calendar_id)

    # Calendars -----------------------------------------------------------

    def create_calendar(self, credentials: Any, metadata: Dict[str, Any]) -> Dict[str, Any]:
        service = get_calendar_service(credentials)
        body = {
            "summary": metadata["summary"],
            "description": metadata.get("description"),
            "location": metadata.get("location"),
            "timeZone": metadata.get("timeZone") or self.config.default_time_zone,
            "conferenceProperties": {"allowedConferenceSolutionTypes": ["hangoutsMeet"]},
        }
        created = self._execute(service.calendars().insert(body=body), "Calendar creation")
        logger.info("Calendar created: %s", created.get("id"))
        return created

    def update_calendar(self, credentials: Any, calendar_id: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        service = get_calendar_service(credentials)
        updated = self._execute(
            service.calendars().patch(calendarId=calendar_id, body=metadata),
            "Calendar update",
        )
        logger.info("Calendar updated: %s", calendar_id)
        return updated

    def delete_calendar(self, credentials: Any, calendar_id: str) -> None:
        service = get_calendar_service(credentials)
        self._execute(service.calendars().delete(calendarId=calendar_id), "Calendar deletion")
        logger.info("Calendar deleted: %s", calendar_id)

    def list_calendars(self, credentials: Any) -> List[Dict[str, Any]]:
        """Return every calendar on the caller's calendar list, following pagination."""
        service = get_calendar_service(credentials)
        calendars: List[Dict[str, Any]] = []
        request = service.calendarList().list(maxResults=250)
        while request is not None:
            response = self._execute(request, "Calendar list")
            calendars.extend(response.get("items", []))
            request = service.calendarList().list_next(previous_request=request, previous_response=response)
        return calendars
