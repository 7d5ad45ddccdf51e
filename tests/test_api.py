"""Tests for the HTTP surface.

Tests cover:
  - GET  /healthz
  - /api/rooms (list, create, get, update, delete, sync, utilization)
  - /api/availability (query, single room, bulk, suggest)
  - /api/bookings (lifecycle, conflicts, stats, upcoming, mine)
  - Authentication (Bearer token, missing credentials)
  - Error rendering
"""
from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from room_booking import auth
from room_booking.config import Settings
from room_booking.intervals import Interval
from room_booking.main import create_app

from conftest import utc

DAY = {"startDate": "2024-01-15T00:00:00Z", "endDate": "2024-01-15T23:59:00Z"}


def booking_body(room_id, start="2024-01-15T10:00:00Z", end="2024-01-15T11:00:00Z", **extra):
    return {"roomId": room_id, "title": "Planning", "startTime": start, "endTime": end, **extra}


# ─────────────────────────────────────────────────────────────
# Health & auth
# ─────────────────────────────────────────────────────────────


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


class TestAuth:
    @pytest.fixture
    def unauthenticated_client(self, provider, room_store, booking_store, config):
        app = create_app(provider=provider, room_store=room_store, booking_store=booking_store, config=config)
        with patch.object(auth, "get_delegated_credentials", return_value=None):
            with TestClient(app) as c:
                yield c

    def test_missing_credentials(self, unauthenticated_client, add_room):
        room = add_room("Room A")

        resp = unauthenticated_client.get("/api/availability", params={"roomIds": room.id, "duration": 60, **DAY})

        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHENTICATED"

    def test_bearer_token(self, unauthenticated_client, add_room):
        room = add_room("Room A")

        resp = unauthenticated_client.get(
            "/api/availability",
            params={"roomIds": room.id, "duration": 60, **DAY},
            headers={"Authorization": "Bearer ya29.token"},
        )

        assert resp.status_code == 200

    def test_reads_need_no_credentials(self, unauthenticated_client, add_room):
        add_room("Room A")

        assert unauthenticated_client.get("/api/rooms").status_code == 200


# ─────────────────────────────────────────────────────────────
# Rooms
# ─────────────────────────────────────────────────────────────


class TestRoomsApi:
    def test_create_and_fetch(self, client):
        resp = client.post("/api/rooms", json={"name": "Board Room", "capacity": 8, "equipment": ["tv"]})

        assert resp.status_code == 201
        room = resp.json()["data"]
        assert room["calendarId"].endswith("@group.calendar.google.com")
        assert client.get(f"/api/rooms/{room['id']}").json()["data"]["name"] == "Board Room"

    def test_duplicate_name(self, client, add_room):
        add_room("Board Room")

        resp = client.post("/api/rooms", json={"name": "board room", "capacity": 8})

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "DUPLICATE_ROOM"

    def test_invalid_body(self, client):
        resp = client.post("/api/rooms", json={"name": "Board Room", "capacity": 0})

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["errors"][0]["loc"] == ["body", "capacity"]

    def test_list_with_filters_and_meta(self, client, add_room):
        add_room("Small", capacity=2)
        add_room("Big", capacity=10, equipment=["tv"])

        resp = client.get("/api/rooms", params={"capacity": 4, "equipment": "tv"})

        body = resp.json()
        assert body["success"] is True
        assert [r["name"] for r in body["data"]] == ["Big"]
        assert body["meta"] == {"total": 1, "page": 1, "limit": 50}

    def test_not_found_format(self, client):
        resp = client.get("/api/rooms/missing")

        assert resp.status_code == 404
        error = resp.json()["error"]
        assert error["code"] == "NOT_FOUND"
        assert error["message"] == "Room not found"
        assert error["roomId"] == "missing"
        assert error["timestamp"].endswith("Z")

    def test_update(self, client, add_room):
        room = add_room("Room A")

        resp = client.put(f"/api/rooms/{room.id}", json={"capacity": 12})

        assert resp.status_code == 200
        assert resp.json()["data"]["capacity"] == 12

    def test_delete_reports_cleanup(self, client, add_room, provider):
        room = add_room("Room A")
        provider.fail_delete_calendar = True

        body = client.delete(f"/api/rooms/{room.id}").json()

        assert body["data"]["id"] == room.id
        assert body["cleanup"]["succeeded"] is False
        assert client.get(f"/api/rooms/{room.id}").status_code == 404

    def test_sync(self, client, provider):
        provider.calendars = [{"id": "x@group.calendar.google.com", "summary": "Meeting Room X"}]

        resp = client.post("/api/rooms/sync")

        assert resp.json()["data"]["created"] == 1

    def test_utilization(self, client, add_room):
        room = add_room("Room A")

        resp = client.get(
            f"/api/rooms/{room.id}/utilization",
            params={"startDate": "2024-01-15T00:00:00Z", "endDate": "2024-01-16T00:00:00Z"},
        )

        assert resp.json()["data"] == {"roomId": room.id, "totalHours": 9.0, "bookedHours": 0.0, "utilizationRate": 0.0}

    def test_utilization_rejects_inverted_range(self, client, add_room):
        room = add_room("Room A")

        resp = client.get(
            f"/api/rooms/{room.id}/utilization",
            params={"startDate": "2024-01-16T00:00:00Z", "endDate": "2024-01-15T00:00:00Z"},
        )

        assert resp.status_code == 400


# ─────────────────────────────────────────────────────────────
# Availability
# ─────────────────────────────────────────────────────────────


class TestAvailabilityApi:
    def test_multiple_rooms(self, client, add_room):
        a = add_room("Room A")
        b = add_room("Room B")

        resp = client.get("/api/availability", params={"roomIds": [a.id, b.id], "duration": 60, **DAY})

        assert resp.status_code == 200
        [day] = resp.json()["data"]
        assert day["date"] == "2024-01-15"
        assert len(day["slots"]) == 66
        assert day["slots"][0]["start"] == "2024-01-15T09:00:00Z"
        assert day["slots"][0]["isAvailable"] is True

    @pytest.mark.parametrize("duration", [10, 481])
    def test_duration_bounds(self, client, add_room, duration):
        room = add_room("Room A")

        resp = client.get("/api/availability", params={"roomIds": room.id, "duration": duration, **DAY})

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_range_limit(self, client, add_room):
        room = add_room("Room A")

        resp = client.get(
            "/api/availability",
            params={
                "roomIds": room.id,
                "duration": 60,
                "startDate": "2024-01-01T00:00:00Z",
                "endDate": "2024-02-15T00:00:00Z",
            },
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Search period cannot exceed 30 days"

    def test_inverted_range(self, client, add_room):
        room = add_room("Room A")

        resp = client.get(
            "/api/availability",
            params={"roomIds": room.id, "duration": 60, "startDate": DAY["endDate"], "endDate": DAY["startDate"]},
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "End date must be after start date"

    def test_missing_room_ids(self, client):
        resp = client.get("/api/availability", params={"duration": 60, **DAY})

        assert resp.status_code == 400

    def test_no_valid_rooms(self, client):
        resp = client.get("/api/availability", params={"roomIds": "missing", "duration": 60, **DAY})

        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NO_VALID_ROOMS"

    def test_provider_failure(self, client, add_room, provider):
        room = add_room("Room A")
        provider.failing_calendars.add(room.calendarId)

        resp = client.get("/api/availability", params={"roomIds": room.id, "duration": 60, **DAY})

        assert resp.status_code == 502
        assert resp.json()["error"]["upstreamStatus"] == 503

    def test_single_room_defaults_to_an_hour(self, client, add_room, provider):
        room = add_room("Room A")
        provider.busy[room.calendarId] = [Interval(utc(2024, 1, 15, 12), utc(2024, 1, 15, 13))]

        resp = client.get(f"/api/availability/{room.id}", params={"date": "2024-01-15"})

        [day] = resp.json()["data"]
        assert len(day["slots"]) == 26
        assert day["slots"][0]["end"] == "2024-01-15T10:00:00Z"

    def test_bulk_isolates_failures(self, client, add_room, provider):
        a = add_room("Room A")
        b = add_room("Room B")
        c = add_room("Room C")
        provider.failing_calendars.add(b.calendarId)

        resp = client.post(
            "/api/availability/bulk",
            params={"duration": 60},
            json={
                "requests": [
                    {"id": "r1", "roomIds": [a.id], **DAY},
                    {"id": "r2", "roomIds": [b.id], **DAY},
                    {"id": "r3", "roomIds": [c.id], **DAY},
                ]
            },
        )

        assert resp.status_code == 200
        results = resp.json()["data"]
        assert [r["requestId"] for r in results] == ["r1", "r2", "r3"]
        assert [r["success"] for r in results] == [True, False, True]
        assert "data" not in results[1]
        assert results[1]["error"] == "FreeBusy query failed"
        assert len(results[2]["data"][0]["slots"]) == 33

    def test_bulk_requires_duration(self, client, add_room):
        room = add_room("Room A")

        resp = client.post("/api/availability/bulk", json={"requests": [{"roomIds": [room.id], **DAY}]})

        assert resp.status_code == 400

    def test_bulk_rejects_inverted_request(self, client, add_room):
        room = add_room("Room A")

        resp = client.post(
            "/api/availability/bulk",
            params={"duration": 60},
            json={"requests": [{"roomIds": [room.id], "startDate": DAY["endDate"], "endDate": DAY["startDate"]}]},
        )

        assert resp.status_code == 400

    def test_suggest(self, client, add_room):
        small = add_room("Small", capacity=4, equipment=["tv"])
        large = add_room("Large", capacity=8)

        resp = client.post(
            "/api/availability/suggest",
            json={
                "startTime": "2024-01-15T10:00:00Z",
                "endTime": "2024-01-15T11:00:00Z",
                "requiredCapacity": 4,
                "preferredEquipment": ["tv"],
            },
        )

        suggestions = resp.json()["data"]
        assert [s["room"]["id"] for s in suggestions] == [small.id, large.id]
        assert [s["score"] for s in suggestions] == [60, 46]


class TestConfiguredLimits:
    """Limits come from the Settings handed to create_app."""

    @pytest.fixture
    def strict_client(self, provider, room_store, booking_store):
        config = Settings(_env_file=None, default_time_zone="UTC", max_duration_minutes=120, max_range_days=7)
        app = create_app(provider=provider, room_store=room_store, booking_store=booking_store, config=config)
        app.dependency_overrides[auth.get_credentials] = lambda: object()
        with TestClient(app) as c:
            yield c

    def test_duration_above_configured_maximum(self, strict_client, add_room):
        room = add_room("Room A")

        resp = strict_client.get("/api/availability", params={"roomIds": room.id, "duration": 180, **DAY})

        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Duration must be between 15 and 120 minutes"

    def test_single_room_uses_configured_maximum(self, strict_client, add_room):
        room = add_room("Room A")

        resp = strict_client.get(f"/api/availability/{room.id}", params={"date": "2024-01-15", "duration": 180})

        assert resp.status_code == 400

    def test_bulk_uses_configured_maximum(self, strict_client, add_room):
        room = add_room("Room A")

        resp = strict_client.post(
            "/api/availability/bulk",
            params={"duration": 180},
            json={"requests": [{"roomIds": [room.id], **DAY}]},
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_range_above_configured_maximum(self, strict_client, add_room):
        room = add_room("Room A")

        resp = strict_client.get(
            "/api/availability",
            params={
                "roomIds": room.id,
                "duration": 60,
                "startDate": "2024-01-01T00:00:00Z",
                "endDate": "2024-01-10T00:00:00Z",
            },
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Search period cannot exceed 7 days"

    def test_default_app_keeps_wider_limits(self, client, add_room):
        room = add_room("Room A")

        resp = client.get("/api/availability", params={"roomIds": room.id, "duration": 180, **DAY})

        assert resp.status_code == 200

    def test_credentials_use_app_config(self, provider, room_store, booking_store):
        config = Settings(_env_file=None, google_client_id="app-client")
        app = create_app(provider=provider, room_store=room_store, booking_store=booking_store, config=config)

        with patch.object(auth, "credentials_from_token", return_value=object()) as wrap:
            with TestClient(app) as c:
                c.get(
                    "/api/availability",
                    params={"roomIds": "missing", "duration": 60, **DAY},
                    headers={"Authorization": "Bearer ya29.token"},
                )

        assert wrap.call_args.kwargs["config"] is config


# ─────────────────────────────────────────────────────────────
# Bookings
# ─────────────────────────────────────────────────────────────


class TestBookingsApi:
    @pytest.fixture
    def room(self, add_room):
        return add_room("Room A")

    def test_lifecycle(self, client, room):
        created = client.post(
            "/api/bookings", json=booking_body(room.id), headers={"X-User-Email": "owner@example.com"}
        )
        assert created.status_code == 201
        booking = created.json()["data"]
        assert booking["organizer"] == "owner@example.com"
        assert booking["status"] == "confirmed"

        moved = client.put(
            f"/api/bookings/{booking['id']}",
            json={"startTime": "2024-01-15T10:30:00Z", "endTime": "2024-01-15T11:30:00Z"},
        )
        assert moved.status_code == 200
        assert moved.json()["data"]["startTime"] == "2024-01-15T10:30:00Z"

        assert client.get(f"/api/bookings/{booking['id']}").json()["data"]["title"] == "Planning"

        deleted = client.delete(f"/api/bookings/{booking['id']}").json()
        assert deleted["cleanup"]["succeeded"] is True
        assert client.get(f"/api/bookings/{booking['id']}").status_code == 404

    def test_conflict(self, client, room):
        first = client.post("/api/bookings", json=booking_body(room.id)).json()["data"]

        resp = client.post(
            "/api/bookings", json=booking_body(room.id, "2024-01-15T10:30:00Z", "2024-01-15T11:30:00Z")
        )

        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "ROOM_CONFLICT"
        assert error["conflictingBookingIds"] == [first["id"]]

    def test_cannot_create_cancelled(self, client, room):
        resp = client.post("/api/bookings", json=booking_body(room.id, status="cancelled"))

        assert resp.status_code == 400

    def test_unknown_room(self, client):
        resp = client.post("/api/bookings", json=booking_body("missing"))

        assert resp.status_code == 404

    def test_list_filters(self, client, room, add_room):
        other = add_room("Room B")
        client.post("/api/bookings", json=booking_body(room.id))
        client.post("/api/bookings", json=booking_body(other.id))

        body = client.get("/api/bookings", params={"roomId": other.id}).json()

        assert body["meta"]["total"] == 1
        assert body["data"][0]["roomId"] == other.id

    def test_conflicts_endpoint(self, client, room):
        first = client.post("/api/bookings", json=booking_body(room.id)).json()["data"]
        params = {"roomId": room.id, "startTime": "2024-01-15T10:30:00Z", "endTime": "2024-01-15T12:00:00Z"}

        assert [b["id"] for b in client.get("/api/bookings/conflicts", params=params).json()["data"]] == [first["id"]]
        params["excludeId"] = first["id"]
        assert client.get("/api/bookings/conflicts", params=params).json()["data"] == []

    def test_stats(self, client, room):
        client.post("/api/bookings", json=booking_body(room.id))

        resp = client.get(
            "/api/bookings/stats", params={"startDate": "2024-01-01T00:00:00Z", "endDate": "2024-02-01T00:00:00Z"}
        )

        stats = resp.json()["data"]
        assert stats["totalBookings"] == 1
        assert stats["averageDuration"] == 60
        assert stats["peakHours"] == [{"hour": 10, "count": 1}]

    def test_upcoming(self, client, room):
        client.post("/api/bookings", json=booking_body(room.id))
        future = client.post(
            "/api/bookings", json=booking_body(room.id, "2099-01-15T10:00:00Z", "2099-01-15T11:00:00Z")
        ).json()["data"]

        upcoming = client.get("/api/bookings/upcoming").json()["data"]

        assert [b["id"] for b in upcoming] == [future["id"]]

    def test_mine(self, client, room):
        client.post("/api/bookings", json=booking_body(room.id), headers={"X-User-Email": "me@example.com"})
        client.post(
            "/api/bookings",
            json=booking_body(room.id, "2024-01-15T12:00:00Z", "2024-01-15T13:00:00Z"),
            headers={"X-User-Email": "you@example.com"},
        )

        body = client.get("/api/bookings/mine", headers={"X-User-Email": "me@example.com"}).json()

        assert body["meta"]["total"] == 1
        assert body["data"][0]["organizer"] == "me@example.com"
        assert client.get("/api/bookings/mine").status_code == 400
