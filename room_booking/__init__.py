# Package initializer for the meeting room booking service.

"""
The `room_booking` package contains all modules for the Google Calendar backed meeting room booking service.

Modules:

- ``config``: application settings loaded from environment variables.
- ``errors``: the service's exception hierarchy.
- ``intervals`` and ``slots``: half-open intervals and free slot generation.
- ``models``: Pydantic data models for requests and responses.
- ``stores``: in-memory room and booking stores.
- ``google_client``: helpers and the calendar provider for Google APIs.
- ``availability``, ``bookings``, ``rooms``: the services.
- ``auth`` and ``main``: the FastAPI application definition.

"""
