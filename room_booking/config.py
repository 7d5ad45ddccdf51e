"""Application configuration settings.

This module defines the ``Settings`` class using ``pydantic-settings`` to
load configuration from environment variables (and an optional ``.env``
file). It centralises all runtime configuration for the service, such as
Google API credentials, working hours and the limits applied to
availability queries.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration values loaded from environment variables.

    Environment variable names map to fields by alias. Every value has a
    default so the service starts without any configuration; Google
    credentials are only needed once a request actually reaches the
    calendar provider.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # Google OAuth client, used to refresh user access tokens
    google_client_id: str = Field(default="", alias="GOOGLE_CLIENT_ID")
    google_client_secret: str = Field(default="", alias="GOOGLE_CLIENT_SECRET")
    google_token_uri: str = Field(
        default="https://oauth2.googleapis.com/token",
        alias="GOOGLE_TOKEN_URI",
    )

    # Optional service account fallback for requests without a bearer token
    google_service_account_json: str = Field(
        default="",
        alias="GOOGLE_SERVICE_ACCOUNT_JSON",
        description="Inline JSON key or a path to the key file.",
    )
    google_impersonate_user: str = Field(default="", alias="GOOGLE_IMPERSONATE_USER")

    # Retry policy for transient Google API errors
    google_max_retries: int = Field(default=3, alias="GOOGLE_MAX_RETRIES")
    google_backoff_seconds: float = Field(default=1.0, alias="GOOGLE_BACKOFF_SECONDS")
    freebusy_batch_size: int = Field(
        default=40,
        alias="FREEBUSY_BATCH_SIZE",
        description="Number of calendars sent in a single free/busy request.",
    )

    # Availability computation
    working_day_start_hour: int = Field(default=9, ge=0, le=23, alias="WORKING_DAY_START_HOUR")
    working_day_end_hour: int = Field(default=18, ge=1, le=24, alias="WORKING_DAY_END_HOUR")
    slot_step_minutes: int = Field(
        default=15,
        gt=0,
        alias="SLOT_STEP_MINUTES",
        description="Granularity between candidate slot start times. Slots overlap when it is shorter than the duration.",
    )
    min_duration_minutes: int = Field(default=15, alias="MIN_DURATION_MINUTES")
    max_duration_minutes: int = Field(default=480, alias="MAX_DURATION_MINUTES")
    max_range_days: int = Field(default=30, alias="MAX_RANGE_DAYS")
    bulk_max_workers: int = Field(default=8, gt=0, alias="BULK_MAX_WORKERS")

    # Rooms
    default_time_zone: str = Field(default="Asia/Tokyo", alias="DEFAULT_TIME_ZONE")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


# Instantiate settings at module import time. This allows other modules to
# import ``settings`` directly without repeatedly reading environment variables.
settings = Settings()
