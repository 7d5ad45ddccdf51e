"""Caller credentials for the booking API.

Auth scheme:
    Authorization: Bearer <Google OAuth access token>

The token is wrapped into Google credentials and passed straight through to
the calendar provider; this service never inspects it. Requests without a
bearer token fall back to the configured service account (domain-wide
delegation) when there is one, and are rejected otherwise.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import AuthenticationError
from .google_client import credentials_from_token, get_delegated_credentials

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def get_credentials(
    request: Request,
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    refresh_token: Optional[str] = Header(default=None, alias="X-Google-Refresh-Token"),
) -> Any:
    """FastAPI dependency returning credentials for the calendar provider.

    Raises:
        AuthenticationError: no bearer token and no service account configured.
    """
    config = request.app.state.config
    if bearer is not None and bearer.credentials:
        return credentials_from_token(bearer.credentials, refresh_token=refresh_token, config=config)

    delegated = get_delegated_credentials(config)
    if delegated is not None:
        logger.debug("No bearer token supplied, using delegated service account credentials")
        return delegated

    raise AuthenticationError("Access token is required")


def get_organizer(user_email: Optional[str] = Header(default=None, alias="X-User-Email")) -> str:
    """E-mail recorded as the organizer of new bookings; empty when unknown."""
    return (user_email or "").strip()
