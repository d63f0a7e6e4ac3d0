"""Bidirectional synchronization between internal job-search events and Google Calendar."""

from jobtrack.calendar_sync.errors import (
    AuthenticationRequiredError,
    CalendarSyncError,
    GatewayError,
    InvalidCredentialError,
    NotFoundError,
    TokenRefreshError,
)

__all__ = [
    "AuthenticationRequiredError",
    "CalendarSyncError",
    "GatewayError",
    "InvalidCredentialError",
    "NotFoundError",
    "TokenRefreshError",
]
