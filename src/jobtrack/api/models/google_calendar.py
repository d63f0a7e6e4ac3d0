"""Request/response models for the Google Calendar endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from jobtrack.calendar_sync.engine import SyncDirection
from jobtrack.calendar_sync.settings import SyncSettings


class AuthUrlResponse(BaseModel):
    """Authorization URL for clients that follow the redirect themselves."""

    authorization_url: str
    state: str


class CallbackSuccess(BaseModel):
    success: bool = True
    message: str = "Google Calendar connected"
    calendar_id: str


class CallbackError(BaseModel):
    """Returned when the user denied consent or Google reported an error.

    Raw provider error strings are not echoed back.
    """

    success: bool = False
    error_code: str
    message: str


class ConnectionStatusResponse(BaseModel):
    connected: bool
    settings: SyncSettings | None = None


class DisconnectResponse(BaseModel):
    success: bool = True
    message: str = "Google Calendar disconnected"


class SyncRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sync_direction: SyncDirection = Field(default=SyncDirection.BIDIRECTIONAL)
