"""Google Calendar connection and sync endpoints.

The connect flow:
  1. GET /api/google-calendar/auth
     - Builds the Google consent URL with ``state`` set to the acting user id.
     - Redirects the browser, or returns the URL as JSON with ``?redirect=false``.

  2. GET /api/google-calendar/callback
     - Rejects a ``state`` that does not match the acting user (401).
     - Exchanges the code, stores the tokens, discovers the primary
       calendar, and enables sync with default settings.
     - Redirects to the dashboard with ``?google_calendar=connected|error``
       when a dashboard URL is configured, otherwise answers with JSON.

Everything else (status, settings, calendars, sync, logs) operates on the
connected account.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, RedirectResponse, Response

from jobtrack.api.deps import (
    get_config,
    get_connection_service,
    get_current_user_id,
    get_gateway,
    get_settings_registry,
    get_sync_engine,
    get_sync_log,
)
from jobtrack.api.models.google_calendar import (
    AuthUrlResponse,
    CallbackError,
    CallbackSuccess,
    ConnectionStatusResponse,
    DisconnectResponse,
    SyncRequest,
)
from jobtrack.calendar_sync.connection import CalendarConnectionService
from jobtrack.calendar_sync.engine import CalendarSyncEngine, SyncResult
from jobtrack.calendar_sync.errors import CalendarSyncError
from jobtrack.calendar_sync.gateway import GoogleCalendar, GoogleCalendarGateway
from jobtrack.calendar_sync.settings import SyncSettings, SyncSettingsPatch, SyncSettingsRegistry
from jobtrack.calendar_sync.sync_log import SyncLogEntry, SyncLogWriter
from jobtrack.config import AppConfig

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/google-calendar", tags=["google-calendar"])

MAX_LOG_LIMIT = 100


def _dashboard_redirect(dashboard_url: str, outcome: str) -> RedirectResponse:
    separator = "&" if "?" in dashboard_url else "?"
    return RedirectResponse(url=f"{dashboard_url}{separator}google_calendar={outcome}", status_code=302)


@router.get(
    "/auth",
    responses={
        200: {"model": AuthUrlResponse, "description": "JSON payload (redirect=false)"},
        302: {"description": "Redirect to Google authorization URL"},
    },
)
async def google_calendar_auth(
    redirect: bool = Query(
        default=True,
        description="If true (default), redirect to Google. If false, return the URL as JSON.",
    ),
    user_id: str = Depends(get_current_user_id),
    connection: CalendarConnectionService = Depends(get_connection_service),
) -> Response:
    authorization_url = connection.authorization_url(user_id)
    if redirect:
        return RedirectResponse(url=authorization_url, status_code=302)
    return JSONResponse(
        content=AuthUrlResponse(authorization_url=authorization_url, state=user_id).model_dump()
    )


@router.get("/callback")
async def google_calendar_callback(
    code: str | None = Query(default=None, description="Authorization code from Google."),
    state: str | None = Query(default=None, description="State issued by /auth."),
    error: str | None = Query(default=None, description="OAuth error code from Google."),
    user_id: str = Depends(get_current_user_id),
    connection: CalendarConnectionService = Depends(get_connection_service),
    config: AppConfig = Depends(get_config),
) -> Response:
    """Complete the connection after the user granted consent."""
    dashboard_url = config.api.dashboard_url

    if error:
        logger.warning("Google OAuth provider error: %s", error)
        if dashboard_url:
            return _dashboard_redirect(dashboard_url, "error")
        payload = CallbackError(
            error_code="provider_error",
            message="Google did not grant access to the calendar.",
        )
        return JSONResponse(status_code=400, content=payload.model_dump())

    if not code:
        payload = CallbackError(
            error_code="missing_code",
            message="Authorization code is missing from the callback.",
        )
        return JSONResponse(status_code=400, content=payload.model_dump())

    try:
        settings = await connection.complete(user_id, code, state)
    except CalendarSyncError:
        if dashboard_url:
            logger.warning("Google Calendar connection failed", exc_info=True)
            return _dashboard_redirect(dashboard_url, "error")
        raise

    if dashboard_url:
        return _dashboard_redirect(dashboard_url, "connected")
    return JSONResponse(
        content=CallbackSuccess(calendar_id=settings.google_calendar_id).model_dump()
    )


@router.post("/disconnect", response_model=DisconnectResponse)
async def google_calendar_disconnect(
    user_id: str = Depends(get_current_user_id),
    connection: CalendarConnectionService = Depends(get_connection_service),
) -> DisconnectResponse:
    await connection.disconnect(user_id)
    return DisconnectResponse()


@router.get("/status", response_model=ConnectionStatusResponse)
async def google_calendar_status(
    user_id: str = Depends(get_current_user_id),
    connection: CalendarConnectionService = Depends(get_connection_service),
) -> ConnectionStatusResponse:
    connected, settings = await connection.status(user_id)
    return ConnectionStatusResponse(connected=connected, settings=settings)


@router.patch("/settings", response_model=SyncSettings)
async def google_calendar_update_settings(
    patch: SyncSettingsPatch,
    user_id: str = Depends(get_current_user_id),
    registry: SyncSettingsRegistry = Depends(get_settings_registry),
) -> SyncSettings:
    settings = await registry.patch(user_id, patch)
    if settings is None:
        raise HTTPException(status_code=404, detail="Google Calendar is not connected")
    return settings


@router.get("/calendars", response_model=list[GoogleCalendar])
async def google_calendar_list_calendars(
    user_id: str = Depends(get_current_user_id),
    gateway: GoogleCalendarGateway = Depends(get_gateway),
) -> list[GoogleCalendar]:
    return await gateway.list_calendars(user_id)


@router.post("/sync", response_model=SyncResult, response_model_by_alias=True)
async def google_calendar_sync(
    body: SyncRequest | None = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    engine: CalendarSyncEngine = Depends(get_sync_engine),
) -> SyncResult:
    """Run one sync pass; partial failures come back in ``errors``, not as HTTP errors."""
    direction = (body or SyncRequest()).sync_direction
    return await engine.sync(user_id, direction)


@router.get("/logs", response_model=list[SyncLogEntry], response_model_by_alias=True)
async def google_calendar_sync_logs(
    limit: int = Query(default=20, ge=1, le=MAX_LOG_LIMIT),
    user_id: str = Depends(get_current_user_id),
    sync_log: SyncLogWriter = Depends(get_sync_log),
) -> list[SyncLogEntry]:
    return await sync_log.recent(user_id, limit)
