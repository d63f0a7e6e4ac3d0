"""FastAPI dependencies.

Services are built once in the app lifespan and stored on ``app.state``;
these helpers hand them to route handlers.  Tests replace any of them via
``app.dependency_overrides``.
"""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request

from jobtrack.calendar_sync.connection import CalendarConnectionService
from jobtrack.calendar_sync.engine import CalendarSyncEngine
from jobtrack.calendar_sync.gateway import GoogleCalendarGateway
from jobtrack.calendar_sync.settings import SyncSettingsRegistry
from jobtrack.calendar_sync.sync_log import SyncLogWriter
from jobtrack.config import AppConfig
from jobtrack.services import CalendarServices

USER_ID_HEADER = "X-User-Id"


def get_current_user_id(
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
) -> str:
    """Resolve the acting user.

    Deployments put their session layer in front of the API and override
    this dependency; the header form serves local use and tests.
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def get_config(request: Request) -> AppConfig:
    config = getattr(request.app.state, "config", None)
    if config is None:
        raise RuntimeError("App config not initialized")
    return config


def get_services(request: Request) -> CalendarServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Calendar services unavailable")
    return services


def get_connection_service(
    services: CalendarServices = Depends(get_services),
) -> CalendarConnectionService:
    return services.connection


def get_sync_engine(services: CalendarServices = Depends(get_services)) -> CalendarSyncEngine:
    return services.engine


def get_settings_registry(
    services: CalendarServices = Depends(get_services),
) -> SyncSettingsRegistry:
    return services.settings


def get_gateway(services: CalendarServices = Depends(get_services)) -> GoogleCalendarGateway:
    return services.gateway


def get_sync_log(services: CalendarServices = Depends(get_services)) -> SyncLogWriter:
    return services.sync_log
