"""Process-wide construction of the calendar sync collaborators.

Everything is built once from an asyncpg pool and the application config
and then passed by reference to the API layer and the CLI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import asyncpg
import httpx

from jobtrack.calendar_sync.connection import CalendarConnectionService
from jobtrack.calendar_sync.engine import CalendarSyncEngine
from jobtrack.calendar_sync.events import EventSource
from jobtrack.calendar_sync.gateway import GoogleCalendarGateway
from jobtrack.calendar_sync.mappings import EventMappingLedger
from jobtrack.calendar_sync.settings import SyncSettingsRegistry
from jobtrack.calendar_sync.sync_log import SyncLogWriter
from jobtrack.calendar_sync.tokens import GoogleOAuthClient, TokenStore
from jobtrack.config import AppConfig

logger = logging.getLogger(__name__)


@dataclass
class CalendarServices:
    oauth_client: GoogleOAuthClient
    token_store: TokenStore
    gateway: GoogleCalendarGateway
    settings: SyncSettingsRegistry
    mappings: EventMappingLedger
    events: EventSource
    sync_log: SyncLogWriter
    engine: CalendarSyncEngine
    connection: CalendarConnectionService
    http_client: httpx.AsyncClient

    async def aclose(self) -> None:
        await self.http_client.aclose()


def build_calendar_services(
    pool: asyncpg.Pool,
    config: AppConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> CalendarServices:
    """Wire every collaborator around a single shared HTTP client."""
    if not config.google.configured:
        logger.warning("Google OAuth client id/secret not configured; connect flow will fail")

    http_client = http_client or httpx.AsyncClient(timeout=30.0)
    oauth_client = GoogleOAuthClient(
        client_id=config.google.client_id,
        client_secret=config.google.client_secret,
        redirect_uri=config.google.redirect_uri,
        scopes=config.google.scopes,
        http_client=http_client,
    )
    token_store = TokenStore(pool, oauth_client)
    gateway = GoogleCalendarGateway(token_store, http_client=http_client)
    settings = SyncSettingsRegistry(pool)
    mappings = EventMappingLedger(pool)
    events = EventSource(pool)
    sync_log = SyncLogWriter(pool)
    engine = CalendarSyncEngine(
        token_store,
        gateway,
        settings,
        mappings,
        events,
        sync_log,
        timezone=config.sync.timezone,
        max_concurrency=config.sync.max_concurrency,
        event_timeout_s=config.sync.event_timeout_s,
        pull_window_past_days=config.sync.pull_window_past_days,
        pull_window_future_months=config.sync.pull_window_future_months,
    )
    connection = CalendarConnectionService(oauth_client, token_store, gateway, settings, mappings)
    return CalendarServices(
        oauth_client=oauth_client,
        token_store=token_store,
        gateway=gateway,
        settings=settings,
        mappings=mappings,
        events=events,
        sync_log=sync_log,
        engine=engine,
        connection=connection,
        http_client=http_client,
    )
