"""HTTP API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (configurable origins)
- Lifespan handler that opens the DB pool and builds the calendar services
- Health endpoint at GET /api/health
- The Google Calendar router under /api/google-calendar
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobtrack import __version__
from jobtrack.api.middleware import register_error_handlers
from jobtrack.api.routers.google_calendar import router as google_calendar_router
from jobtrack.config import AppConfig, load_config
from jobtrack.db import Database
from jobtrack.services import build_calendar_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the DB pool and build services on startup; close both on shutdown."""
    config: AppConfig = app.state.config
    db = Database.from_env(
        config.database.name,
        min_pool_size=config.database.min_pool_size,
        max_pool_size=config.database.max_pool_size,
    )
    try:
        await db.provision()
        pool = await db.connect()
        app.state.services = build_calendar_services(pool, config)
        logger.info("Calendar services initialized (db=%s)", config.database.name)
    except Exception:
        logger.warning(
            "Failed to initialize database; calendar endpoints will be unavailable",
            exc_info=True,
        )

    yield

    services = getattr(app.state, "services", None)
    if services is not None:
        await services.aclose()
        app.state.services = None
    await db.close()


def create_app(
    config: AppConfig | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Application config. Loaded via :func:`jobtrack.config.load_config`
        when omitted.
    cors_origins:
        Allowed CORS origins. Defaults to ``config.api.cors_origins``.
    """
    if config is None:
        config = load_config()
    if cors_origins is None:
        cors_origins = config.api.cors_origins

    app = FastAPI(
        title="Job Tracker Calendar Sync API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.services = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(google_calendar_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
