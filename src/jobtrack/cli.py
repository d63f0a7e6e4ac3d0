"""CLI for jobtrack: serve the API, apply migrations, run a sync pass."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
import uvicorn

from jobtrack import __version__
from jobtrack.api.app import create_app
from jobtrack.calendar_sync.engine import SyncDirection, SyncResult
from jobtrack.config import AppConfig, ConfigError, load_config
from jobtrack.core.logging import configure_logging
from jobtrack.db import Database
from jobtrack.migrations import run_migrations
from jobtrack.services import build_calendar_services

logger = logging.getLogger(__name__)

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to jobtrack.toml (defaults to $JOBTRACK_CONFIG or ./jobtrack.toml)",
)


def _load(config_path: Path | None) -> AppConfig:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(2)
    configure_logging(config.logging.level, config.logging.format, config.logging.log_root)
    return config


def _database(config: AppConfig) -> Database:
    return Database.from_env(
        config.database.name,
        min_pool_size=config.database.min_pool_size,
        max_pool_size=config.database.max_pool_size,
    )


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """jobtrack: Google Calendar sync for the job application tracker."""


@cli.command()
@_config_option
@click.option("--host", default=None, help="Bind address (overrides [api].host)")
@click.option("--port", type=int, default=None, help="Bind port (overrides [api].port)")
def serve(config_path: Path | None, host: str | None, port: int | None) -> None:
    """Run the HTTP API with uvicorn."""
    config = _load(config_path)
    app = create_app(config)
    uvicorn.run(
        app,
        host=host or config.api.host,
        port=port or config.api.port,
        log_config=None,
    )


async def _migrate(db: Database) -> None:
    await db.provision()
    await run_migrations(db.url)


@cli.command()
@_config_option
def migrate(config_path: Path | None) -> None:
    """Create the database if needed and apply Alembic migrations."""
    config = _load(config_path)
    db = _database(config)
    asyncio.run(_migrate(db))
    click.echo(f"Migrations applied to {config.database.name}")


async def _run_sync(config: AppConfig, user_id: str, direction: SyncDirection) -> SyncResult:
    db = _database(config)
    pool = await db.connect()
    services = build_calendar_services(pool, config)
    try:
        return await services.engine.sync(user_id, direction)
    finally:
        await services.aclose()
        await db.close()


@cli.command()
@click.argument("user_id")
@click.option(
    "--direction",
    type=click.Choice([d.value for d in SyncDirection]),
    default=SyncDirection.BIDIRECTIONAL.value,
    show_default=True,
    help="Which way to sync",
)
@_config_option
def sync(user_id: str, direction: str, config_path: Path | None) -> None:
    """Run one sync pass for USER_ID and print the result as JSON."""
    config = _load(config_path)
    result = asyncio.run(_run_sync(config, user_id, SyncDirection(direction)))
    click.echo(result.model_dump_json(by_alias=True, indent=2))
    if not result.success:
        sys.exit(1)
