"""Application configuration loading and validation.

Reads ``jobtrack.toml`` (when present), resolves ``${VAR}`` references from
the environment, and returns a validated :class:`AppConfig`.  Without a file
the configuration is assembled from environment variables alone, which is
how container deployments usually run.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Pattern matching ${VAR_NAME}; supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

CONFIG_FILENAME = "jobtrack.toml"
CONFIG_ENV_VAR = "JOBTRACK_CONFIG"

DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_REDIRECT_URI = "http://localhost:8000/api/google-calendar/callback"
DEFAULT_SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
)


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass(frozen=True)
class GoogleConfig:
    """OAuth client settings from the [google] section."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scopes: tuple[str, ...] = DEFAULT_SCOPES

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass(frozen=True)
class DatabaseConfig:
    """Target database from the [database] section."""

    name: str = "jobtrack"
    min_pool_size: int = 2
    max_pool_size: int = 10


@dataclass(frozen=True)
class SyncConfig:
    """Sync engine tuning from the [sync] section."""

    timezone: str = DEFAULT_TIMEZONE
    max_concurrency: int = 8
    event_timeout_s: float = 30.0
    pull_window_past_days: int = 30
    pull_window_future_months: int = 6


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass(frozen=True)
class ApiConfig:
    """HTTP server settings from the [api] section."""

    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    dashboard_url: str | None = None


@dataclass(frozen=True)
class AppConfig:
    """Parsed application configuration."""

    google: GoogleConfig = field(default_factory=GoogleConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    api: ApiConfig = field(default_factory=ApiConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _positive_int(raw: Any, key: str) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise ConfigError(f"{key} must be >= 1, got {value}")
    return value


def _parse_google(section: dict[str, Any]) -> GoogleConfig:
    scopes_raw = section.get("scopes")
    if scopes_raw is None:
        scopes = DEFAULT_SCOPES
    elif isinstance(scopes_raw, list) and all(isinstance(s, str) for s in scopes_raw):
        scopes = tuple(s.strip() for s in scopes_raw if s.strip())
    else:
        raise ConfigError("google.scopes must be a list of strings")

    return GoogleConfig(
        client_id=str(section.get("client_id", "")).strip(),
        client_secret=str(section.get("client_secret", "")).strip(),
        redirect_uri=str(section.get("redirect_uri", DEFAULT_REDIRECT_URI)).strip(),
        scopes=scopes,
    )


def _parse_database(section: dict[str, Any]) -> DatabaseConfig:
    name = str(section.get("name", "jobtrack")).strip()
    if not name:
        raise ConfigError("database.name must be a non-empty string")
    min_size = _positive_int(section.get("min_pool_size", 2), "database.min_pool_size")
    max_size = _positive_int(section.get("max_pool_size", 10), "database.max_pool_size")
    if max_size < min_size:
        raise ConfigError("database.max_pool_size must be >= database.min_pool_size")
    return DatabaseConfig(name=name, min_pool_size=min_size, max_pool_size=max_size)


def _parse_sync(section: dict[str, Any]) -> SyncConfig:
    timezone = str(section.get("timezone", DEFAULT_TIMEZONE)).strip()
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Invalid sync.timezone: {timezone!r}") from exc

    try:
        event_timeout_s = float(section.get("event_timeout_s", 30.0))
    except (TypeError, ValueError) as exc:
        raise ConfigError("sync.event_timeout_s must be a number") from exc
    if event_timeout_s <= 0:
        raise ConfigError("sync.event_timeout_s must be positive")

    return SyncConfig(
        timezone=timezone,
        max_concurrency=_positive_int(section.get("max_concurrency", 8), "sync.max_concurrency"),
        event_timeout_s=event_timeout_s,
        pull_window_past_days=_positive_int(
            section.get("pull_window_past_days", 30), "sync.pull_window_past_days"
        ),
        pull_window_future_months=_positive_int(
            section.get("pull_window_future_months", 6), "sync.pull_window_future_months"
        ),
    )


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    log_level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {log_format!r}. Expected 'text' or 'json'.")
    return LoggingConfig(level=log_level, format=log_format, log_root=section.get("log_root"))


def _parse_api(section: dict[str, Any]) -> ApiConfig:
    origins = section.get("cors_origins", ["http://localhost:3000"])
    if not isinstance(origins, list) or not all(isinstance(o, str) for o in origins):
        raise ConfigError("api.cors_origins must be a list of strings")
    dashboard_url = section.get("dashboard_url")
    if dashboard_url is not None and not isinstance(dashboard_url, str):
        raise ConfigError("api.dashboard_url must be a string when set")
    return ApiConfig(
        host=str(section.get("host", "127.0.0.1")),
        port=_positive_int(section.get("port", 8000), "api.port"),
        cors_origins=list(origins),
        dashboard_url=dashboard_url or None,
    )


def parse_config(data: dict[str, Any]) -> AppConfig:
    """Build an :class:`AppConfig` from already-parsed TOML data."""
    data = resolve_env_vars(data)
    return AppConfig(
        google=_parse_google(_section(data, "google")),
        database=_parse_database(_section(data, "database")),
        sync=_parse_sync(_section(data, "sync")),
        logging=_parse_logging(_section(data, "logging")),
        api=_parse_api(_section(data, "api")),
    )


def config_from_env() -> AppConfig:
    """Assemble configuration from environment variables only."""
    data: dict[str, Any] = {
        "google": {
            "client_id": os.environ.get("GOOGLE_CLIENT_ID", ""),
            "client_secret": os.environ.get("GOOGLE_CLIENT_SECRET", ""),
            "redirect_uri": os.environ.get("GOOGLE_REDIRECT_URI", DEFAULT_REDIRECT_URI),
        },
        "database": {"name": os.environ.get("JOBTRACK_DB_NAME", "jobtrack")},
        "logging": {
            "level": os.environ.get("JOBTRACK_LOG_LEVEL", "INFO"),
            "format": os.environ.get("JOBTRACK_LOG_FORMAT", "text"),
        },
        "api": {},
    }
    dashboard_url = os.environ.get("JOBTRACK_DASHBOARD_URL")
    if dashboard_url:
        data["api"]["dashboard_url"] = dashboard_url
    return parse_config(data)


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from *path*, ``$JOBTRACK_CONFIG``, or the environment.

    Parameters
    ----------
    path:
        Explicit path to a ``jobtrack.toml`` file.  When omitted, the
        ``JOBTRACK_CONFIG`` environment variable is consulted, then
        ``./jobtrack.toml``; if neither exists the environment is used.

    Raises
    ------
    ConfigError
        If an explicit file is missing, contains invalid TOML, or fails
        validation.
    """
    explicit = path is not None or CONFIG_ENV_VAR in os.environ
    toml_path = Path(path or os.environ.get(CONFIG_ENV_VAR) or CONFIG_FILENAME)

    if not toml_path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {toml_path}")
        return config_from_env()

    try:
        data = tomllib.loads(toml_path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
