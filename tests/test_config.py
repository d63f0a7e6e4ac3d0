"""Tests for application configuration loading and validation."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from jobtrack.config import (
    CONFIG_ENV_VAR,
    DEFAULT_SCOPES,
    AppConfig,
    ConfigError,
    load_config,
    parse_config,
    resolve_env_vars,
)

pytestmark = pytest.mark.unit

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FULL_TOML = """\
[google]
client_id = "client-123.apps.googleusercontent.com"
client_secret = "${TEST_GOOGLE_SECRET}"
redirect_uri = "https://jobs.example.com/api/google-calendar/callback"

[database]
name = "jobtrack_test"
min_pool_size = 1
max_pool_size = 4

[sync]
timezone = "Europe/Berlin"
max_concurrency = 4
event_timeout_s = 12.5
pull_window_past_days = 14
pull_window_future_months = 3

[logging]
level = "debug"
format = "JSON"

[api]
host = "0.0.0.0"
port = 9000
cors_origins = ["https://jobs.example.com"]
dashboard_url = "https://jobs.example.com/dashboard"
"""


def _write_toml(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "jobtrack.toml"
    path.write_text(content)
    return path


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep the developer's environment and working directory out of the tests."""
    for name in (
        CONFIG_ENV_VAR,
        "GOOGLE_CLIENT_ID",
        "GOOGLE_CLIENT_SECRET",
        "GOOGLE_REDIRECT_URI",
        "JOBTRACK_DB_NAME",
        "JOBTRACK_LOG_LEVEL",
        "JOBTRACK_LOG_FORMAT",
        "JOBTRACK_DASHBOARD_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_full_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_GOOGLE_SECRET", "s3cret")

        config = load_config(_write_toml(tmp_path, FULL_TOML))

        assert config.google.client_secret == "s3cret"
        assert config.google.configured
        assert config.google.scopes == DEFAULT_SCOPES
        assert config.database.name == "jobtrack_test"
        assert config.database.max_pool_size == 4
        assert config.sync.timezone == "Europe/Berlin"
        assert config.sync.event_timeout_s == 12.5
        assert config.sync.pull_window_future_months == 3
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"
        assert config.api.port == 9000
        assert config.api.dashboard_url == "https://jobs.example.com/dashboard"

    def test_empty_file_uses_defaults(self, tmp_path):
        config = load_config(_write_toml(tmp_path, ""))

        assert config == AppConfig()
        assert not config.google.configured
        assert config.sync.timezone == "America/New_York"
        assert config.sync.max_concurrency == 8

    def test_sections_are_immutable(self, tmp_path):
        config = load_config(_write_toml(tmp_path, ""))

        with pytest.raises(dataclasses.FrozenInstanceError):
            config.sync.max_concurrency = 1  # type: ignore[misc]
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.api = None  # type: ignore[misc]

    def test_env_var_points_at_file(self, tmp_path, monkeypatch):
        path = _write_toml(tmp_path, '[database]\nname = "from_env_file"\n')
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_config().database.name == "from_env_file"

    def test_falls_back_to_environment(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "cid")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "csecret")
        monkeypatch.setenv("JOBTRACK_DASHBOARD_URL", "http://localhost:3000/dashboard")

        config = load_config()

        assert config.google.configured
        assert config.api.dashboard_url == "http://localhost:3000/dashboard"


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------


class TestValidation:
    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.toml")

    def test_invalid_toml(self, tmp_path):
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(_write_toml(tmp_path, "[google\n"))

    def test_unresolved_env_var(self, tmp_path):
        with pytest.raises(ConfigError, match="TEST_GOOGLE_SECRET"):
            load_config(_write_toml(tmp_path, FULL_TOML))

    @pytest.mark.parametrize(
        ("data", "message"),
        [
            ({"sync": {"timezone": "Mars/Olympus"}}, "sync.timezone"),
            ({"sync": {"max_concurrency": 0}}, "sync.max_concurrency"),
            ({"sync": {"event_timeout_s": -1}}, "event_timeout_s"),
            ({"database": {"min_pool_size": 5, "max_pool_size": 2}}, "max_pool_size"),
            ({"database": {"name": " "}}, "database.name"),
            ({"logging": {"format": "xml"}}, "logging.format"),
            ({"api": {"cors_origins": "*"}}, "cors_origins"),
            ({"api": {"port": "http"}}, "api.port"),
            ({"google": {"scopes": "calendar"}}, "google.scopes"),
            ({"google": "client"}, r"\[google\] must be a table"),
        ],
    )
    def test_rejected_values(self, data, message):
        with pytest.raises(ConfigError, match=message):
            parse_config(data)


class TestResolveEnvVars:
    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("TEST_HOST", "db.internal")
        resolved = resolve_env_vars({"a": ["${TEST_HOST}", 5], "b": {"c": "x-${TEST_HOST}"}})
        assert resolved == {"a": ["db.internal", 5], "b": {"c": "x-db.internal"}}

    def test_reports_every_missing_variable(self):
        with pytest.raises(ConfigError, match="MISSING_ONE, MISSING_TWO"):
            resolve_env_vars("${MISSING_ONE}/${MISSING_TWO}")
