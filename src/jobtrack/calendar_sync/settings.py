"""Per-user sync configuration.

The master ``sync_enabled`` flag gates everything: when it is off the user is
treated as unconfigured no matter how the per-category toggles are set.
"""

from __future__ import annotations

import logging
from datetime import datetime

import asyncpg
from pydantic import BaseModel, ConfigDict, Field

from jobtrack.calendar_sync.events import EventCategory

logger = logging.getLogger(__name__)

DEFAULT_CALENDAR_ID = "primary"

_SETTINGS_COLUMNS = (
    "user_id, google_calendar_id, sync_enabled, sync_interviews, sync_deadlines, "
    "sync_applications, sync_follow_ups, sync_custom_events, auto_sync_interval, last_sync_at"
)


class SyncSettings(BaseModel):
    """Stored sync settings for one user."""

    user_id: str
    google_calendar_id: str = DEFAULT_CALENDAR_ID
    sync_enabled: bool = False
    sync_interviews: bool = True
    sync_deadlines: bool = True
    sync_applications: bool = False
    sync_follow_ups: bool = True
    sync_custom_events: bool = True
    # Advisory only: nothing in-process polls on this interval.
    auto_sync_interval: int = Field(default=15, ge=1)
    last_sync_at: datetime | None = None

    def enabled_categories(self) -> frozenset[EventCategory]:
        toggles = {
            EventCategory.INTERVIEW: self.sync_interviews,
            EventCategory.DEADLINE: self.sync_deadlines,
            EventCategory.APPLICATION: self.sync_applications,
            EventCategory.FOLLOW_UP: self.sync_follow_ups,
            EventCategory.CUSTOM: self.sync_custom_events,
        }
        return frozenset(category for category, enabled in toggles.items() if enabled)


class SyncSettingsPatch(BaseModel):
    """Partial update; only fields explicitly set are written."""

    model_config = ConfigDict(extra="forbid")

    google_calendar_id: str | None = Field(default=None, min_length=1)
    sync_enabled: bool | None = None
    sync_interviews: bool | None = None
    sync_deadlines: bool | None = None
    sync_applications: bool | None = None
    sync_follow_ups: bool | None = None
    sync_custom_events: bool | None = None
    auto_sync_interval: int | None = Field(default=None, ge=1)


class SyncSettingsRegistry:
    """CRUD over ``google_calendar_settings``."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get(self, user_id: str) -> SyncSettings | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_SETTINGS_COLUMNS} FROM google_calendar_settings WHERE user_id = $1",
                user_id,
            )
        return SyncSettings(**dict(row)) if row is not None else None

    async def get_active(self, user_id: str) -> SyncSettings | None:
        """Return the settings only when the master flag is on."""
        settings = await self.get(user_id)
        if settings is None or not settings.sync_enabled:
            return None
        return settings

    async def upsert(self, settings: SyncSettings) -> SyncSettings:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO google_calendar_settings (
                    user_id, google_calendar_id, sync_enabled, sync_interviews,
                    sync_deadlines, sync_applications, sync_follow_ups,
                    sync_custom_events, auto_sync_interval, last_sync_at, updated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, now())
                ON CONFLICT (user_id) DO UPDATE SET
                    google_calendar_id = EXCLUDED.google_calendar_id,
                    sync_enabled = EXCLUDED.sync_enabled,
                    sync_interviews = EXCLUDED.sync_interviews,
                    sync_deadlines = EXCLUDED.sync_deadlines,
                    sync_applications = EXCLUDED.sync_applications,
                    sync_follow_ups = EXCLUDED.sync_follow_ups,
                    sync_custom_events = EXCLUDED.sync_custom_events,
                    auto_sync_interval = EXCLUDED.auto_sync_interval,
                    last_sync_at = EXCLUDED.last_sync_at,
                    updated_at = now()
                """,
                settings.user_id,
                settings.google_calendar_id,
                settings.sync_enabled,
                settings.sync_interviews,
                settings.sync_deadlines,
                settings.sync_applications,
                settings.sync_follow_ups,
                settings.sync_custom_events,
                settings.auto_sync_interval,
                settings.last_sync_at,
            )
        return settings

    async def create_default(self, user_id: str, calendar_id: str) -> SyncSettings:
        """Enable sync with the default category selection (applications off)."""
        settings = SyncSettings(
            user_id=user_id,
            google_calendar_id=calendar_id or DEFAULT_CALENDAR_ID,
            sync_enabled=True,
        )
        await self.upsert(settings)
        logger.info("Created default sync settings (calendar_id=%s)", settings.google_calendar_id)
        return settings

    async def patch(self, user_id: str, patch: SyncSettingsPatch) -> SyncSettings | None:
        """Apply the fields set on *patch*; ``None`` when the user has no settings row."""
        changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return await self.get(user_id)

        assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(changes, start=2))
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE google_calendar_settings
                SET {assignments}, updated_at = now()
                WHERE user_id = $1
                RETURNING {_SETTINGS_COLUMNS}
                """,
                user_id,
                *changes.values(),
            )
        return SyncSettings(**dict(row)) if row is not None else None

    async def disable(self, user_id: str) -> None:
        """Turn the master flag off without deleting the row."""
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE google_calendar_settings
                SET sync_enabled = false, updated_at = now()
                WHERE user_id = $1
                """,
                user_id,
            )

    async def touch_last_sync(self, user_id: str, at: datetime) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE google_calendar_settings
                SET last_sync_at = $2, updated_at = now()
                WHERE user_id = $1
                """,
                user_id,
                at,
            )
