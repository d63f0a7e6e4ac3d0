"""Event mapping ledger: which internal event corresponds to which Google event.

Rows are partitioned by ``origin``.  ``internal`` rows are keyed by
(user, category, reference id) and written only by the push pass;
``google`` rows are keyed by (user, Google event id) and written only by
the pull pass.  Both writes are single-statement upserts against partial
unique indexes, so concurrent passes can never create duplicate rows.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import StrEnum

import asyncpg
from pydantic import BaseModel

from jobtrack.calendar_sync.events import EventCategory

logger = logging.getLogger(__name__)


class SyncStatus(StrEnum):
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


class MappingOrigin(StrEnum):
    """Side that created the mapping and is authoritative for it."""

    INTERNAL = "internal"
    GOOGLE = "google"


class EventMapping(BaseModel):
    id: str
    user_id: str
    app_event_type: EventCategory
    app_event_reference_id: str
    app_event_id: str | None = None
    google_calendar_id: str
    google_event_id: str
    last_synced_at: datetime
    sync_status: SyncStatus = SyncStatus.SYNCED
    etag: str | None = None
    origin: MappingOrigin = MappingOrigin.INTERNAL


_MAPPING_COLUMNS = """
    id::text AS id, user_id, app_event_type, app_event_reference_id,
    app_event_id::text AS app_event_id, google_calendar_id, google_event_id,
    last_synced_at, sync_status, etag, origin
"""


def _to_mapping(row: asyncpg.Record | None) -> EventMapping | None:
    return EventMapping(**dict(row)) if row is not None else None


class EventMappingLedger:
    """Access to ``google_calendar_event_mappings``."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def find_by_reference(
        self, user_id: str, category: EventCategory, reference_id: str
    ) -> EventMapping | None:
        """Push-side lookup by the internal natural key."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_MAPPING_COLUMNS}
                FROM google_calendar_event_mappings
                WHERE user_id = $1 AND app_event_type = $2 AND app_event_reference_id = $3
                  AND origin = 'internal'
                """,
                user_id,
                str(category),
                reference_id,
            )
        return _to_mapping(row)

    async def find_by_external_id(self, user_id: str, google_event_id: str) -> EventMapping | None:
        """Pull-side lookup by the Google event id."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_MAPPING_COLUMNS}
                FROM google_calendar_event_mappings
                WHERE user_id = $1 AND google_event_id = $2 AND origin = 'google'
                """,
                user_id,
                google_event_id,
            )
        return _to_mapping(row)

    async def upsert_internal(
        self,
        *,
        user_id: str,
        category: EventCategory,
        reference_id: str,
        app_event_id: str | None,
        google_calendar_id: str,
        google_event_id: str,
        etag: str | None,
        synced_at: datetime,
    ) -> EventMapping:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO google_calendar_event_mappings (
                    user_id, app_event_type, app_event_reference_id, app_event_id,
                    google_calendar_id, google_event_id, last_synced_at, sync_status,
                    etag, origin
                )
                VALUES ($1, $2, $3, $4::uuid, $5, $6, $7, 'synced', $8, 'internal')
                ON CONFLICT (user_id, app_event_type, app_event_reference_id)
                    WHERE origin = 'internal'
                DO UPDATE SET
                    app_event_id = EXCLUDED.app_event_id,
                    google_calendar_id = EXCLUDED.google_calendar_id,
                    google_event_id = EXCLUDED.google_event_id,
                    last_synced_at = EXCLUDED.last_synced_at,
                    sync_status = 'synced',
                    etag = EXCLUDED.etag,
                    updated_at = now()
                RETURNING {_MAPPING_COLUMNS}
                """,
                user_id,
                str(category),
                reference_id,
                app_event_id,
                google_calendar_id,
                google_event_id,
                synced_at,
                etag,
            )
        return EventMapping(**dict(row))

    async def upsert_external(
        self,
        *,
        user_id: str,
        app_event_id: str,
        google_calendar_id: str,
        google_event_id: str,
        etag: str | None,
        synced_at: datetime,
    ) -> EventMapping:
        """Record an imported event; its reference id is the custom event it became."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO google_calendar_event_mappings (
                    user_id, app_event_type, app_event_reference_id, app_event_id,
                    google_calendar_id, google_event_id, last_synced_at, sync_status,
                    etag, origin
                )
                VALUES ($1, 'custom', $2, $2::uuid, $3, $4, $5, 'synced', $6, 'google')
                ON CONFLICT (user_id, google_event_id) WHERE origin = 'google'
                DO UPDATE SET
                    app_event_reference_id = EXCLUDED.app_event_reference_id,
                    app_event_id = EXCLUDED.app_event_id,
                    google_calendar_id = EXCLUDED.google_calendar_id,
                    last_synced_at = EXCLUDED.last_synced_at,
                    sync_status = 'synced',
                    etag = EXCLUDED.etag,
                    updated_at = now()
                RETURNING {_MAPPING_COLUMNS}
                """,
                user_id,
                app_event_id,
                google_calendar_id,
                google_event_id,
                synced_at,
                etag,
            )
        return EventMapping(**dict(row))

    async def mark_synced(
        self,
        mapping_id: str,
        *,
        etag: str | None,
        synced_at: datetime,
        google_event_id: str | None = None,
    ) -> None:
        """Stamp a successful sync; ``google_event_id`` rewrites the remote id in place."""
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE google_calendar_event_mappings
                SET last_synced_at = $2,
                    sync_status = 'synced',
                    etag = $3,
                    google_event_id = COALESCE($4, google_event_id),
                    updated_at = now()
                WHERE id = $1::uuid
                """,
                mapping_id,
                synced_at,
                etag,
                google_event_id,
            )

    async def mark_error(self, mapping_id: str) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE google_calendar_event_mappings
                SET sync_status = 'error', updated_at = now()
                WHERE id = $1::uuid
                """,
                mapping_id,
            )

    async def count_for_user(self, user_id: str) -> int:
        async with self._pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT count(*) FROM google_calendar_event_mappings WHERE user_id = $1",
                user_id,
            )

    async def delete_for_user(self, user_id: str) -> int:
        """Hard-delete every mapping for *user_id* (disconnect only)."""
        async with self._pool.acquire() as conn:
            status = await conn.execute(
                "DELETE FROM google_calendar_event_mappings WHERE user_id = $1",
                user_id,
            )
        # asyncpg returns the command tag, e.g. "DELETE 3"
        deleted = int(status.split()[-1]) if status else 0
        logger.info("Deleted %d event mapping(s)", deleted)
        return deleted
