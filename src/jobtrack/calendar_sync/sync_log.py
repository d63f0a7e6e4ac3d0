"""Append-only audit trail of sync passes."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

import asyncpg
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from jobtrack.calendar_sync.engine import SyncResult

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 20


class SyncLogEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    user_id: str
    sync_type: str
    sync_direction: str
    status: str
    events_processed: int
    errors_count: int
    message: str | None = None
    error_details: dict[str, Any] | None = None
    started_at: datetime | None = None
    completed_at: datetime


def _decode_details(value: Any) -> dict[str, Any] | None:
    if value is None or isinstance(value, dict):
        return value
    return json.loads(value)


class SyncLogWriter:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def append(
        self,
        user_id: str,
        *,
        sync_type: str,
        direction: str,
        result: SyncResult,
        started_at: datetime | None,
        completed_at: datetime,
    ) -> None:
        """Insert one immutable row describing a finished pass."""
        error_details = json.dumps({"errors": result.errors}) if result.errors else None
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO google_calendar_sync_logs (
                    user_id, sync_type, sync_direction, status, events_processed,
                    errors_count, message, error_details, started_at, completed_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9, $10)
                """,
                user_id,
                sync_type,
                direction,
                "success" if result.success else "error",
                result.events_processed,
                result.errors_count,
                result.message,
                error_details,
                started_at,
                completed_at,
            )

    async def recent(self, user_id: str, limit: int = DEFAULT_RECENT_LIMIT) -> list[SyncLogEntry]:
        """Newest entries first."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id::text AS id, user_id, sync_type, sync_direction, status,
                       events_processed, errors_count, message, error_details,
                       started_at, completed_at
                FROM google_calendar_sync_logs
                WHERE user_id = $1
                ORDER BY completed_at DESC
                LIMIT $2
                """,
                user_id,
                limit,
            )
        entries = []
        for row in rows:
            data = dict(row)
            data["error_details"] = _decode_details(data["error_details"])
            entries.append(SyncLogEntry(**data))
        return entries
