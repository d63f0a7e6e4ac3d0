"""Reconciliation passes between internal events and a user's Google Calendar.

A pass is stateless: it reads the current settings, the internal event
union, and the remote calendar, and converges the mapping ledger.

Push (:meth:`CalendarSyncEngine.sync_app_events_to_google`) owns mappings
with origin ``internal``; pull (:meth:`CalendarSyncEngine.sync_google_events_to_app`)
owns mappings with origin ``google``.  The two passes never write each
other's rows, which is what lets the bidirectional pass run them
concurrently.

Every public entry point returns a :class:`SyncResult` and writes exactly
one sync log row.  Nothing raises out of a pass: failures that prevent a
pass from starting produce a single top-level error, and failures of
individual events are collected without aborting the rest.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, TypeVar
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from jobtrack.calendar_sync.errors import AuthenticationRequiredError, NotFoundError
from jobtrack.calendar_sync.gateway import GoogleEvent, default_pull_window
from jobtrack.calendar_sync.translate import (
    is_app_event,
    to_custom_event_fields,
    to_google_event,
)
from jobtrack.core.logging import set_user_context

if TYPE_CHECKING:
    from jobtrack.calendar_sync.events import EventSource, InternalEvent
    from jobtrack.calendar_sync.gateway import GoogleCalendarGateway, GoogleEventBody
    from jobtrack.calendar_sync.mappings import EventMappingLedger
    from jobtrack.calendar_sync.settings import SyncSettingsRegistry
    from jobtrack.calendar_sync.sync_log import SyncLogWriter
    from jobtrack.calendar_sync.tokens import TokenStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEZONE = "America/New_York"
SYNC_TYPE = "full"
NOT_ENABLED_MESSAGE = "Sync not enabled"
NOT_ENABLED_ERROR = "Google Calendar sync not enabled for user"


class SyncDirection(StrEnum):
    APP_TO_GOOGLE = "app_to_google"
    GOOGLE_TO_APP = "google_to_app"
    BIDIRECTIONAL = "bidirectional"


class SyncResult(BaseModel):
    """Outcome of one pass; serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    events_processed: int = 0
    errors_count: int = 0
    errors: list[str] = Field(default_factory=list)
    message: str

    @classmethod
    def failed(cls, message: str, *, error: str | None = None, events_processed: int = 0) -> SyncResult:
        return cls(
            success=False,
            events_processed=events_processed,
            errors_count=1,
            errors=[error or message],
            message=message,
        )

    @classmethod
    def not_enabled(cls) -> SyncResult:
        return cls.failed(NOT_ENABLED_MESSAGE, error=NOT_ENABLED_ERROR)


class CalendarSyncEngine:
    """Runs push, pull, and bidirectional passes for one user at a time.

    Parameters
    ----------
    token_store, gateway, settings, mappings, events, sync_log:
        Collaborators, constructed once per process and shared across calls.
    timezone:
        IANA zone used for all-day boundaries and timed events sent to Google.
    max_concurrency:
        Upper bound on events processed at once within a pass.
    event_timeout_s:
        Budget for one event's round-trips; exceeding it is a per-event failure.
    clock:
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        token_store: TokenStore,
        gateway: GoogleCalendarGateway,
        settings: SyncSettingsRegistry,
        mappings: EventMappingLedger,
        events: EventSource,
        sync_log: SyncLogWriter,
        *,
        timezone: str | ZoneInfo = DEFAULT_TIMEZONE,
        max_concurrency: int = 8,
        event_timeout_s: float = 30.0,
        pull_window_past_days: int = 30,
        pull_window_future_months: int = 6,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._token_store = token_store
        self._gateway = gateway
        self._settings = settings
        self._mappings = mappings
        self._events = events
        self._sync_log = sync_log
        self._tz = timezone if isinstance(timezone, ZoneInfo) else ZoneInfo(timezone)
        self._max_concurrency = max_concurrency
        self._event_timeout_s = event_timeout_s
        self._pull_window_past_days = pull_window_past_days
        self._pull_window_future_months = pull_window_future_months
        self._clock = clock or (lambda: datetime.now(UTC))

    # -- public entry points -----------------------------------------------

    async def sync_app_events_to_google(self, user_id: str) -> SyncResult:
        set_user_context(user_id)
        started_at = self._clock()
        result = await self._push(user_id)
        await self._record(user_id, SyncDirection.APP_TO_GOOGLE, result, started_at)
        return result

    async def sync_google_events_to_app(self, user_id: str) -> SyncResult:
        set_user_context(user_id)
        started_at = self._clock()
        result = await self._pull(user_id)
        await self._record(user_id, SyncDirection.GOOGLE_TO_APP, result, started_at)
        return result

    async def perform_bidirectional_sync(self, user_id: str) -> SyncResult:
        """Run push and pull concurrently and log only the combined outcome."""
        set_user_context(user_id)
        started_at = self._clock()
        pushed, pulled = await asyncio.gather(self._push(user_id), self._pull(user_id))
        result = SyncResult(
            success=pushed.success and pulled.success,
            events_processed=pushed.events_processed + pulled.events_processed,
            errors_count=pushed.errors_count + pulled.errors_count,
            errors=[*pushed.errors, *pulled.errors],
            message=(
                f"Bidirectional sync completed: {pushed.events_processed} events to Google, "
                f"{pulled.events_processed} events from Google"
            ),
        )
        await self._record(user_id, SyncDirection.BIDIRECTIONAL, result, started_at)
        return result

    async def sync(
        self, user_id: str, direction: SyncDirection | str = SyncDirection.BIDIRECTIONAL
    ) -> SyncResult:
        """Dispatch to the pass for *direction*.

        Raises
        ------
        ValueError
            If *direction* is not a known :class:`SyncDirection`.
        """
        direction = SyncDirection(direction)
        if direction is SyncDirection.APP_TO_GOOGLE:
            return await self.sync_app_events_to_google(user_id)
        if direction is SyncDirection.GOOGLE_TO_APP:
            return await self.sync_google_events_to_app(user_id)
        return await self.perform_bidirectional_sync(user_id)

    # -- push ----------------------------------------------------------------

    async def _push(self, user_id: str) -> SyncResult:
        processed = 0
        try:
            settings = await self._settings.get_active(user_id)
            if settings is None:
                return SyncResult.not_enabled()
            await self._require_credentials(user_id)

            internal_events = await self._events.internal_events(
                user_id,
                categories=settings.enabled_categories(),
                now=self._clock(),
                tz=self._tz,
            )
            calendar_id = settings.google_calendar_id
            processed, errors = await self._fan_out(
                internal_events,
                lambda event: self._push_one(user_id, calendar_id, event),
                describe=lambda event: f'Failed to sync event "{event.title}"',
            )
            await self._settings.touch_last_sync(user_id, self._clock())
        except Exception as exc:
            logger.exception("Push to Google Calendar failed")
            return SyncResult.failed(f"Sync failed: {exc}", events_processed=processed)

        return SyncResult(
            success=not errors,
            events_processed=processed,
            errors_count=len(errors),
            errors=errors,
            message=f"Synced {processed} events to Google Calendar",
        )

    async def _push_one(self, user_id: str, calendar_id: str, event: InternalEvent) -> None:
        body = to_google_event(event, self._tz)
        mapping = await self._mappings.find_by_reference(
            user_id, event.category, event.reference_id
        )

        if mapping is None:
            await self._create_mapped(user_id, calendar_id, event, body)
            return

        if mapping.google_calendar_id != calendar_id:
            logger.info(
                "Moving %s %s from calendar %s to %s",
                event.category,
                event.reference_id,
                mapping.google_calendar_id,
                calendar_id,
            )
            try:
                await self._gateway.delete_event(
                    user_id, mapping.google_calendar_id, mapping.google_event_id
                )
                await self._create_mapped(user_id, calendar_id, event, body)
            except Exception:
                await self._mappings.mark_error(mapping.id)
                raise
            return

        try:
            updated = await self._gateway.update_event(
                user_id, calendar_id, mapping.google_event_id, body
            )
        except NotFoundError:
            logger.info(
                "Google event %s no longer exists; recreating %s %s",
                mapping.google_event_id,
                event.category,
                event.reference_id,
            )
            created = await self._gateway.create_event(user_id, calendar_id, body)
            await self._mappings.mark_synced(
                mapping.id,
                google_event_id=created.id,
                etag=created.etag,
                synced_at=self._clock(),
            )
            return
        except Exception:
            await self._mappings.mark_error(mapping.id)
            raise

        await self._mappings.mark_synced(mapping.id, etag=updated.etag, synced_at=self._clock())

    async def _create_mapped(
        self, user_id: str, calendar_id: str, event: InternalEvent, body: GoogleEventBody
    ) -> None:
        created = await self._gateway.create_event(user_id, calendar_id, body)
        await self._mappings.upsert_internal(
            user_id=user_id,
            category=event.category,
            reference_id=event.reference_id,
            app_event_id=event.custom_event_id,
            google_calendar_id=calendar_id,
            google_event_id=created.id,
            etag=created.etag,
            synced_at=self._clock(),
        )

    # -- pull ----------------------------------------------------------------

    async def _pull(self, user_id: str) -> SyncResult:
        processed = 0
        try:
            settings = await self._settings.get_active(user_id)
            if settings is None:
                return SyncResult.not_enabled()
            await self._require_credentials(user_id)

            time_min, time_max = default_pull_window(
                self._clock(),
                past_days=self._pull_window_past_days,
                future_months=self._pull_window_future_months,
            )
            calendar_id = settings.google_calendar_id
            remote_events = await self._gateway.list_events(
                user_id, calendar_id, time_min=time_min, time_max=time_max
            )
            foreign = [
                event
                for event in remote_events
                if not is_app_event(event) and event.status != "cancelled"
            ]
            logger.debug(
                "Listed %d Google event(s), %d foreign", len(remote_events), len(foreign)
            )
            processed, errors = await self._fan_out(
                foreign,
                lambda event: self._pull_one(user_id, calendar_id, event),
                describe=lambda event: f'Failed to sync Google event "{event.summary}"',
            )
        except Exception as exc:
            logger.exception("Pull from Google Calendar failed")
            return SyncResult.failed(f"Google sync failed: {exc}", events_processed=processed)

        return SyncResult(
            success=not errors,
            events_processed=processed,
            errors_count=len(errors),
            errors=errors,
            message=f"Synced {processed} events from Google Calendar",
        )

    async def _pull_one(self, user_id: str, calendar_id: str, google_event: GoogleEvent) -> None:
        fields = to_custom_event_fields(google_event, self._tz)
        mapping = await self._mappings.find_by_external_id(user_id, google_event.id)

        if mapping is None:
            event_id = await self._events.create_custom_event(user_id, fields)
            await self._mappings.upsert_external(
                user_id=user_id,
                app_event_id=event_id,
                google_calendar_id=calendar_id,
                google_event_id=google_event.id,
                etag=google_event.etag,
                synced_at=self._clock(),
            )
            return

        synced_at = self._clock()
        await self._events.update_custom_event(
            mapping.app_event_id or mapping.app_event_reference_id, fields, synced_at=synced_at
        )
        await self._mappings.mark_synced(mapping.id, etag=google_event.etag, synced_at=synced_at)

    # -- helpers -------------------------------------------------------------

    async def _require_credentials(self, user_id: str) -> None:
        if await self._token_store.get_valid(user_id) is None:
            raise AuthenticationRequiredError(user_id)

    async def _fan_out(
        self,
        items: Iterable[T],
        work: Callable[[T], Awaitable[None]],
        *,
        describe: Callable[[T], str],
    ) -> tuple[int, list[str]]:
        """Run *work* per item with bounded concurrency; return (succeeded, errors)."""
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(item: T) -> str | None:
            async with semaphore:
                try:
                    async with asyncio.timeout(self._event_timeout_s):
                        await work(item)
                except TimeoutError:
                    message = f"{describe(item)}: timed out after {self._event_timeout_s:g}s"
                    logger.warning(message)
                    return message
                except Exception as exc:
                    message = f"{describe(item)}: {exc}"
                    logger.warning(message)
                    return message
            return None

        outcomes = await asyncio.gather(*(run(item) for item in items))
        errors = [outcome for outcome in outcomes if outcome is not None]
        return len(outcomes) - len(errors), errors

    async def _record(
        self,
        user_id: str,
        direction: SyncDirection,
        result: SyncResult,
        started_at: datetime,
    ) -> None:
        logger.info(
            "Calendar sync %s finished: %s (processed=%d, errors=%d)",
            direction,
            result.message,
            result.events_processed,
            result.errors_count,
        )
        try:
            await self._sync_log.append(
                user_id,
                sync_type=SYNC_TYPE,
                direction=str(direction),
                result=result,
                started_at=started_at,
                completed_at=self._clock(),
            )
        except Exception:
            logger.exception("Failed to write sync log entry")
