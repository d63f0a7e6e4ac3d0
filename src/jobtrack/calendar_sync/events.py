"""Internal calendar events derived from applications, interviews, and custom events.

Only custom events are stored as rows of their own.  Every other category
is recomputed from the live application and interview records on each
call by :func:`synthesize_events`, a pure function, so a sync pass never
works from stale derived data.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from enum import StrEnum
from zoneinfo import ZoneInfo

import asyncpg
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_INTERVIEW_MINUTES = 60
PLACEHOLDER_DURATION = timedelta(hours=1)
FOLLOW_UP_AFTER = timedelta(days=7)
FOLLOW_UP_OFFSET = timedelta(weeks=2)
FOLLOW_UP_STATUS = "applied"


class EventCategory(StrEnum):
    """Internal event categories; each has its own sync toggle."""

    INTERVIEW = "interview"
    DEADLINE = "deadline"
    APPLICATION = "application"
    FOLLOW_UP = "follow_up"
    CUSTOM = "custom"


# ---------------------------------------------------------------------------
# Source records
# ---------------------------------------------------------------------------


class Application(BaseModel):
    id: str
    company_name: str
    job_title: str
    status: str = "applied"
    application_date: date
    deadline: date | None = None
    priority: str | None = None


class Interview(BaseModel):
    id: str
    application_id: str
    interview_type: str
    scheduled_at: datetime
    duration_minutes: int | None = None
    location: str | None = None
    outcome: str | None = None


class CustomEvent(BaseModel):
    id: str
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    event_type: str = "custom"
    all_day: bool = False
    location: str | None = None
    notes: str | None = None
    color: str | None = None
    application_id: str | None = None
    sync_with_google: bool = False
    google_event_id: str | None = None


class CustomEventFields(BaseModel):
    """Column values written when a Google event is imported or refreshed."""

    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    all_day: bool = False
    location: str | None = None
    google_event_id: str
    event_type: str = "custom"
    sync_with_google: bool = True


# ---------------------------------------------------------------------------
# Synthesized view
# ---------------------------------------------------------------------------


class EventResource(BaseModel):
    """Context attached to an internal event; feeds the pushed description."""

    id: str
    application_id: str | None = None
    interview_id: str | None = None
    event_id: str | None = None
    status: str | None = None
    priority: str | None = None
    company_name: str | None = None
    job_title: str | None = None
    location: str | None = None
    notes: str | None = None


class InternalEvent(BaseModel):
    title: str
    start: datetime
    end: datetime
    category: EventCategory
    description: str | None = None
    color: str | None = None
    all_day: bool = False
    resource: EventResource

    @property
    def reference_id(self) -> str:
        """Id of the source entity: interview, application, or custom event."""
        return self.resource.id

    @property
    def custom_event_id(self) -> str | None:
        return self.resource.event_id if self.category is EventCategory.CUSTOM else None

    @property
    def key(self) -> tuple[EventCategory, str]:
        return self.category, self.reference_id


def _title_case_words(value: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group().upper(), value)


def _start_of_day(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _interview_event(interview: Interview, application: Application | None) -> InternalEvent:
    company = application.company_name if application else None
    job_title = application.job_title if application else None
    minutes = interview.duration_minutes or DEFAULT_INTERVIEW_MINUTES
    interview_type = _title_case_words(interview.interview_type.replace("_", " ", 1))
    return InternalEvent(
        title=f"{interview_type} - {company or 'Interview'}",
        start=interview.scheduled_at,
        end=interview.scheduled_at + timedelta(minutes=minutes),
        category=EventCategory.INTERVIEW,
        description=f"{job_title or 'Position'} at {company or 'Company'}",
        resource=EventResource(
            id=interview.id,
            interview_id=interview.id,
            application_id=interview.application_id,
            status=interview.outcome or "pending",
            company_name=company,
            job_title=job_title,
            location=interview.location,
        ),
    )


def _application_resource(application: Application) -> EventResource:
    return EventResource(
        id=application.id,
        application_id=application.id,
        status=application.status,
        priority=application.priority,
        company_name=application.company_name,
        job_title=application.job_title,
    )


def _placeholder_event(
    application: Application,
    *,
    category: EventCategory,
    day: date,
    title: str,
    description: str,
    tz: ZoneInfo,
) -> InternalEvent:
    start = _start_of_day(day, tz)
    return InternalEvent(
        title=title,
        start=start,
        end=start + PLACEHOLDER_DURATION,
        category=category,
        description=description,
        resource=_application_resource(application),
    )


def _custom_event(event: CustomEvent, application: Application | None) -> InternalEvent:
    return InternalEvent(
        title=event.title,
        start=event.start_time,
        end=event.end_time,
        category=EventCategory.CUSTOM,
        description=event.description,
        color=event.color,
        all_day=event.all_day,
        resource=EventResource(
            id=event.id,
            event_id=event.id,
            application_id=event.application_id,
            company_name=application.company_name if application else None,
            job_title=application.job_title if application else None,
            location=event.location,
            notes=event.notes,
        ),
    )


def needs_follow_up(application: Application, now: datetime, tz: ZoneInfo) -> bool:
    """True while an application sits in ``applied`` for at least seven days."""
    if application.status != FOLLOW_UP_STATUS:
        return False
    return now - _start_of_day(application.application_date, tz) >= FOLLOW_UP_AFTER


def synthesize_events(
    applications: Iterable[Application],
    interviews: Iterable[Interview],
    custom_events: Iterable[CustomEvent],
    *,
    categories: Iterable[EventCategory],
    now: datetime,
    tz: ZoneInfo,
) -> list[InternalEvent]:
    """Materialize the internal event union for the enabled *categories*.

    Custom events that were imported from Google (they carry a
    ``google_event_id``) belong to the pull direction and are left out.
    The result is ordered by start time.
    """
    enabled = set(categories)
    applications = list(applications)
    by_id = {application.id: application for application in applications}
    events: list[InternalEvent] = []

    if EventCategory.INTERVIEW in enabled:
        for interview in interviews:
            events.append(_interview_event(interview, by_id.get(interview.application_id)))

    for application in applications:
        job, company = application.job_title, application.company_name
        if EventCategory.DEADLINE in enabled and application.deadline is not None:
            events.append(
                _placeholder_event(
                    application,
                    category=EventCategory.DEADLINE,
                    day=application.deadline,
                    title=f"Deadline: {job} at {company}",
                    description=f"Application deadline for {job}",
                    tz=tz,
                )
            )
        if EventCategory.APPLICATION in enabled:
            events.append(
                _placeholder_event(
                    application,
                    category=EventCategory.APPLICATION,
                    day=application.application_date,
                    title=f"Applied: {job} at {company}",
                    description=f"Submitted application for {job}",
                    tz=tz,
                )
            )
        if EventCategory.FOLLOW_UP in enabled and needs_follow_up(application, now, tz):
            events.append(
                _placeholder_event(
                    application,
                    category=EventCategory.FOLLOW_UP,
                    day=application.application_date + FOLLOW_UP_OFFSET,
                    title=f"Follow up: {job} at {company}",
                    description=f"Follow up on application for {job}",
                    tz=tz,
                )
            )

    if EventCategory.CUSTOM in enabled:
        for custom in custom_events:
            if not custom.sync_with_google or custom.google_event_id:
                continue
            linked = by_id.get(custom.application_id) if custom.application_id else None
            events.append(_custom_event(custom, linked))

    events.sort(key=lambda event: event.start)
    return events


# ---------------------------------------------------------------------------
# Storage access
# ---------------------------------------------------------------------------


class EventSource:
    """Reads the internal event tables and writes imported custom events."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def load_applications(self, user_id: str) -> list[Application]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id::text AS id, company_name, job_title, status,
                       application_date, deadline, priority
                FROM applications
                WHERE user_id = $1
                """,
                user_id,
            )
        return [Application(**dict(row)) for row in rows]

    async def load_interviews(self, user_id: str) -> list[Interview]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id::text AS id, application_id::text AS application_id,
                       interview_type, scheduled_at, duration_minutes, location, outcome
                FROM interviews
                WHERE user_id = $1
                """,
                user_id,
            )
        return [Interview(**dict(row)) for row in rows]

    async def load_syncable_custom_events(self, user_id: str) -> list[CustomEvent]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id::text AS id, title, description, start_time, end_time,
                       event_type, all_day, location, notes, color,
                       application_id::text AS application_id,
                       sync_with_google, google_event_id
                FROM calendar_events
                WHERE user_id = $1 AND sync_with_google = true
                """,
                user_id,
            )
        return [CustomEvent(**dict(row)) for row in rows]

    async def internal_events(
        self,
        user_id: str,
        *,
        categories: Iterable[EventCategory],
        now: datetime,
        tz: ZoneInfo,
    ) -> list[InternalEvent]:
        """Load the three source tables and synthesize the enabled categories."""
        enabled = frozenset(categories)
        if not enabled:
            return []
        # Applications also supply company/job context for interviews and custom events.
        applications = await self.load_applications(user_id)
        interviews = (
            await self.load_interviews(user_id) if EventCategory.INTERVIEW in enabled else []
        )
        custom_events = (
            await self.load_syncable_custom_events(user_id)
            if EventCategory.CUSTOM in enabled
            else []
        )
        return synthesize_events(
            applications,
            interviews,
            custom_events,
            categories=enabled,
            now=now,
            tz=tz,
        )

    async def create_custom_event(self, user_id: str, fields: CustomEventFields) -> str:
        """Insert an imported event and return its id."""
        async with self._pool.acquire() as conn:
            event_id = await conn.fetchval(
                """
                INSERT INTO calendar_events (
                    user_id, title, description, start_time, end_time, event_type,
                    all_day, location, google_event_id, sync_with_google, last_google_sync
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, now())
                RETURNING id::text
                """,
                user_id,
                fields.title,
                fields.description,
                fields.start_time,
                fields.end_time,
                fields.event_type,
                fields.all_day,
                fields.location,
                fields.google_event_id,
                fields.sync_with_google,
            )
        return event_id

    async def update_custom_event(
        self, event_id: str, fields: CustomEventFields, *, synced_at: datetime
    ) -> None:
        """Overwrite an imported event with the remote copy (last remote write wins)."""
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE calendar_events
                SET title = $2, description = $3, start_time = $4, end_time = $5,
                    all_day = $6, location = $7, google_event_id = $8,
                    last_google_sync = $9, updated_at = now()
                WHERE id = $1::uuid
                """,
                event_id,
                fields.title,
                fields.description,
                fields.start_time,
                fields.end_time,
                fields.all_day,
                fields.location,
                fields.google_event_id,
                synced_at,
            )
