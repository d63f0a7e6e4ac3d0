"""Translation between internal events and Google Calendar events."""

from __future__ import annotations

from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from jobtrack.calendar_sync.events import CustomEventFields, EventCategory, InternalEvent
from jobtrack.calendar_sync.gateway import (
    AllDayTime,
    GoogleEvent,
    GoogleEventBody,
    TimedTime,
)

APP_EVENT_MARKER = "📝 Created by Job Application Tracker"

CATEGORY_COLORS: dict[EventCategory, str] = {
    EventCategory.INTERVIEW: "9",
    EventCategory.DEADLINE: "5",
    EventCategory.APPLICATION: "2",
    EventCategory.FOLLOW_UP: "3",
    EventCategory.CUSTOM: "1",
}
GOOGLE_COLOR_IDS = frozenset(str(n) for n in range(1, 12))

_ALL_DAY_CATEGORIES = frozenset({EventCategory.DEADLINE, EventCategory.APPLICATION})
_ALL_DAY_MIN_DURATION = timedelta(hours=24)


def is_all_day(event: InternalEvent) -> bool:
    if event.category in _ALL_DAY_CATEGORIES or event.all_day:
        return True
    return event.end - event.start >= _ALL_DAY_MIN_DURATION


def color_for(event: InternalEvent) -> str:
    """Category color, unless the event carries a valid Google color id of its own."""
    if event.color and event.color in GOOGLE_COLOR_IDS:
        return event.color
    return CATEGORY_COLORS[event.category]


def build_description(event: InternalEvent) -> str:
    """Event description with job-search context and the app marker appended."""
    description = event.description or ""
    resource = event.resource
    if resource.company_name:
        description += f"\n\nCompany: {resource.company_name}"
    if resource.job_title:
        description += f"\nPosition: {resource.job_title}"
    if resource.status:
        description += f"\nStatus: {resource.status.replace('_', ' ', 1).upper()}"
    description += f"\n\n{APP_EVENT_MARKER}"
    return description.strip()


def _local(value: datetime, tz: ZoneInfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def to_google_event(event: InternalEvent, tz: ZoneInfo) -> GoogleEventBody:
    """Render *event* as a Google event body in *tz*."""
    start: AllDayTime | TimedTime
    end: AllDayTime | TimedTime
    if is_all_day(event):
        start_day = _local(event.start, tz).date()
        end_day = _local(event.end, tz).date()
        # Google treats the end date as exclusive.
        if end_day <= start_day:
            end_day = start_day + timedelta(days=1)
        start, end = AllDayTime(day=start_day), AllDayTime(day=end_day)
    else:
        start = TimedTime(at=event.start, time_zone=tz.key)
        end = TimedTime(at=event.end, time_zone=tz.key)

    return GoogleEventBody(
        summary=event.title,
        description=build_description(event),
        location=event.resource.location,
        color_id=color_for(event),
        start=start,
        end=end,
    )


def is_app_event(google_event: GoogleEvent) -> bool:
    """True for events this application pushed (they carry the marker)."""
    return APP_EVENT_MARKER in (google_event.description or "")


def _boundary_datetime(boundary: AllDayTime | TimedTime, tz: ZoneInfo) -> datetime:
    if isinstance(boundary, AllDayTime):
        return datetime.combine(boundary.day, time.min, tzinfo=tz)
    return boundary.at


def to_custom_event_fields(google_event: GoogleEvent, tz: ZoneInfo) -> CustomEventFields:
    """Column values for importing *google_event* as a custom event."""
    return CustomEventFields(
        title=google_event.summary,
        description=google_event.description,
        start_time=_boundary_datetime(google_event.start, tz),
        end_time=_boundary_datetime(google_event.end, tz),
        all_day=google_event.all_day,
        location=google_event.location,
        google_event_id=google_event.id,
    )
