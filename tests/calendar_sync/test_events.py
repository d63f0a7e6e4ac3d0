"""Tests for synthesizing the internal event union and the EventSource loaders."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from jobtrack.calendar_sync.events import (
    Application,
    CustomEvent,
    CustomEventFields,
    EventCategory,
    EventSource,
    Interview,
    needs_follow_up,
    synthesize_events,
)

pytestmark = pytest.mark.unit

NY = ZoneInfo("America/New_York")
NOW = datetime(2026, 3, 20, 12, 0, tzinfo=UTC)
ALL = frozenset(EventCategory)


def _application(**overrides) -> Application:
    fields = {
        "id": "app-1",
        "company_name": "Acme",
        "job_title": "Engineer",
        "status": "applied",
        "application_date": date(2026, 3, 1),
        "deadline": date(2026, 3, 25),
    }
    fields.update(overrides)
    return Application(**fields)


def _interview(**overrides) -> Interview:
    fields = {
        "id": "iv-1",
        "application_id": "app-1",
        "interview_type": "phone_screen",
        "scheduled_at": datetime(2026, 3, 22, 14, 0, tzinfo=NY),
    }
    fields.update(overrides)
    return Interview(**fields)


def _custom(**overrides) -> CustomEvent:
    fields = {
        "id": "ce-1",
        "title": "Portfolio review",
        "start_time": datetime(2026, 3, 21, 9, 0, tzinfo=NY),
        "end_time": datetime(2026, 3, 21, 10, 0, tzinfo=NY),
        "sync_with_google": True,
    }
    fields.update(overrides)
    return CustomEvent(**fields)


class TestSynthesizeEvents:
    def test_only_enabled_categories_are_produced(self):
        events = synthesize_events(
            [_application()],
            [_interview()],
            [],
            categories={EventCategory.INTERVIEW},
            now=NOW,
            tz=NY,
        )
        assert [event.category for event in events] == [EventCategory.INTERVIEW]

    def test_interview_title_duration_and_status(self):
        (event,) = synthesize_events(
            [_application()],
            [_interview(duration_minutes=45)],
            [],
            categories={EventCategory.INTERVIEW},
            now=NOW,
            tz=NY,
        )
        assert event.title == "Phone Screen - Acme"
        assert event.description == "Engineer at Acme"
        assert event.end - event.start == timedelta(minutes=45)
        assert event.resource.status == "pending"
        assert event.key == (EventCategory.INTERVIEW, "iv-1")

    def test_interview_without_application_uses_placeholders(self):
        (event,) = synthesize_events(
            [],
            [_interview(application_id="gone", outcome="passed")],
            [],
            categories={EventCategory.INTERVIEW},
            now=NOW,
            tz=NY,
        )
        assert event.title == "Phone Screen - Interview"
        assert event.description == "Position at Company"
        assert event.end - event.start == timedelta(minutes=60)
        assert event.resource.status == "passed"

    def test_deadline_and_application_placeholders(self):
        events = synthesize_events(
            [_application()],
            [],
            [],
            categories={EventCategory.DEADLINE, EventCategory.APPLICATION},
            now=NOW,
            tz=NY,
        )
        by_category = {event.category: event for event in events}

        applied = by_category[EventCategory.APPLICATION]
        assert applied.title == "Applied: Engineer at Acme"
        assert applied.description == "Submitted application for Engineer"
        assert applied.start == datetime(2026, 3, 1, tzinfo=NY)

        deadline = by_category[EventCategory.DEADLINE]
        assert deadline.title == "Deadline: Engineer at Acme"
        assert deadline.description == "Application deadline for Engineer"
        assert deadline.start == datetime(2026, 3, 25, tzinfo=NY)
        assert deadline.end - deadline.start == timedelta(hours=1)
        assert deadline.reference_id == "app-1"

    def test_application_without_deadline_has_no_deadline_event(self):
        events = synthesize_events(
            [_application(deadline=None)],
            [],
            [],
            categories={EventCategory.DEADLINE},
            now=NOW,
            tz=NY,
        )
        assert events == []

    def test_follow_up_two_weeks_after_submission(self):
        (event,) = synthesize_events(
            [_application()],
            [],
            [],
            categories={EventCategory.FOLLOW_UP},
            now=NOW,
            tz=NY,
        )
        assert event.title == "Follow up: Engineer at Acme"
        assert event.description == "Follow up on application for Engineer"
        assert event.start == datetime(2026, 3, 15, tzinfo=NY)

    def test_custom_events_skip_imported_and_unsynced(self):
        events = synthesize_events(
            [_application()],
            [],
            [
                _custom(id="ce-1", application_id="app-1", color="4"),
                _custom(id="ce-2", google_event_id="g-9"),
                _custom(id="ce-3", sync_with_google=False),
            ],
            categories={EventCategory.CUSTOM},
            now=NOW,
            tz=NY,
        )
        assert [event.reference_id for event in events] == ["ce-1"]
        assert events[0].custom_event_id == "ce-1"
        assert events[0].color == "4"
        assert events[0].resource.company_name == "Acme"

    def test_sorted_by_start(self):
        events = synthesize_events(
            [_application()],
            [_interview()],
            [_custom()],
            categories=ALL,
            now=NOW,
            tz=NY,
        )
        starts = [event.start for event in events]
        assert starts == sorted(starts)
        assert len(events) == 5

    def test_empty_sources_produce_no_events(self):
        assert synthesize_events([], [], [], categories=ALL, now=NOW, tz=NY) == []


class TestNeedsFollowUp:
    def test_applied_for_seven_days(self):
        application = _application(application_date=date(2026, 3, 13))
        assert needs_follow_up(application, datetime(2026, 3, 20, 4, 0, tzinfo=NY), NY)

    def test_applied_for_six_days(self):
        application = _application(application_date=date(2026, 3, 14))
        assert not needs_follow_up(application, datetime(2026, 3, 20, 4, 0, tzinfo=NY), NY)

    def test_other_statuses_never_need_follow_up(self):
        application = _application(status="interviewing", application_date=date(2026, 1, 1))
        assert not needs_follow_up(application, NOW, NY)


class TestEventSource:
    async def test_no_categories_skips_queries(self, mock_pool):
        pool, conn = mock_pool
        source = EventSource(pool)

        assert await source.internal_events("user-1", categories=[], now=NOW, tz=NY) == []
        conn.fetch.assert_not_awaited()

    async def test_interviews_and_custom_not_loaded_when_disabled(self, mock_pool):
        pool, conn = mock_pool
        conn.fetch = AsyncMock(
            return_value=[
                {
                    "id": "app-1",
                    "company_name": "Acme",
                    "job_title": "Engineer",
                    "status": "applied",
                    "application_date": date(2026, 3, 1),
                    "deadline": None,
                    "priority": "high",
                }
            ]
        )
        source = EventSource(pool)

        events = await source.internal_events(
            "user-1", categories=[EventCategory.APPLICATION], now=NOW, tz=NY
        )

        assert conn.fetch.await_count == 1
        assert "FROM applications" in conn.fetch.call_args.args[0]
        assert [event.category for event in events] == [EventCategory.APPLICATION]
        assert events[0].resource.priority == "high"

    async def test_create_custom_event_returns_id(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchval = AsyncMock(return_value="7b0c...")
        source = EventSource(pool)
        fields = CustomEventFields(
            title="Coffee",
            start_time=datetime(2026, 3, 1, 10, 0, tzinfo=UTC),
            end_time=datetime(2026, 3, 1, 11, 0, tzinfo=UTC),
            google_event_id="g-1",
        )

        event_id = await source.create_custom_event("user-1", fields)

        assert event_id == "7b0c..."
        sql, *args = conn.fetchval.call_args.args
        assert "INSERT INTO calendar_events" in sql
        assert args[0] == "user-1"
        assert "g-1" in args
        assert args[-1] is True

    async def test_update_custom_event_overwrites_fields(self, mock_pool):
        pool, conn = mock_pool
        source = EventSource(pool)
        fields = CustomEventFields(
            title="Coffee (moved)",
            start_time=datetime(2026, 3, 2, 10, 0, tzinfo=UTC),
            end_time=datetime(2026, 3, 2, 11, 0, tzinfo=UTC),
            google_event_id="g-1",
        )
        synced_at = datetime(2026, 3, 1, tzinfo=UTC)

        await source.update_custom_event("ce-1", fields, synced_at=synced_at)

        sql, *args = conn.execute.call_args.args
        assert "UPDATE calendar_events" in sql
        assert args[0] == "ce-1"
        assert args[1] == "Coffee (moved)"
        assert args[-1] == synced_at
