"""Unit tests for GoogleCalendarGateway and its boundary models.

Covers:
- Tagged all-day/timed boundaries parsed and rendered
- Bearer token on every request; 401 retried once with a forced refresh
- 429/503 retried with exponential backoff, Retry-After honoured
- 404/410 → NotFoundError on update, None on get, success on delete
- Transport failures → GatewayError(status_code=0)
- list_events pagination, query parameters, malformed items skipped
- Calendar list / primary calendar discovery
- Provider error messages redacted before surfacing
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from pydantic import ValidationError

from jobtrack.calendar_sync.errors import AuthenticationRequiredError, GatewayError, NotFoundError
from jobtrack.calendar_sync.gateway import (
    GOOGLE_CALENDAR_API_BASE_URL,
    AllDayTime,
    GoogleCalendarGateway,
    GoogleEvent,
    GoogleEventBody,
    TimedTime,
    default_pull_window,
    parse_event_time,
)
from jobtrack.calendar_sync.tokens import OAuthTokens

pytestmark = pytest.mark.unit

_SLEEP_TARGET = "jobtrack.calendar_sync.gateway.asyncio.sleep"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_response(
    *,
    status_code: int,
    method: str = "GET",
    path: str = "/calendars/primary/events",
    json_body: dict | None = None,
    text: str = "",
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    request = httpx.Request(method, f"{GOOGLE_CALENDAR_API_BASE_URL}{path}")
    if json_body is not None:
        return httpx.Response(
            status_code=status_code, json=json_body, headers=headers, request=request
        )
    return httpx.Response(status_code=status_code, text=text, headers=headers, request=request)


def _event_payload(event_id: str = "evt-1", **overrides) -> dict:
    payload = {
        "id": event_id,
        "etag": '"etag-1"',
        "summary": "Phone Screen - Acme",
        "status": "confirmed",
        "start": {"dateTime": "2026-03-01T10:00:00-05:00", "timeZone": "America/New_York"},
        "end": {"dateTime": "2026-03-01T11:00:00-05:00", "timeZone": "America/New_York"},
    }
    payload.update(overrides)
    return payload


def _token_store(access_token: str | None = "ya29.token") -> MagicMock:
    store = MagicMock()
    if access_token is None:
        store.get_valid = AsyncMock(return_value=None)
    else:
        store.get_valid = AsyncMock(
            return_value=OAuthTokens(
                access_token=access_token,
                refresh_token="1//refresh",
                expires_at=datetime.now(UTC) + timedelta(hours=1),
            )
        )
    return store


def _make_gateway(*responses, token_store: MagicMock | None = None):
    http_client = MagicMock(spec=httpx.AsyncClient)
    http_client.request = AsyncMock(side_effect=list(responses))
    gateway = GoogleCalendarGateway(token_store or _token_store(), http_client=http_client)
    return gateway, http_client


def _timed_body() -> GoogleEventBody:
    return GoogleEventBody(
        summary="Phone Screen - Acme",
        description="Engineer at Acme",
        color_id="9",
        start=TimedTime(at=datetime(2026, 3, 1, 15, 0, tzinfo=UTC), time_zone="America/New_York"),
        end=TimedTime(at=datetime(2026, 3, 1, 16, 0, tzinfo=UTC), time_zone="America/New_York"),
    )


# ---------------------------------------------------------------------------
# Boundary models
# ---------------------------------------------------------------------------


class TestEventTime:
    def test_parse_timed_boundary(self):
        boundary = parse_event_time({"dateTime": "2026-03-01T10:00:00Z", "timeZone": "UTC"})
        assert isinstance(boundary, TimedTime)
        assert boundary.at == datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
        assert boundary.time_zone == "UTC"

    def test_parse_all_day_boundary(self):
        boundary = parse_event_time({"date": "2026-03-01"})
        assert boundary == AllDayTime(day=date(2026, 3, 1))

    def test_parse_rejects_empty_boundary(self):
        with pytest.raises(ValueError, match="missing start/end"):
            parse_event_time({})

    def test_timed_renders_rfc3339_utc_with_zone(self):
        rendered = TimedTime(
            at=datetime(2026, 3, 1, 10, 0, tzinfo=UTC), time_zone="America/New_York"
        ).to_google()
        assert rendered == {"dateTime": "2026-03-01T10:00:00Z", "timeZone": "America/New_York"}

    def test_all_day_renders_date_only(self):
        assert AllDayTime(day=date(2026, 3, 1)).to_google() == {"date": "2026-03-01"}

    def test_body_rejects_mixed_boundaries(self):
        with pytest.raises(ValidationError):
            GoogleEventBody(
                start=AllDayTime(day=date(2026, 3, 1)),
                end=TimedTime(at=datetime(2026, 3, 1, 10, 0, tzinfo=UTC)),
            )

    def test_from_google_defaults_missing_summary(self):
        event = GoogleEvent.from_google(_event_payload(summary=""))
        assert event.summary == "Untitled Event"
        assert event.all_day is False

    def test_body_to_google_omits_unset_fields(self):
        body = GoogleEventBody(
            start=AllDayTime(day=date(2026, 3, 1)), end=AllDayTime(day=date(2026, 3, 2))
        )
        assert body.to_google() == {
            "summary": "Untitled Event",
            "start": {"date": "2026-03-01"},
            "end": {"date": "2026-03-02"},
        }


class TestDefaultPullWindow:
    def test_thirty_days_back_six_months_ahead(self):
        now = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)
        time_min, time_max = default_pull_window(now)
        assert time_min == datetime(2026, 2, 13, 12, 0, tzinfo=UTC)
        assert time_max == datetime(2026, 9, 15, 12, 0, tzinfo=UTC)

    def test_month_end_is_clamped(self):
        now = datetime(2026, 8, 31, tzinfo=UTC)
        _, time_max = default_pull_window(now)
        assert time_max == datetime(2027, 2, 28, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Request behaviour
# ---------------------------------------------------------------------------


class TestRequestBehaviour:
    async def test_create_event_posts_body_with_bearer(self):
        gateway, http_client = _make_gateway(
            _mock_response(status_code=200, method="POST", json_body=_event_payload())
        )

        event = await gateway.create_event("user-1", "primary", _timed_body())

        assert event.id == "evt-1"
        assert event.etag == '"etag-1"'
        call = http_client.request.call_args
        assert call.args[0] == "POST"
        assert call.args[1] == f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/primary/events"
        assert call.kwargs["headers"]["Authorization"] == "Bearer ya29.token"
        assert call.kwargs["json"]["colorId"] == "9"
        assert call.kwargs["json"]["start"] == {
            "dateTime": "2026-03-01T15:00:00Z",
            "timeZone": "America/New_York",
        }

    async def test_calendar_and_event_ids_are_url_encoded(self):
        gateway, http_client = _make_gateway(
            _mock_response(status_code=200, json_body=_event_payload())
        )

        await gateway.get_event("user-1", "team@group.calendar.google.com", "evt/1")

        url = http_client.request.call_args.args[1]
        assert url.endswith("/calendars/team%40group.calendar.google.com/events/evt%2F1")

    async def test_missing_credentials_raise_authentication_required(self):
        gateway, http_client = _make_gateway(token_store=_token_store(None))

        with pytest.raises(AuthenticationRequiredError):
            await gateway.list_calendars("user-1")
        http_client.request.assert_not_awaited()

    async def test_401_retries_once_with_forced_refresh(self):
        store = _token_store()
        gateway, http_client = _make_gateway(
            _mock_response(status_code=401, json_body={"error": {"message": "Invalid Credentials"}}),
            _mock_response(status_code=200, json_body=_event_payload()),
            token_store=store,
        )

        event = await gateway.get_event("user-1", "primary", "evt-1")

        assert event is not None
        assert http_client.request.await_count == 2
        assert store.get_valid.await_args_list[0].kwargs == {"force_refresh": False}
        assert store.get_valid.await_args_list[1].kwargs == {"force_refresh": True}

    async def test_429_honours_retry_after(self):
        gateway, http_client = _make_gateway(
            _mock_response(status_code=429, text="slow down", headers={"Retry-After": "7"}),
            _mock_response(status_code=200, json_body=_event_payload()),
        )

        with patch(_SLEEP_TARGET, new_callable=AsyncMock) as sleep:
            await gateway.get_event("user-1", "primary", "evt-1")

        sleep.assert_awaited_once_with(7.0)
        assert http_client.request.await_count == 2

    async def test_503_exhausts_retries_with_exponential_backoff(self):
        responses = [_mock_response(status_code=503, text="backend error") for _ in range(4)]
        gateway, http_client = _make_gateway(*responses)

        with patch(_SLEEP_TARGET, new_callable=AsyncMock) as sleep:
            with pytest.raises(GatewayError) as exc_info:
                await gateway.create_event("user-1", "primary", _timed_body())

        assert exc_info.value.status_code == 503
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]
        assert http_client.request.await_count == 4

    async def test_transport_error_is_gateway_error_with_status_zero(self):
        gateway, _ = _make_gateway(httpx.ConnectTimeout("timed out"))

        with pytest.raises(GatewayError) as exc_info:
            await gateway.create_event("user-1", "primary", _timed_body())

        assert exc_info.value.status_code == 0
        assert not isinstance(exc_info.value, NotFoundError)

    async def test_error_message_is_redacted(self):
        gateway, _ = _make_gateway(
            _mock_response(
                status_code=400,
                json_body={"error": {"message": "bad request access_token=ya29.secret"}},
            )
        )

        with pytest.raises(GatewayError) as exc_info:
            await gateway.create_event("user-1", "primary", _timed_body())

        assert "ya29.secret" not in str(exc_info.value)
        assert "[REDACTED]" in exc_info.value.message


class TestNotFoundHandling:
    @pytest.mark.parametrize("status_code", [404, 410])
    async def test_update_raises_not_found(self, status_code: int):
        gateway, _ = _make_gateway(
            _mock_response(status_code=status_code, method="PUT", json_body={"error": "gone"})
        )

        with pytest.raises(NotFoundError) as exc_info:
            await gateway.update_event("user-1", "primary", "evt-1", _timed_body())
        assert exc_info.value.status_code == status_code

    async def test_update_uses_put(self):
        gateway, http_client = _make_gateway(
            _mock_response(status_code=200, method="PUT", json_body=_event_payload(etag='"e2"'))
        )

        event = await gateway.update_event("user-1", "primary", "evt-1", _timed_body())

        assert event.etag == '"e2"'
        assert http_client.request.call_args.args[0] == "PUT"

    async def test_get_event_returns_none_when_gone(self):
        gateway, _ = _make_gateway(_mock_response(status_code=410, text="deleted"))
        assert await gateway.get_event("user-1", "primary", "evt-1") is None

    async def test_delete_treats_404_as_success(self):
        gateway, http_client = _make_gateway(
            _mock_response(status_code=404, method="DELETE", text="not found")
        )

        await gateway.delete_event("user-1", "primary", "evt-1")

        assert http_client.request.call_args.args[0] == "DELETE"

    async def test_delete_other_errors_raise(self):
        gateway, _ = _make_gateway(
            _mock_response(status_code=403, method="DELETE", json_body={"error": "forbidden"})
        )
        with pytest.raises(GatewayError):
            await gateway.delete_event("user-1", "primary", "evt-1")


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListEvents:
    async def test_follows_page_tokens_and_skips_malformed_items(self):
        gateway, http_client = _make_gateway(
            _mock_response(
                status_code=200,
                json_body={
                    "items": [_event_payload("evt-1"), {"id": "broken", "start": {}, "end": {}}],
                    "nextPageToken": "page-2",
                },
            ),
            _mock_response(
                status_code=200,
                json_body={
                    "items": [
                        _event_payload(
                            "evt-2", start={"date": "2026-03-02"}, end={"date": "2026-03-03"}
                        )
                    ]
                },
            ),
        )
        time_min = datetime(2026, 2, 1, tzinfo=UTC)
        time_max = datetime(2026, 8, 1, tzinfo=UTC)

        events = await gateway.list_events(
            "user-1", "primary", time_min=time_min, time_max=time_max
        )

        assert [event.id for event in events] == ["evt-1", "evt-2"]
        assert events[1].all_day is True
        first_params = http_client.request.await_args_list[0].kwargs["params"]
        assert first_params["singleEvents"] == "true"
        assert first_params["orderBy"] == "startTime"
        assert first_params["maxResults"] == 250
        assert first_params["timeMin"] == "2026-02-01T00:00:00Z"
        assert first_params["timeMax"] == "2026-08-01T00:00:00Z"
        second_params = http_client.request.await_args_list[1].kwargs["params"]
        assert second_params["pageToken"] == "page-2"

    async def test_missing_items_array_is_an_error(self):
        gateway, _ = _make_gateway(_mock_response(status_code=200, json_body={"kind": "x"}))
        with pytest.raises(GatewayError, match="items"):
            await gateway.list_events(
                "user-1",
                "primary",
                time_min=datetime(2026, 1, 1, tzinfo=UTC),
                time_max=datetime(2026, 2, 1, tzinfo=UTC),
            )


class TestCalendars:
    async def test_list_calendars_requests_writable_only(self):
        gateway, http_client = _make_gateway(
            _mock_response(
                status_code=200,
                path="/users/me/calendarList",
                json_body={
                    "items": [
                        {"id": "work@example.com", "summary": "Work", "accessRole": "writer"},
                        {
                            "id": "me@example.com",
                            "summary": "Me",
                            "primary": True,
                            "accessRole": "owner",
                        },
                    ]
                },
            )
        )

        calendars = await gateway.list_calendars("user-1")

        assert [c.id for c in calendars] == ["work@example.com", "me@example.com"]
        assert http_client.request.call_args.kwargs["params"] == {"minAccessRole": "writer"}

    async def test_primary_calendar_is_preferred(self):
        gateway, _ = _make_gateway(
            _mock_response(
                status_code=200,
                json_body={
                    "items": [
                        {"id": "work@example.com", "summary": "Work", "accessRole": "writer"},
                        {"id": "me@example.com", "summary": "Me", "primary": True, "accessRole": "owner"},
                    ]
                },
            )
        )
        primary = await gateway.get_primary_calendar("user-1")
        assert primary is not None
        assert primary.id == "me@example.com"

    async def test_no_calendars_returns_none(self):
        gateway, _ = _make_gateway(_mock_response(status_code=200, json_body={"items": []}))
        assert await gateway.get_primary_calendar("user-1") is None


class TestWatchChannels:
    async def test_watch_events_registers_web_hook(self):
        gateway, http_client = _make_gateway(
            _mock_response(
                status_code=200,
                method="POST",
                json_body={"id": "chan-1", "resourceId": "res-1", "expiration": "1767225600000"},
            )
        )

        channel = await gateway.watch_events(
            "user-1", "primary", channel_id="chan-1", webhook_url="https://example.com/hook"
        )

        assert channel.resource_id == "res-1"
        assert channel.expiration == datetime(2026, 1, 1, tzinfo=UTC)
        call = http_client.request.call_args
        assert call.args[1].endswith("/calendars/primary/events/watch")
        assert call.kwargs["json"] == {
            "id": "chan-1",
            "type": "web_hook",
            "address": "https://example.com/hook",
        }

    async def test_stop_channel(self):
        gateway, http_client = _make_gateway(
            _mock_response(status_code=204, method="POST", path="/channels/stop")
        )

        await gateway.stop_channel("user-1", channel_id="chan-1", resource_id="res-1")

        call = http_client.request.call_args
        assert call.args[1] == f"{GOOGLE_CALENDAR_API_BASE_URL}/channels/stop"
        assert call.kwargs["json"] == {"id": "chan-1", "resourceId": "res-1"}
