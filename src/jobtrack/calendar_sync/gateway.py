"""Typed client over the Google Calendar v3 REST API.

Event payloads are validated at this boundary into a tagged variant: an
event's start/end are either all-day (``date``) or timed (``dateTime`` with
an optional zone), never a loosely-typed dict.  Credentials come from the
:class:`~jobtrack.calendar_sync.tokens.TokenStore` on every call, so the
gateway itself holds no per-user state.
"""

from __future__ import annotations

import asyncio
import calendar
import logging
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING, Annotated, Any, Literal
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from jobtrack.calendar_sync.errors import (
    AuthenticationRequiredError,
    GatewayError,
    NotFoundError,
    safe_google_error_message,
)

if TYPE_CHECKING:
    from jobtrack.calendar_sync.tokens import TokenStore

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
UNTITLED_EVENT = "Untitled Event"

RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0
NOT_FOUND_STATUS_CODES = {404, 410}
LIST_PAGE_SIZE = 250


# ---------------------------------------------------------------------------
# Boundary models
# ---------------------------------------------------------------------------


def _google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_google_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Google Calendar returned an invalid dateTime value: {value}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


class AllDayTime(BaseModel):
    """Date-only event boundary (Google ``{"date": "YYYY-MM-DD"}``)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["date"] = "date"
    day: date

    def to_google(self) -> dict[str, str]:
        return {"date": self.day.isoformat()}


class TimedTime(BaseModel):
    """Instant event boundary (Google ``{"dateTime": ..., "timeZone": ...}``)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["dateTime"] = "dateTime"
    at: datetime
    time_zone: str | None = None

    def to_google(self) -> dict[str, str]:
        body = {"dateTime": _google_rfc3339(self.at)}
        if self.time_zone:
            body["timeZone"] = self.time_zone
        return body


EventTime = Annotated[AllDayTime | TimedTime, Field(discriminator="kind")]


def parse_event_time(payload: Any) -> AllDayTime | TimedTime:
    """Build a boundary from a Google ``start``/``end`` object.

    Raises
    ------
    ValueError
        If the object carries neither a ``dateTime`` nor a ``date`` value.
    """
    if not isinstance(payload, dict):
        raise ValueError("Google Calendar event boundary must be an object")

    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        time_zone = payload.get("timeZone")
        return TimedTime(
            at=_parse_google_datetime(date_time),
            time_zone=time_zone if isinstance(time_zone, str) and time_zone.strip() else None,
        )

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            return AllDayTime(day=date.fromisoformat(date_value.strip()))
        except ValueError as exc:
            raise ValueError(f"Google Calendar returned an invalid date value: {date_value}") from exc

    raise ValueError("Google Calendar event is missing start/end dateTime or date values")


class GoogleEventBody(BaseModel):
    """Writable fields of a Google Calendar event."""

    summary: str = UNTITLED_EVENT
    description: str | None = None
    location: str | None = None
    color_id: str | None = None
    start: EventTime
    end: EventTime

    @model_validator(mode="after")
    def _boundaries_share_kind(self) -> GoogleEventBody:
        if self.start.kind != self.end.kind:
            raise ValueError("start and end must both be all-day or both be timed")
        return self

    @property
    def all_day(self) -> bool:
        return isinstance(self.start, AllDayTime)

    def to_google(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": self.summary,
            "start": self.start.to_google(),
            "end": self.end.to_google(),
        }
        if self.description is not None:
            body["description"] = self.description
        if self.location is not None:
            body["location"] = self.location
        if self.color_id is not None:
            body["colorId"] = self.color_id
        return body


class GoogleEvent(GoogleEventBody):
    """An event as returned by Google, including its identity and version tag."""

    id: str
    etag: str | None = None
    updated: datetime | None = None
    status: str | None = None

    @classmethod
    def from_google(cls, payload: dict[str, Any]) -> GoogleEvent:
        """Validate a raw Google event resource.

        Raises
        ------
        ValueError
            If required fields are missing or malformed.
        """
        event_id = payload.get("id")
        if not isinstance(event_id, str) or not event_id.strip():
            raise ValueError("Google Calendar event is missing an id")

        summary = payload.get("summary")
        updated = payload.get("updated")
        return cls(
            id=event_id,
            summary=summary if isinstance(summary, str) and summary.strip() else UNTITLED_EVENT,
            description=payload.get("description"),
            location=payload.get("location"),
            color_id=payload.get("colorId"),
            start=parse_event_time(payload.get("start")),
            end=parse_event_time(payload.get("end")),
            etag=payload.get("etag"),
            updated=_parse_google_datetime(updated) if isinstance(updated, str) else None,
            status=payload.get("status"),
        )


class GoogleCalendar(BaseModel):
    """Calendar list entry."""

    id: str
    summary: str
    description: str | None = None
    primary: bool = False
    access_role: str


class WatchChannel(BaseModel):
    """Change-notification channel registered on a calendar."""

    id: str
    resource_id: str
    expiration: datetime | None = None


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def default_pull_window(
    now: datetime,
    *,
    past_days: int = 30,
    future_months: int = 6,
) -> tuple[datetime, datetime]:
    """Return the ``(time_min, time_max)`` window a pull pass lists."""
    return now - timedelta(days=past_days), _add_months(now, future_months)


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class GoogleCalendarGateway:
    """Google Calendar API client with bearer refresh and rate-limit retry helpers."""

    def __init__(
        self,
        token_store: TokenStore,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token_store = token_store
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=30.0)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    # -- request helpers ---------------------------------------------------

    async def _access_token(self, user_id: str, *, force_refresh: bool) -> str:
        tokens = await self._token_store.get_valid(user_id, force_refresh=force_refresh)
        if tokens is None:
            raise AuthenticationRequiredError(user_id)
        return tokens.access_token

    async def _request_once(
        self,
        user_id: str,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
        force_refresh: bool,
    ) -> httpx.Response:
        access_token = await self._access_token(user_id, force_refresh=force_refresh)
        try:
            return await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise GatewayError(status_code=0, message=f"Google Calendar request failed: {exc}") from exc

    async def _request_with_bearer(
        self,
        user_id: str,
        *,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        normalized_path = path if path.startswith("/") else f"/{path}"
        url = f"{GOOGLE_CALENDAR_API_BASE_URL}{normalized_path}"

        response = await self._request_once(
            user_id,
            method=method,
            url=url,
            params=params,
            json_body=json_body,
            force_refresh=False,
        )

        if response.status_code == 401:
            response = await self._request_once(
                user_id,
                method=method,
                url=url,
                params=params,
                json_body=json_body,
                force_refresh=True,
            )

        # Honour Retry-After on 429, exponential backoff otherwise.
        retry = 0
        while (
            response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and retry < RATE_LIMIT_MAX_RETRIES
        ):
            backoff = RATE_LIMIT_BASE_BACKOFF_SECONDS * (2**retry)
            if response.status_code == 429:
                retry_after_header = response.headers.get("Retry-After")
                if retry_after_header is not None:
                    try:
                        backoff = float(retry_after_header)
                    except ValueError:
                        pass
            logger.warning(
                "Calendar API rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                backoff,
                retry + 1,
                RATE_LIMIT_MAX_RETRIES,
            )
            await asyncio.sleep(backoff)
            response = await self._request_once(
                user_id,
                method=method,
                url=url,
                params=params,
                json_body=json_body,
                force_refresh=False,
            )
            retry += 1

        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if 200 <= response.status_code < 300:
            return
        message = safe_google_error_message(response)
        if response.status_code in NOT_FOUND_STATUS_CODES:
            raise NotFoundError(status_code=response.status_code, message=message)
        raise GatewayError(status_code=response.status_code, message=message)

    async def _request_json(
        self,
        user_id: str,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self._request_with_bearer(
            user_id, method=method, path=path, params=params, json_body=json_body
        )
        self._raise_for_status(response)

        if response.status_code == 204:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayError(
                status_code=response.status_code,
                message="Google Calendar API returned invalid JSON for a successful response",
            ) from exc

        if not isinstance(payload, dict):
            raise GatewayError(
                status_code=response.status_code,
                message="Google Calendar API returned an unexpected JSON payload shape",
            )
        return payload

    @staticmethod
    def _event_path(calendar_id: str, event_id: str | None = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            normalized = event_id.strip()
            if not normalized:
                raise ValueError("event_id must be a non-empty string")
            path = f"{path}/{quote(normalized, safe='')}"
        return path

    @staticmethod
    def _to_event(payload: dict[str, Any], *, operation: str) -> GoogleEvent:
        try:
            return GoogleEvent.from_google(payload)
        except (ValueError, ValidationError) as exc:
            raise GatewayError(
                status_code=200,
                message=f"Google Calendar returned an invalid event for {operation}: {exc}",
            ) from exc

    # -- calendars ---------------------------------------------------------

    async def list_calendars(self, user_id: str) -> list[GoogleCalendar]:
        """Return the calendars the user can write to."""
        calendars: list[GoogleCalendar] = []
        params: dict[str, Any] = {"minAccessRole": "writer"}
        while True:
            payload = await self._request_json(
                user_id, "GET", "/users/me/calendarList", params=params
            )
            for item in payload.get("items") or []:
                if not isinstance(item, dict) or not item.get("id"):
                    continue
                calendars.append(
                    GoogleCalendar(
                        id=item["id"],
                        summary=item.get("summary") or item["id"],
                        description=item.get("description"),
                        primary=bool(item.get("primary", False)),
                        access_role=item.get("accessRole") or "writer",
                    )
                )
            page_token = payload.get("nextPageToken")
            if not page_token:
                return calendars
            params = {"minAccessRole": "writer", "pageToken": page_token}

    async def get_primary_calendar(self, user_id: str) -> GoogleCalendar | None:
        """Return the primary writable calendar, else the first one, else None."""
        calendars = await self.list_calendars(user_id)
        for entry in calendars:
            if entry.primary:
                return entry
        return calendars[0] if calendars else None

    # -- events ------------------------------------------------------------

    async def get_event(self, user_id: str, calendar_id: str, event_id: str) -> GoogleEvent | None:
        """Fetch one event; ``None`` when it no longer exists."""
        try:
            payload = await self._request_json(
                user_id, "GET", self._event_path(calendar_id, event_id)
            )
        except NotFoundError:
            return None
        return self._to_event(payload, operation="get_event")

    async def create_event(
        self, user_id: str, calendar_id: str, body: GoogleEventBody
    ) -> GoogleEvent:
        payload = await self._request_json(
            user_id, "POST", self._event_path(calendar_id), json_body=body.to_google()
        )
        return self._to_event(payload, operation="create_event")

    async def update_event(
        self, user_id: str, calendar_id: str, event_id: str, body: GoogleEventBody
    ) -> GoogleEvent:
        """Replace an event's writable fields.

        Raises
        ------
        NotFoundError
            If the event was deleted remotely.
        GatewayError
            For any other failure.
        """
        payload = await self._request_json(
            user_id,
            "PUT",
            self._event_path(calendar_id, event_id),
            json_body=body.to_google(),
        )
        return self._to_event(payload, operation="update_event")

    async def delete_event(self, user_id: str, calendar_id: str, event_id: str) -> None:
        """Delete an event; an already-deleted event counts as success."""
        try:
            await self._request_json(user_id, "DELETE", self._event_path(calendar_id, event_id))
        except NotFoundError:
            logger.debug("delete_event: event '%s' already deleted; treating as success", event_id)

    async def list_events(
        self,
        user_id: str,
        calendar_id: str,
        *,
        time_min: datetime,
        time_max: datetime,
    ) -> list[GoogleEvent]:
        """List expanded single events in ``[time_min, time_max)`` ordered by start."""
        params: dict[str, Any] = {
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": LIST_PAGE_SIZE,
            "timeMin": _google_rfc3339(time_min),
            "timeMax": _google_rfc3339(time_max),
        }
        events: list[GoogleEvent] = []
        while True:
            payload = await self._request_json(
                user_id, "GET", self._event_path(calendar_id), params=params
            )
            items = payload.get("items")
            if not isinstance(items, list):
                raise GatewayError(
                    status_code=200,
                    message="Google Calendar list_events response missing items array",
                )
            for item in items:
                if not isinstance(item, dict):
                    continue
                try:
                    events.append(GoogleEvent.from_google(item))
                except (ValueError, ValidationError) as exc:
                    logger.warning("Skipping malformed Google event %r: %s", item.get("id"), exc)

            page_token = payload.get("nextPageToken")
            if not page_token:
                return events
            params = {**params, "pageToken": page_token}

    # -- change notifications ----------------------------------------------

    async def watch_events(
        self,
        user_id: str,
        calendar_id: str,
        *,
        channel_id: str,
        webhook_url: str,
    ) -> WatchChannel:
        """Register a web_hook channel for changes on *calendar_id*."""
        payload = await self._request_json(
            user_id,
            "POST",
            f"{self._event_path(calendar_id)}/watch",
            json_body={"id": channel_id, "type": "web_hook", "address": webhook_url},
        )
        expiration_raw = payload.get("expiration")
        expiration = None
        if expiration_raw is not None:
            expiration = datetime.fromtimestamp(int(expiration_raw) / 1000, tz=UTC)
        return WatchChannel(
            id=payload.get("id") or channel_id,
            resource_id=payload.get("resourceId") or "",
            expiration=expiration,
        )

    async def stop_channel(self, user_id: str, *, channel_id: str, resource_id: str) -> None:
        await self._request_json(
            user_id,
            "POST",
            "/channels/stop",
            json_body={"id": channel_id, "resourceId": resource_id},
        )
