"""Google OAuth token lifecycle: issuance, persistence, and refresh-on-read.

The :class:`TokenStore` is the single authority callers consult for an access
token.  ``get_valid()`` refreshes proactively when the stored token has five
minutes or less to live, so a token handed out is never about to expire
mid-request.  A failed refresh (revoked grant, network trouble) yields
``None``, which callers interpret as "the user must reconnect".

Secret material (access token, refresh token, client secret) is never logged.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import asyncpg
import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from jobtrack.calendar_sync.errors import (
    InvalidCredentialError,
    TokenRefreshError,
    safe_google_error_message,
)

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

DEFAULT_EXPIRES_IN_SECONDS = 3600
REFRESH_MARGIN = timedelta(minutes=5)


class OAuthTokens(BaseModel):
    """Per-user Google OAuth credential pair."""

    model_config = ConfigDict(extra="forbid")

    access_token: str = Field(min_length=1)
    refresh_token: str
    expires_at: datetime
    scope: str = ""

    @field_validator("expires_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def remaining(self, now: datetime | None = None) -> timedelta:
        """Time left before the access token expires."""
        return self.expires_at - (now or datetime.now(UTC))

    def __repr__(self) -> str:
        return (
            f"OAuthTokens("
            f"access_token=<REDACTED>, "
            f"refresh_token=<REDACTED>, "
            f"expires_at={self.expires_at.isoformat()!r}, "
            f"scope={self.scope!r})"
        )

    __str__ = __repr__


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or DEFAULT_EXPIRES_IN_SECONDS
    return DEFAULT_EXPIRES_IN_SECONDS


def _non_empty_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class GoogleOAuthClient:
    """Authorization-code and refresh-token exchanges against Google's token endpoint."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: tuple[str, ...] | list[str],
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = tuple(scopes)
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=15.0)

    @property
    def scope_string(self) -> str:
        return " ".join(self.scopes)

    def authorization_url(self, state: str) -> str:
        """Build the consent URL; offline access + forced consent guarantee a refresh token."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope_string,
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def _post_token_form(self, data: dict[str, str]) -> httpx.Response:
        return await self._http_client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self._client_secret,
                **data,
            },
            headers={"Accept": "application/json"},
        )

    async def exchange_code(self, code: str) -> OAuthTokens:
        """Exchange an authorization code for a credential pair.

        Raises
        ------
        InvalidCredentialError
            If the exchange fails or the response lacks an access or refresh token.
        """
        try:
            response = await self._post_token_form(
                {
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                }
            )
        except httpx.HTTPError as exc:
            raise InvalidCredentialError(f"Network error during token exchange: {exc}") from exc

        if response.status_code != 200:
            raise InvalidCredentialError(
                f"Token endpoint returned HTTP {response.status_code}: "
                f"{safe_google_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidCredentialError("Token endpoint returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise InvalidCredentialError("Token endpoint returned an unexpected payload shape")

        access_token = _non_empty_str(payload, "access_token")
        refresh_token = _non_empty_str(payload, "refresh_token")
        if access_token is None or refresh_token is None:
            raise InvalidCredentialError("Invalid tokens received from Google")

        expires_in = _coerce_expires_in_seconds(payload.get("expires_in"))
        return OAuthTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
            scope=_non_empty_str(payload, "scope") or self.scope_string,
        )

    async def refresh(self, refresh_token: str, *, scope: str | None = None) -> OAuthTokens:
        """Mint a new access token, carrying *refresh_token* forward unless rotated.

        Raises
        ------
        TokenRefreshError
            If the request fails or the response has no access token.
        """
        try:
            response = await self._post_token_form(
                {"refresh_token": refresh_token, "grant_type": "refresh_token"}
            )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(f"Google OAuth token refresh request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise TokenRefreshError(
                "Google OAuth token refresh failed "
                f"({response.status_code}): {safe_google_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenRefreshError("Google OAuth token endpoint returned invalid JSON") from exc

        access_token = _non_empty_str(payload, "access_token") if isinstance(payload, dict) else None
        if access_token is None:
            raise TokenRefreshError("Google OAuth token response is missing a non-empty access_token")

        expires_in = _coerce_expires_in_seconds(payload.get("expires_in"))
        return OAuthTokens(
            access_token=access_token,
            refresh_token=_non_empty_str(payload, "refresh_token") or refresh_token,
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
            scope=_non_empty_str(payload, "scope") or scope or self.scope_string,
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()


class TokenStore:
    """Persists one credential pair per user and hands out fresh access tokens.

    Parameters
    ----------
    pool:
        asyncpg pool holding ``google_calendar_tokens``.
    oauth_client:
        Performs the refresh-token exchange.
    refresh_margin:
        Tokens with this much life or less left are refreshed on read.
    clock:
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        oauth_client: GoogleOAuthClient,
        *,
        refresh_margin: timedelta = REFRESH_MARGIN,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._pool = pool
        self._oauth = oauth_client
        self._refresh_margin = refresh_margin
        self._clock = clock or (lambda: datetime.now(UTC))
        # Only users with a refresh in progress or queued have an entry.
        self._refresh_locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: Counter[str] = Counter()

    async def store(self, user_id: str, tokens: OAuthTokens) -> None:
        """Upsert *tokens* for *user_id*.

        Raises
        ------
        InvalidCredentialError
            If the credential has no refresh token.
        """
        if not tokens.refresh_token.strip():
            raise InvalidCredentialError("Refusing to store a credential without a refresh token")

        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO google_calendar_tokens
                    (user_id, access_token, refresh_token, token_expiry, scope, updated_at)
                VALUES ($1, $2, $3, $4, $5, now())
                ON CONFLICT (user_id) DO UPDATE SET
                    access_token = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    token_expiry = EXCLUDED.token_expiry,
                    scope = EXCLUDED.scope,
                    updated_at = now()
                """,
                user_id,
                tokens.access_token,
                tokens.refresh_token,
                tokens.expires_at,
                tokens.scope,
            )
        logger.debug("Stored Google Calendar tokens (expires_at=%s)", tokens.expires_at.isoformat())

    async def load(self, user_id: str) -> OAuthTokens | None:
        """Return the stored credential without refreshing it."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT access_token, refresh_token, token_expiry, scope
                FROM google_calendar_tokens
                WHERE user_id = $1
                """,
                user_id,
            )
        if row is None:
            return None
        return OAuthTokens(
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=row["token_expiry"],
            scope=row["scope"] or "",
        )

    def _needs_refresh(self, tokens: OAuthTokens) -> bool:
        return tokens.remaining(self._clock()) <= self._refresh_margin

    @asynccontextmanager
    async def _refresh_lock(self, user_id: str) -> AsyncIterator[None]:
        lock = self._refresh_locks.setdefault(user_id, asyncio.Lock())
        self._lock_holders[user_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[user_id] -= 1
            if self._lock_holders[user_id] == 0:
                del self._lock_holders[user_id]
                del self._refresh_locks[user_id]

    async def get_valid(self, user_id: str, *, force_refresh: bool = False) -> OAuthTokens | None:
        """Return a credential whose access token is good for at least five more minutes.

        Concurrent callers for the same user share a lock and re-read after
        acquiring it, so a burst of requests triggers a single refresh.
        ``force_refresh`` is used after the API rejected the current token;
        it is satisfied by any token rotated since this call started.
        """
        tokens = await self.load(user_id)
        if tokens is None:
            return None
        if not force_refresh and not self._needs_refresh(tokens):
            return tokens

        async with self._refresh_lock(user_id):
            current = await self.load(user_id)
            if current is None:
                return None
            rotated = current.access_token != tokens.access_token
            if not self._needs_refresh(current) and (rotated or not force_refresh):
                return current

            try:
                refreshed = await self._oauth.refresh(current.refresh_token, scope=current.scope)
            except TokenRefreshError as exc:
                logger.warning("Failed to refresh Google Calendar access token: %s", exc)
                return None

            await self.store(user_id, refreshed)
            logger.info(
                "Refreshed Google Calendar access token (expires_at=%s)",
                refreshed.expires_at.isoformat(),
            )
            return refreshed

    async def remove(self, user_id: str) -> None:
        """Delete the stored credential; removing a missing credential is a no-op."""
        async with self._pool.acquire() as conn:
            await conn.execute("DELETE FROM google_calendar_tokens WHERE user_id = $1", user_id)

    async def is_connected(self, user_id: str) -> bool:
        return await self.get_valid(user_id) is not None
