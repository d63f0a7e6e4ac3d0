"""Connecting and disconnecting a user's Google account."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from jobtrack.calendar_sync.settings import DEFAULT_CALENDAR_ID, SyncSettings
from jobtrack.core.logging import set_user_context

if TYPE_CHECKING:
    from jobtrack.calendar_sync.gateway import GoogleCalendarGateway
    from jobtrack.calendar_sync.mappings import EventMappingLedger
    from jobtrack.calendar_sync.settings import SyncSettingsRegistry
    from jobtrack.calendar_sync.tokens import GoogleOAuthClient, TokenStore

logger = logging.getLogger(__name__)


class CalendarConnectionService:
    def __init__(
        self,
        oauth_client: GoogleOAuthClient,
        token_store: TokenStore,
        gateway: GoogleCalendarGateway,
        settings: SyncSettingsRegistry,
        mappings: EventMappingLedger,
    ) -> None:
        self._oauth = oauth_client
        self._token_store = token_store
        self._gateway = gateway
        self._settings = settings
        self._mappings = mappings

    def authorization_url(self, user_id: str) -> str:
        """Consent URL whose ``state`` round-trips the user id."""
        return self._oauth.authorization_url(state=user_id)

    async def complete(self, user_id: str, code: str, state: str | None) -> SyncSettings:
        """Finish the OAuth flow and enable sync with default settings.

        Raises
        ------
        PermissionError
            If *state* does not match the authenticated user.
        InvalidCredentialError
            If the code exchange does not yield a usable credential pair.
        """
        set_user_context(user_id)
        if state != user_id:
            raise PermissionError("OAuth state does not match the authenticated user")

        tokens = await self._oauth.exchange_code(code)
        await self._token_store.store(user_id, tokens)

        primary = await self._gateway.get_primary_calendar(user_id)
        calendar_id = primary.id if primary is not None else DEFAULT_CALENDAR_ID
        settings = await self._settings.create_default(user_id, calendar_id)
        logger.info("Google Calendar connected (calendar_id=%s)", calendar_id)
        return settings

    async def disconnect(self, user_id: str) -> None:
        """Forget the credential, switch sync off, and purge mappings."""
        set_user_context(user_id)
        await self._token_store.remove(user_id)
        await self._settings.disable(user_id)
        await self._mappings.delete_for_user(user_id)
        logger.info("Google Calendar disconnected")

    async def status(self, user_id: str) -> tuple[bool, SyncSettings | None]:
        connected = await self._token_store.is_connected(user_id)
        settings = await self._settings.get(user_id) if connected else None
        return connected, settings
