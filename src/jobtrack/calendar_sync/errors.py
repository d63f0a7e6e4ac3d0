"""Error taxonomy for Google Calendar synchronization."""

from __future__ import annotations

import re

import httpx


class CalendarSyncError(RuntimeError):
    """Base error raised by the calendar sync components."""


class InvalidCredentialError(CalendarSyncError):
    """Raised when an OAuth response is malformed or lacks a refresh token."""


class TokenRefreshError(CalendarSyncError):
    """Raised when the refresh-token exchange fails (revoked, network, bad payload)."""


class AuthenticationRequiredError(CalendarSyncError):
    """Raised when no valid access token can be obtained for a user."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__("Google Calendar authentication required; reconnect your account")


class GatewayError(CalendarSyncError):
    """Raised when a Google Calendar API call fails for a reason other than not-found.

    ``status_code`` is 0 for transport-level failures.
    """

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Google Calendar API request failed ({status_code}): {message}")


class NotFoundError(GatewayError):
    """Raised when the remote event no longer exists (HTTP 404/410)."""


# ---------------------------------------------------------------------------
# Provider error sanitization
# ---------------------------------------------------------------------------


def redact_credential_values(message: str) -> str:
    """Redact token and client-secret values from an error message."""
    redacted = message
    # key=value style pairs
    redacted = re.sub(
        r"(?i)\b(client_secret|refresh_token|access_token|token)\s*=\s*([^\s,;]+)",
        r"\1=[REDACTED]",
        redacted,
    )
    # JSON/Python dict style quoted values
    redacted = re.sub(
        r"""(?i)(['"]?(?:client_secret|refresh_token|access_token|token)['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    # Bearer headers echoed back by proxies
    redacted = re.sub(r"(?i)\bBearer\s+[A-Za-z0-9._~+/=-]+", "Bearer [REDACTED]", redacted)
    return redacted


def safe_google_error_message(response: httpx.Response) -> str:
    """Extract a short, credential-free error message from a Google response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    message: str | None = None
    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            candidate = error_payload.get("message")
            if isinstance(candidate, str) and candidate.strip():
                message = candidate
        elif isinstance(error_payload, str) and error_payload.strip():
            description = payload.get("error_description")
            message = (
                f"{error_payload}: {description}"
                if isinstance(description, str) and description.strip()
                else error_payload
            )

    if message is None:
        message = response.text.strip() or "Request failed without an error payload"

    return " ".join(redact_credential_values(message).split())[:200]
