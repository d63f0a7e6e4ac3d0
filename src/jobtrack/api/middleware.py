"""API error handling middleware: consistent error responses.

Registers FastAPI exception handlers that convert domain exceptions into
standardised ``{"error": {"code": "...", "message": "...", "details": ...}}``
JSON responses.

Status code mapping:
- ``InvalidCredentialError`` → 400 Bad Request
- ``ValueError`` → 400 Bad Request
- ``AuthenticationRequiredError`` → 401 Unauthorized
- ``PermissionError`` (OAuth state mismatch) → 401 Unauthorized
- ``GatewayError`` → 502 Bad Gateway
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from jobtrack.api.models import ErrorDetail, ErrorResponse
from jobtrack.calendar_sync.errors import (
    AuthenticationRequiredError,
    GatewayError,
    InvalidCredentialError,
)

logger = logging.getLogger(__name__)


def _error_response(status_code: int, code: str, message: str, details: dict | None = None):
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _handle_invalid_credential(
    request: Request,
    exc: InvalidCredentialError,
) -> JSONResponse:
    logger.warning("Google credential rejected: %s", exc)
    return _error_response(400, "INVALID_CREDENTIAL", str(exc))


async def _handle_authentication_required(
    request: Request,
    exc: AuthenticationRequiredError,
) -> JSONResponse:
    """Return 401 when no usable Google token exists for the user."""
    logger.info("Google Calendar authentication required")
    return _error_response(401, "GOOGLE_AUTH_REQUIRED", str(exc))


async def _handle_permission_error(
    request: Request,
    exc: PermissionError,
) -> JSONResponse:
    logger.warning("Rejected request: %s", exc)
    return _error_response(401, "UNAUTHORIZED", str(exc))


async def _handle_gateway_error(
    request: Request,
    exc: GatewayError,
) -> JSONResponse:
    """Return 502 when Google Calendar rejects or fails a call."""
    logger.warning("Google Calendar API error: %s", exc)
    return _error_response(
        502,
        "GOOGLE_API_ERROR",
        exc.message,
        details={"status_code": exc.status_code},
    )


async def _handle_value_error(
    request: Request,
    exc: ValueError,
) -> JSONResponse:
    """Return 400 for validation / value errors."""
    logger.info("Validation error: %s", exc)
    return _error_response(400, "VALIDATION_ERROR", str(exc))


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500.

    Sits above the Starlette exception handler layer so that exceptions not
    covered by ``add_exception_handler`` still produce the error envelope.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            return _error_response(500, "INTERNAL_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application."""
    app.add_exception_handler(InvalidCredentialError, _handle_invalid_credential)  # type: ignore[arg-type]
    app.add_exception_handler(AuthenticationRequiredError, _handle_authentication_required)  # type: ignore[arg-type]
    app.add_exception_handler(PermissionError, _handle_permission_error)  # type: ignore[arg-type]
    app.add_exception_handler(GatewayError, _handle_gateway_error)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, _handle_value_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
