"""API error handling and request-context middleware.

Registers FastAPI exception handlers that convert domain exceptions into
``{"error": "...", "code": "..."}`` JSON responses.

Status code mapping:
- ``InvalidRequestError`` (and subclasses) → 400 Bad Request
- ``Unauthenticated`` / ``RefreshFailed`` / ``CalendarUnauthorized`` → 401
- ``RateLimited`` → 429 Too Many Requests
- ``ProviderFailure`` → 500 Internal Server Error (generic message)
- ``CalendarFetchError`` → 502 Bad Gateway
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging
import re
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from planner.api.models import ErrorResponse
from planner.core.logging import set_request_context
from planner.credentials import RefreshFailed, Unauthenticated
from planner.gateways.calendar import CalendarFetchError, CalendarUnauthorized
from planner.gateways.model import ProviderFailure, RateLimited
from planner.validation import InvalidRequestError

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_PATTERN = re.compile(r"[A-Za-z0-9-]{1,64}")


def _error(status_code: int, code: str, message: str, details: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=message, code=code, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def _handle_invalid_request(request: Request, exc: InvalidRequestError) -> JSONResponse:
    """Return 400 for request validation failures."""
    logger.info("Validation error on %s: %s (%s)", request.url.path, exc, exc.code)
    return _error(400, exc.code, str(exc))


async def _handle_unauthenticated(request: Request, exc: Unauthenticated) -> JSONResponse:
    """Return 401 when the session carries no credential."""
    logger.info("Unauthenticated request to %s", request.url.path)
    return _error(401, "UNAUTHENTICATED", "Unauthorized: sign-in required")


async def _handle_refresh_failed(request: Request, exc: RefreshFailed) -> JSONResponse:
    """Return 401 when the credential can no longer be refreshed."""
    logger.info("Re-authentication required for %s: %s", request.url.path, exc)
    return _error(401, "REAUTH_REQUIRED", "Your session has expired. Please sign in again.")


async def _handle_calendar_unauthorized(
    request: Request,
    exc: CalendarUnauthorized,
) -> JSONResponse:
    """Relay Google's 401 so the client forces re-authentication."""
    return _error(401, "TOKEN_EXPIRED", "Token expired", details=exc.message)


async def _handle_rate_limited(request: Request, exc: RateLimited) -> JSONResponse:
    """Return 429 with a retry-later message."""
    return _error(429, "RATE_LIMITED", str(exc))


async def _handle_provider_failure(request: Request, exc: ProviderFailure) -> JSONResponse:
    """Return 500 with a generic message; detail was logged by the gateway."""
    return _error(500, "PROVIDER_FAILURE", str(exc))


async def _handle_calendar_fetch_error(
    request: Request,
    exc: CalendarFetchError,
) -> JSONResponse:
    """Return 502 when the calendar provider fails or answers unexpectedly."""
    return _error(502, "CALENDAR_FETCH_FAILED", exc.message)


def _client_request_id(request: Request) -> str | None:
    """Return the caller's X-Request-ID if it is short and plain, else None."""
    candidate = request.headers.get(REQUEST_ID_HEADER)
    if candidate and _REQUEST_ID_PATTERN.fullmatch(candidate):
        return candidate
    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign each request an id, expose it to log records and echo it back."""

    async def dispatch(self, request: Request, call_next):
        request_id = _client_request_id(request) or uuid.uuid4().hex
        set_request_context(request_id)
        try:
            response = await call_next(request)
        finally:
            set_request_context(None)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500.

    This sits above the Starlette exception handler layer, so exceptions not
    caught by ``add_exception_handler`` are converted to the standard error
    body rather than bubbling up as raw 500s. It sits below the CORS layer,
    so those 500s still carry ``Access-Control-Allow-Origin``.
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
            return _error(500, "INTERNAL_ERROR", "An error occurred while processing your request.")


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers and context middleware to the application.

    Domain-specific exceptions are registered via ``add_exception_handler``.
    The generic catch-all is an ASGI middleware that intercepts any unhandled
    exception before Starlette's default ``ServerErrorMiddleware`` can
    convert it to a plain-text 500. Call this before adding the CORS
    middleware so CORS wraps both layers added here.
    """
    app.add_exception_handler(InvalidRequestError, _handle_invalid_request)  # type: ignore[arg-type]
    app.add_exception_handler(Unauthenticated, _handle_unauthenticated)  # type: ignore[arg-type]
    app.add_exception_handler(RefreshFailed, _handle_refresh_failed)  # type: ignore[arg-type]
    app.add_exception_handler(CalendarUnauthorized, _handle_calendar_unauthorized)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimited, _handle_rate_limited)  # type: ignore[arg-type]
    app.add_exception_handler(ProviderFailure, _handle_provider_failure)  # type: ignore[arg-type]
    app.add_exception_handler(CalendarFetchError, _handle_calendar_fetch_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
    app.add_middleware(RequestContextMiddleware)
