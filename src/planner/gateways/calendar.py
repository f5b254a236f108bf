"""Google Calendar gateway: list upcoming events and batch-create events.

Requests are bearer-authenticated with the caller's session credential. The
gateway never refreshes tokens itself; a 401 from Google is surfaced as
:class:`CalendarUnauthorized` so the HTTP layer can force re-authentication.

Batch creation is a sequential fold: events are submitted one at a time in
input order and each outcome is appended to an immutable
:class:`BatchResult`. One event failing never aborts the rest of the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Literal
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from planner.credentials import SessionCredential
from planner.validation import EventTime, EventWrite, ValidEventBatch

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_CALENDAR_ID = "primary"
UPCOMING_EVENTS_LIMIT = 10
EVENTS_LIST_KIND = "calendar#events"


class CalendarError(Exception):
    """Base error raised by the calendar gateway."""


class CalendarUnauthorized(CalendarError):
    """Raised when Google rejects the access token (HTTP 401)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Google Calendar rejected the access token: {message}")


class CalendarFetchError(CalendarError):
    """Raised when listing events fails or returns an unexpected payload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class CalendarEventRead(BaseModel):
    """An event as read from the provider."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    summary: str = ""
    description: str | None = None
    start: EventTime
    end: EventTime
    link: str | None = Field(default=None, validation_alias="htmlLink")


class EventWriteResult(BaseModel):
    """Outcome of creating one event in a batch."""

    summary: str
    status: Literal["success", "error"]
    data: dict[str, Any] | None = None
    error: str | None = None


class BatchResult(BaseModel):
    """Accumulated outcome of a batch create, in input order."""

    model_config = ConfigDict(frozen=True)

    success_count: int = 0
    results: tuple[EventWriteResult, ...] = ()

    @property
    def success(self) -> bool:
        return self.success_count > 0

    @property
    def failure_count(self) -> int:
        return len(self.results) - self.success_count

    def append(self, result: EventWriteResult) -> BatchResult:
        return BatchResult(
            success_count=self.success_count + (result.status == "success"),
            results=(*self.results, result),
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return " ".join(error_payload.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


def _created_event_summary(payload: dict[str, Any]) -> dict[str, Any]:
    return {
        key: payload[key]
        for key in ("id", "htmlLink", "status", "summary", "start", "end")
        if key in payload
    }


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class CalendarGateway:
    """Thin wrappers around Google Calendar ``events.list`` and ``events.insert``."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        calendar_id: str = DEFAULT_CALENDAR_ID,
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._http_client = http_client
        self._events_url = f"{base_url}/calendars/{quote(calendar_id, safe='')}/events"
        self._clock = clock

    @staticmethod
    def _headers(credential: SessionCredential, **extra: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {credential.access_token}", **extra}

    async def list_upcoming(self, credential: SessionCredential) -> list[CalendarEventRead]:
        """Return up to 10 upcoming events, recurring instances expanded, by start time.

        Raises
        ------
        CalendarUnauthorized
            If Google answers 401.
        CalendarFetchError
            For any other failure or a structurally unexpected payload.
        """
        params = {
            "timeMin": _google_rfc3339(self._clock()),
            "maxResults": UPCOMING_EVENTS_LIMIT,
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        try:
            response = await self._http_client.get(
                self._events_url,
                params=params,
                headers=self._headers(credential, **{"Cache-Control": "no-cache"}),
            )
        except httpx.HTTPError as exc:
            logger.warning("Google Calendar list request failed: %s", exc)
            raise CalendarFetchError("Failed to fetch calendar") from exc

        if response.status_code == 401:
            message = _safe_google_error_message(response)
            logger.info("Google Calendar rejected access token: %s", message)
            raise CalendarUnauthorized(message)

        if response.status_code < 200 or response.status_code >= 300:
            message = _safe_google_error_message(response)
            logger.error("Google Calendar API error (%d): %s", response.status_code, message)
            raise CalendarFetchError(
                "Failed to fetch calendar", status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("Google Calendar returned invalid JSON for events.list")
            raise CalendarFetchError("Invalid data format received from Google") from exc

        if (
            not isinstance(payload, dict)
            or payload.get("kind") != EVENTS_LIST_KIND
            or not isinstance(payload.get("items"), list)
        ):
            logger.error("Google Calendar events.list response has an unexpected shape")
            raise CalendarFetchError("Invalid data format received from Google")

        events: list[CalendarEventRead] = []
        for item in payload["items"]:
            try:
                events.append(CalendarEventRead.model_validate(item))
            except ValidationError as exc:
                logger.warning(
                    "Skipping unparseable calendar event (id=%s): %s",
                    item.get("id") if isinstance(item, dict) else None,
                    exc.errors()[0]["msg"],
                )
        return events

    async def create_event(
        self,
        credential: SessionCredential,
        event: EventWrite,
    ) -> EventWriteResult:
        """Create one event; failures are captured in the result, never raised."""
        try:
            response = await self._http_client.post(
                self._events_url,
                json=event.to_google_body(),
                headers=self._headers(credential),
            )
        except httpx.HTTPError as exc:
            logger.warning("Google Calendar create request failed for %r: %s", event.summary, exc)
            return EventWriteResult(
                summary=event.summary,
                status="error",
                error="Network error while contacting Google Calendar",
            )

        if response.status_code < 200 or response.status_code >= 300:
            message = _safe_google_error_message(response)
            logger.warning(
                "Google Calendar rejected event %r (%d): %s",
                event.summary,
                response.status_code,
                message,
            )
            return EventWriteResult(summary=event.summary, status="error", error=message)

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            return EventWriteResult(
                summary=event.summary,
                status="error",
                error="Google Calendar returned an unexpected response",
            )
        return EventWriteResult(
            summary=event.summary,
            status="success",
            data=_created_event_summary(payload),
        )

    async def create_events(
        self,
        credential: SessionCredential,
        batch: ValidEventBatch,
    ) -> BatchResult:
        """Create every event in *batch* sequentially, folding outcomes into a BatchResult."""
        result = BatchResult()
        for event in batch.events:
            result = result.append(await self.create_event(credential, event))

        logger.info(
            "Calendar batch create finished (created=%d, failed=%d)",
            result.success_count,
            result.failure_count,
        )
        return result
