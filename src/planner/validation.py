"""Inbound request validation for the chat and calendar-write endpoints.

Raw request bodies are parsed and checked here before any external API is
called. Failures raise a subclass of :class:`InvalidRequestError` carrying a
stable reason ``code``; success returns a typed pydantic model.

Chat rules, applied in order:

1. The body must decode to a JSON object (``MalformedInput``).
2. ``message`` must be non-empty after trimming (``EmptyMessage``).
3. ``message`` may hold at most 2000 characters (``MessageTooLong``).
4. ``history`` must be a list of ``{role, content}`` turns (``InvalidHistory``).
5. ``schedule`` is checked permissively and dropped when malformed.

Calendar-write rules: a non-empty ``events`` list of at most 20 items
(``BatchTooLarge``), each with a summary and a start/end that resolve to
either a date-time or an all-day date (``InvalidEvent``).
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

MAX_MESSAGE_LENGTH = 2000
MAX_BATCH_SIZE = 20
VALID_COLOR_IDS = frozenset(str(n) for n in range(1, 12))


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class InvalidRequestError(ValueError):
    """Base class for request validation failures (HTTP 400)."""

    code = "INVALID_REQUEST"


class MalformedInput(InvalidRequestError):
    code = "MALFORMED_INPUT"


class EmptyMessage(InvalidRequestError):
    code = "EMPTY_MESSAGE"


class MessageTooLong(InvalidRequestError):
    code = "MESSAGE_TOO_LONG"


class InvalidHistory(InvalidRequestError):
    code = "INVALID_HISTORY"


class BatchTooLarge(InvalidRequestError):
    code = "BATCH_TOO_LARGE"


class InvalidEvent(InvalidRequestError):
    code = "INVALID_EVENT"


# ---------------------------------------------------------------------------
# Chat models
# ---------------------------------------------------------------------------


class ChatTurn(BaseModel):
    """One prior message in the conversation, as held by the client."""

    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant"]
    content: str = Field(strict=True)


class ScheduleItem(BaseModel):
    """An existing calendar entry the client passes along as planning context."""

    model_config = ConfigDict(extra="allow")

    summary: str = Field(strict=True)


class ValidChatRequest(BaseModel):
    message: str
    history: list[ChatTurn] = Field(default_factory=list)
    schedule: list[ScheduleItem] | None = None


_HISTORY_ADAPTER = TypeAdapter(list[ChatTurn])


# ---------------------------------------------------------------------------
# Calendar write models
# ---------------------------------------------------------------------------


def _parse_iso_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    return datetime.fromisoformat(normalized)


class EventTime(BaseModel):
    """A Google Calendar event boundary: either ``dateTime`` or all-day ``date``."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    date_time: str | None = Field(default=None, alias="dateTime")
    all_day: str | None = Field(default=None, alias="date")
    time_zone: str | None = Field(default=None, alias="timeZone")

    @model_validator(mode="after")
    def _exactly_one_form(self) -> EventTime:
        if (self.date_time is None) == (self.all_day is None):
            raise ValueError("must carry exactly one of 'dateTime' or 'date'")
        if self.date_time is not None:
            try:
                _parse_iso_datetime(self.date_time)
            except ValueError as exc:
                raise ValueError(f"'dateTime' is not ISO-8601: {self.date_time!r}") from exc
        if self.all_day is not None:
            try:
                date.fromisoformat(self.all_day)
            except ValueError as exc:
                raise ValueError(f"'date' is not YYYY-MM-DD: {self.all_day!r}") from exc
        return self

    @property
    def is_all_day(self) -> bool:
        return self.all_day is not None

    def resolve(self) -> date | datetime:
        if self.all_day is not None:
            return date.fromisoformat(self.all_day)
        assert self.date_time is not None
        return _parse_iso_datetime(self.date_time)


class EventWrite(BaseModel):
    """A calendar event to create, as proposed by the model."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    summary: str = Field(strict=True)
    description: str | None = Field(default=None, strict=True)
    start: EventTime
    end: EventTime
    color_id: str | None = Field(default=None, alias="colorId")

    @field_validator("summary")
    @classmethod
    def _summary_non_empty(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("summary must be a non-empty string")
        return normalized

    @field_validator("color_id", mode="before")
    @classmethod
    def _normalize_color(cls, value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int | str):
            raise ValueError("colorId must be a string or integer")
        normalized = str(value).strip()
        if normalized not in VALID_COLOR_IDS:
            raise ValueError(f"colorId must be between 1 and 11, got {normalized!r}")
        return normalized

    @model_validator(mode="after")
    def _consistent_boundaries(self) -> EventWrite:
        if self.start.is_all_day != self.end.is_all_day:
            raise ValueError("start and end must both be all-day dates or both date-times")
        start, end = self.start.resolve(), self.end.resolve()
        comparable = not isinstance(start, datetime) or (
            (start.tzinfo is None) == (end.tzinfo is None)  # type: ignore[union-attr]
        )
        if comparable and end < start:  # type: ignore[operator]
            raise ValueError("end must not be before start")
        return self

    def to_google_body(self) -> dict[str, Any]:
        """Serialize to the Google Calendar ``events.insert`` request body."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ValidEventBatch(BaseModel):
    events: list[EventWrite]


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def _decode_object(raw: Any) -> dict[str, Any]:
    if isinstance(raw, bytes | bytearray | str):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedInput("Request body must be valid JSON") from exc
    if not isinstance(raw, dict):
        raise MalformedInput("Request body must be a JSON object")
    return raw


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error["loc"])
    message = error["msg"].removeprefix("Value error, ")
    return f"{location}: {message}" if location else message


def _validate_schedule(raw: Any) -> list[ScheduleItem] | None:
    if not isinstance(raw, list):
        return None
    items: list[ScheduleItem] = []
    for entry in raw:
        try:
            items.append(ScheduleItem.model_validate(entry))
        except ValidationError:
            continue
    return items or None


def validate_chat_request(raw: Any) -> ValidChatRequest:
    """Validate a chat-turn request body.

    Parameters
    ----------
    raw:
        Raw body bytes/str, or an already-decoded JSON value.

    Raises
    ------
    InvalidRequestError
        One of ``MalformedInput``, ``EmptyMessage``, ``MessageTooLong`` or
        ``InvalidHistory``.
    """
    payload = _decode_object(raw)

    message = payload.get("message")
    if message is None:
        raise EmptyMessage("Message is empty")
    if not isinstance(message, str):
        raise MalformedInput("'message' must be a string")
    if not message.strip():
        raise EmptyMessage("Message is empty")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise MessageTooLong(f"Message exceeds {MAX_MESSAGE_LENGTH} characters")

    history_raw = payload.get("history")
    if history_raw is None:
        history_raw = []
    if not isinstance(history_raw, list):
        raise InvalidHistory("'history' must be a list of turns")
    try:
        history = _HISTORY_ADAPTER.validate_python(history_raw)
    except ValidationError as exc:
        raise InvalidHistory(f"Invalid history turn at {_first_error(exc)}") from exc

    return ValidChatRequest(
        message=message.strip(),
        history=history,
        schedule=_validate_schedule(payload.get("schedule")),
    )


def validate_calendar_write_request(raw: Any) -> ValidEventBatch:
    """Validate a batch calendar-write request body.

    Raises
    ------
    InvalidRequestError
        ``MalformedInput``, ``BatchTooLarge`` or ``InvalidEvent``.
    """
    payload = _decode_object(raw)

    events_raw = payload.get("events")
    if not isinstance(events_raw, list) or not events_raw:
        raise MalformedInput("'events' must be a non-empty list")
    if len(events_raw) > MAX_BATCH_SIZE:
        raise BatchTooLarge(
            f"At most {MAX_BATCH_SIZE} events can be created at once, got {len(events_raw)}"
        )

    events: list[EventWrite] = []
    for index, entry in enumerate(events_raw):
        if not isinstance(entry, dict):
            raise InvalidEvent(f"events[{index}] must be an object")
        try:
            events.append(EventWrite.model_validate(entry))
        except ValidationError as exc:
            raise InvalidEvent(f"events[{index}] {_first_error(exc)}") from exc

    return ValidEventBatch(events=events)
