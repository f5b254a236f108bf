"""Tests for planner.gateways.calendar: Google Calendar list and batch create.

HTTP traffic is served by the ``google`` MockTransport stub from conftest.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from conftest import google_event
from planner.credentials import SessionCredential
from planner.gateways.calendar import (
    BatchResult,
    CalendarFetchError,
    CalendarGateway,
    CalendarUnauthorized,
    EventWriteResult,
)
from planner.validation import validate_calendar_write_request

pytestmark = pytest.mark.unit

NOW = datetime(2026, 10, 17, 0, 30, tzinfo=UTC)


@pytest.fixture()
def credential() -> SessionCredential:
    return SessionCredential(access_token="ya29.token", expires_at=NOW + timedelta(hours=1))


@pytest.fixture()
def gateway(http_client) -> CalendarGateway:
    return CalendarGateway(http_client, clock=lambda: NOW)


def _batch(count: int):
    return validate_calendar_write_request(
        {
            "events": [
                {
                    "summary": f"Block {i}",
                    "start": {"dateTime": f"2026-10-18T{9 + i:02d}:00:00+09:00"},
                    "end": {"dateTime": f"2026-10-18T{9 + i:02d}:30:00+09:00"},
                }
                for i in range(count)
            ]
        }
    )


# ---------------------------------------------------------------------------
# list_upcoming
# ---------------------------------------------------------------------------


class TestListUpcoming:
    async def test_request_shape(self, gateway, credential, google):
        await gateway.list_upcoming(credential)

        request = google.calendar_requests[0]
        assert request.url.path == "/calendar/v3/calendars/primary/events"
        assert request.url.params["timeMin"] == "2026-10-17T00:30:00Z"
        assert request.url.params["maxResults"] == "10"
        assert request.url.params["singleEvents"] == "true"
        assert request.url.params["orderBy"] == "startTime"
        assert request.headers["Authorization"] == "Bearer ya29.token"
        assert request.headers["Cache-Control"] == "no-cache"

    async def test_parses_events(self, gateway, credential, google):
        google.list_responses.append(
            httpx.Response(
                200,
                json={
                    "kind": "calendar#events",
                    "items": [
                        google_event(event_id="a", summary="Standup"),
                        {
                            "id": "b",
                            "summary": "Holiday",
                            "start": {"date": "2026-10-20"},
                            "end": {"date": "2026-10-21"},
                        },
                    ],
                },
            )
        )

        events = await gateway.list_upcoming(credential)

        assert [e.id for e in events] == ["a", "b"]
        assert events[0].summary == "Standup"
        assert events[0].link == "https://calendar.google.com/event?eid=a"
        assert events[1].start.is_all_day

    async def test_untitled_event_gets_empty_summary(self, gateway, credential, google):
        item = google_event()
        del item["summary"]
        google.list_responses.append(
            httpx.Response(200, json={"kind": "calendar#events", "items": [item]})
        )
        assert (await gateway.list_upcoming(credential))[0].summary == ""

    async def test_unparseable_items_skipped(self, gateway, credential, google):
        google.list_responses.append(
            httpx.Response(
                200,
                json={
                    "kind": "calendar#events",
                    "items": [google_event(event_id="ok"), {"id": "broken"}, "junk"],
                },
            )
        )
        events = await gateway.list_upcoming(credential)
        assert [e.id for e in events] == ["ok"]

    async def test_empty_calendar(self, gateway, credential, google):
        google.list_responses.append(
            httpx.Response(200, json={"kind": "calendar#events", "items": []})
        )
        assert await gateway.list_upcoming(credential) == []

    async def test_401_raises_unauthorized(self, gateway, credential, google):
        google.list_responses.append(
            httpx.Response(401, json={"error": {"code": 401, "message": "Invalid Credentials"}})
        )
        with pytest.raises(CalendarUnauthorized) as exc_info:
            await gateway.list_upcoming(credential)
        assert exc_info.value.message == "Invalid Credentials"

    @pytest.mark.parametrize("status", [403, 404, 500, 503])
    async def test_other_status_raises_fetch_error(self, gateway, credential, google, status):
        google.list_responses.append(httpx.Response(status, json={"error": "nope"}))
        with pytest.raises(CalendarFetchError) as exc_info:
            await gateway.list_upcoming(credential)
        assert exc_info.value.status_code == status
        assert exc_info.value.message == "Failed to fetch calendar"

    async def test_transport_error_raises_fetch_error(self, gateway, credential, google):
        google.list_responses.append(httpx.ConnectError("dns failure"))
        with pytest.raises(CalendarFetchError, match="Failed to fetch calendar"):
            await gateway.list_upcoming(credential)

    @pytest.mark.parametrize(
        "payload",
        [
            {"items": []},
            {"kind": "calendar#event", "items": []},
            {"kind": "calendar#events", "items": "nope"},
            ["not", "an", "object"],
        ],
    )
    async def test_unexpected_shape_raises(self, gateway, credential, google, payload):
        google.list_responses.append(httpx.Response(200, json=payload))
        with pytest.raises(CalendarFetchError, match="Invalid data format"):
            await gateway.list_upcoming(credential)

    async def test_invalid_json_raises(self, gateway, credential, google):
        google.list_responses.append(httpx.Response(200, text="<html>"))
        with pytest.raises(CalendarFetchError, match="Invalid data format"):
            await gateway.list_upcoming(credential)


# ---------------------------------------------------------------------------
# create_event / create_events
# ---------------------------------------------------------------------------


class TestCreateEvents:
    async def test_single_event_body(self, gateway, credential, google):
        batch = validate_calendar_write_request(
            {
                "events": [
                    {
                        "summary": "Focus",
                        "description": "Why: ship it",
                        "start": {"dateTime": "2026-10-18T09:00:00+09:00"},
                        "end": {"dateTime": "2026-10-18T10:00:00+09:00"},
                        "colorId": 11,
                    }
                ]
            }
        )

        result = await gateway.create_event(credential, batch.events[0])

        request = google.calendar_requests[0]
        assert request.method == "POST"
        assert request.headers["Authorization"] == "Bearer ya29.token"
        assert json.loads(request.content) == {
            "summary": "Focus",
            "description": "Why: ship it",
            "start": {"dateTime": "2026-10-18T09:00:00+09:00"},
            "end": {"dateTime": "2026-10-18T10:00:00+09:00"},
            "colorId": "11",
        }
        assert result.status == "success"
        assert result.data["id"] == "created-1"

    async def test_partial_failure_keeps_going(self, gateway, credential, google):
        failing = {2, 5, 8}
        for i in range(10):
            if i in failing:
                google.create_responses.append(
                    httpx.Response(400, json={"error": {"message": f"Bad event {i}"}})
                )
            else:
                google.create_responses.append(
                    httpx.Response(200, json={"id": f"id-{i}", "status": "confirmed"})
                )

        result = await gateway.create_events(credential, _batch(10))

        assert len(google.calendar_requests) == 10
        assert result.success_count == 7
        assert result.failure_count == 3
        assert result.success is True
        assert [r.summary for r in result.results] == [f"Block {i}" for i in range(10)]
        for i, item in enumerate(result.results):
            if i in failing:
                assert item.status == "error"
                assert item.error == f"Bad event {i}"
            else:
                assert item.status == "success"
                assert item.data == {"id": f"id-{i}", "status": "confirmed"}

    async def test_transport_error_is_captured(self, gateway, credential, google):
        google.create_responses.extend(
            [httpx.ConnectError("reset"), httpx.Response(200, json={"id": "x"})]
        )

        result = await gateway.create_events(credential, _batch(2))

        assert [r.status for r in result.results] == ["error", "success"]
        assert result.results[0].error == "Network error while contacting Google Calendar"

    async def test_all_failed(self, gateway, credential, google):
        google.create_responses.extend(
            [httpx.Response(500, text=""), httpx.Response(500, text="")]
        )

        result = await gateway.create_events(credential, _batch(2))

        assert result.success is False
        assert result.success_count == 0
        assert result.results[0].error == "Request failed without an error payload"

    async def test_non_object_response_is_error(self, gateway, credential, google):
        google.create_responses.append(httpx.Response(200, json=[1, 2]))
        result = await gateway.create_events(credential, _batch(1))
        assert result.results[0].status == "error"


class TestBatchResult:
    def test_append_returns_new_instance(self):
        empty = BatchResult()
        ok = EventWriteResult(summary="a", status="success", data={"id": "1"})

        appended = empty.append(ok)

        assert empty.results == ()
        assert appended.results == (ok,)
        assert appended.success_count == 1

    def test_counts(self):
        result = BatchResult()
        for status in ("success", "error", "success"):
            result = result.append(EventWriteResult(summary="x", status=status))
        assert (result.success_count, result.failure_count, result.success) == (2, 1, True)
