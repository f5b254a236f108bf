"""Shared fixtures for the planner test suite.

Every external API is faked:

- Google OAuth + Calendar HTTP calls go through :class:`GoogleStub`, an
  ``httpx.MockTransport`` handler that records requests and replays queued
  responses.
- The Gemini client is replaced by :class:`FakeModelClient`, which mimics the
  ``client.aio.chats.create(...).send_message(...)`` surface of google-genai.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
from fastapi import FastAPI

from planner.api.app import create_app
from planner.api.deps import get_session_id
from planner.config import PlannerConfig, load_config
from planner.credentials import SessionCredential
from planner.session_store import InMemorySessionStore

TEST_ENV = {
    "GOOGLE_CLIENT_ID": "test-client-id.apps.googleusercontent.com",
    "GOOGLE_CLIENT_SECRET": "test-client-secret",
    "GOOGLE_API_KEY": "test-api-key",
    "SESSION_SECRET": "test-session-secret",
    "GOOGLE_OAUTH_REDIRECT_URI": "http://test/api/auth/google/callback",
}

SESSION_ID = "session-under-test"

DEFAULT_REPLY = "What exactly do you want to do, and why does it matter to you?"


# ---------------------------------------------------------------------------
# Google HTTP stub
# ---------------------------------------------------------------------------


def google_event(
    *,
    event_id: str = "evt-1",
    summary: str = "Deep work",
    start: str = "2026-10-18T09:00:00+09:00",
    end: str = "2026-10-18T10:00:00+09:00",
    **extra: Any,
) -> dict[str, Any]:
    """Build a minimal Google Calendar event resource."""
    return {
        "id": event_id,
        "summary": summary,
        "start": {"dateTime": start},
        "end": {"dateTime": end},
        "htmlLink": f"https://calendar.google.com/event?eid={event_id}",
        **extra,
    }


class GoogleStub:
    """Routes requests for the Google token and Calendar endpoints."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_responses: list[httpx.Response | Exception] = []
        self.list_responses: list[httpx.Response | Exception] = []
        self.create_responses: list[httpx.Response | Exception] = []
        self._created = 0

    # -- recorded traffic --------------------------------------------------

    def requests_to(self, host: str, method: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.url.host == host and (method is None or r.method == method)
        ]

    @property
    def token_requests(self) -> list[httpx.Request]:
        return self.requests_to("oauth2.googleapis.com")

    @property
    def calendar_requests(self) -> list[httpx.Request]:
        return self.requests_to("www.googleapis.com")

    # -- transport ---------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "oauth2.googleapis.com":
            return self._next(self.token_responses, request, self._default_token)
        if request.method == "GET":
            return self._next(self.list_responses, request, self._default_list)
        return self._next(self.create_responses, request, self._default_create)

    @staticmethod
    def _next(queue, request, default):
        if not queue:
            return default(request)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @staticmethod
    def _default_token(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "access_token": "ya29.fresh-access-token",
                "expires_in": 3599,
                "scope": "openid https://www.googleapis.com/auth/calendar",
                "token_type": "Bearer",
            },
        )

    @staticmethod
    def _default_list(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"kind": "calendar#events", "items": [google_event()]})

    def _default_create(self, request: httpx.Request) -> httpx.Response:
        import json

        self._created += 1
        body = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                **body,
                "id": f"created-{self._created}",
                "status": "confirmed",
                "htmlLink": f"https://calendar.google.com/event?eid=created-{self._created}",
            },
        )


@pytest.fixture()
def google() -> GoogleStub:
    return GoogleStub()


@pytest.fixture()
async def http_client(google: GoogleStub) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(google.handler)) as client:
        yield client


# ---------------------------------------------------------------------------
# Fake Gemini client
# ---------------------------------------------------------------------------


class FakeChat:
    def __init__(self, owner: FakeModelClient) -> None:
        self._owner = owner

    async def send_message(self, message: str) -> SimpleNamespace:
        self._owner.sent.append(message)
        if self._owner.error is not None:
            raise self._owner.error
        return SimpleNamespace(text=self._owner.reply)


class FakeModelClient:
    """Stands in for ``google.genai.Client`` in tests."""

    def __init__(self, reply: str | None = DEFAULT_REPLY) -> None:
        self.reply = reply
        self.error: Exception | None = None
        self.created: list[dict[str, Any]] = []
        self.sent: list[str] = []
        self.aio = SimpleNamespace(chats=SimpleNamespace(create=self._create))

    def _create(self, *, model: str, history: list[Any]) -> FakeChat:
        self.created.append({"model": model, "history": history})
        return FakeChat(self)

    @property
    def calls(self) -> int:
        return len(self.sent)


@pytest.fixture()
def model_client() -> FakeModelClient:
    return FakeModelClient()


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest.fixture()
def config() -> PlannerConfig:
    return load_config(TEST_ENV)


@pytest.fixture()
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture()
def app(
    config: PlannerConfig,
    http_client: httpx.AsyncClient,
    model_client: FakeModelClient,
    session_store: InMemorySessionStore,
) -> FastAPI:
    return create_app(
        config,
        http_client=http_client,
        model_client=model_client,
        session_store=session_store,
    )


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
        follow_redirects=False,
    ) as api_client:
        yield api_client


def make_credential(
    *,
    expires_in: timedelta = timedelta(hours=1),
    refresh_token: str | None = "1//refresh-token",
    error: str | None = None,
    access_token: str = "ya29.session-access-token",
) -> SessionCredential:
    return SessionCredential(
        access_token=access_token,
        expires_at=datetime.now(UTC) + expires_in,
        refresh_token=refresh_token,
        error=error,
    )


@pytest.fixture()
async def signed_in(app: FastAPI, session_store: InMemorySessionStore) -> SessionCredential:
    """Store a valid credential and bind every request to its session."""
    credential = make_credential()
    await session_store.store(SESSION_ID, credential)
    app.dependency_overrides[get_session_id] = lambda: SESSION_ID
    return credential
