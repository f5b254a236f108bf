"""Service container and FastAPI dependencies for the planner API.

:class:`PlannerServices` bundles the explicitly constructed collaborators
(HTTP client, model client, gateways, token manager, session store). The app
factory builds one instance and stores it on ``app.state.services``; route
handlers receive its parts through the ``get_*`` dependencies below, which
tests can replace via ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from fastapi import Depends, Request
from google import genai

from planner.config import PlannerConfig
from planner.credentials import (
    GoogleTokenClient,
    RefreshFailed,
    SessionCredential,
    TokenManager,
    Unauthenticated,
)
from planner.gateways.calendar import CalendarGateway
from planner.gateways.model import PlannerGateway
from planner.session_store import SESSION_MAX_AGE_SECONDS, InMemorySessionStore, SessionStore

logger = logging.getLogger(__name__)

SESSION_ID_KEY = "sid"


@dataclass
class PlannerServices:
    """Explicitly constructed collaborators shared by all requests."""

    config: PlannerConfig
    http_client: httpx.AsyncClient
    session_store: SessionStore
    token_client: GoogleTokenClient
    token_manager: TokenManager
    planner_gateway: PlannerGateway
    calendar_gateway: CalendarGateway
    owns_http_client: bool = False

    async def aclose(self) -> None:
        if self.owns_http_client:
            await self.http_client.aclose()
            logger.info("Shared HTTP client closed")


def build_services(
    config: PlannerConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
    model_client: Any = None,
    session_store: SessionStore | None = None,
) -> PlannerServices:
    """Wire every collaborator from *config*, accepting injected substitutes."""
    owns_http_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=config.http_timeout)
    if model_client is None:
        model_client = genai.Client(api_key=config.google_api_key)
    if session_store is None:
        session_store = InMemorySessionStore(max_age=SESSION_MAX_AGE_SECONDS)

    token_client = GoogleTokenClient(
        http_client,
        client_id=config.google_client_id,
        client_secret=config.google_client_secret,
    )
    return PlannerServices(
        config=config,
        http_client=http_client,
        session_store=session_store,
        token_client=token_client,
        token_manager=TokenManager(session_store, token_client),
        planner_gateway=PlannerGateway(model_client, model=config.model),
        calendar_gateway=CalendarGateway(http_client),
        owns_http_client=owns_http_client,
    )


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_services(request: Request) -> PlannerServices:
    return request.app.state.services


def get_config(services: PlannerServices = Depends(get_services)) -> PlannerConfig:
    return services.config


def get_token_manager(services: PlannerServices = Depends(get_services)) -> TokenManager:
    return services.token_manager


def get_token_client(services: PlannerServices = Depends(get_services)) -> GoogleTokenClient:
    return services.token_client


def get_planner_gateway(services: PlannerServices = Depends(get_services)) -> PlannerGateway:
    return services.planner_gateway


def get_calendar_gateway(services: PlannerServices = Depends(get_services)) -> CalendarGateway:
    return services.calendar_gateway


def get_session_id(request: Request) -> str | None:
    """Return the opaque session id from the signed session cookie, if any."""
    sid = request.session.get(SESSION_ID_KEY)
    return sid if isinstance(sid, str) and sid else None


async def require_session(
    session_id: str | None = Depends(get_session_id),
    token_manager: TokenManager = Depends(get_token_manager),
) -> str:
    """Return the session id when a usable credential is stored, without refreshing.

    Handlers that take a request body depend on this, validate the body, and
    only then call :meth:`TokenManager.get_valid_credential`, so a malformed
    request never reaches Google's token endpoint.
    """
    credential = await token_manager.peek(session_id)
    if credential is None:
        raise Unauthenticated("No credential stored for this session")
    if credential.error is not None:
        raise RefreshFailed("Credential refresh previously failed; sign in again")
    assert session_id is not None
    return session_id


async def require_credential(
    session_id: str | None = Depends(get_session_id),
    token_manager: TokenManager = Depends(get_token_manager),
) -> SessionCredential:
    """Resolve a usable credential or fail with Unauthenticated / RefreshFailed."""
    return await token_manager.get_valid_credential(session_id)
