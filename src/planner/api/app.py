"""Planner API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (configurable origins)
- Signed-cookie session middleware carrying only an opaque session id
- Error handlers mapping domain exceptions to status codes
- Lifespan handler closing the shared HTTP client on shutdown
- Health endpoint at GET /api/health
- Routers for sign-in, chat, and calendar
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from planner import __version__
from planner.api.deps import build_services
from planner.api.middleware import register_error_handlers
from planner.api.routers.auth import router as auth_router
from planner.api.routers.calendar import router as calendar_router
from planner.api.routers.chat import router as chat_router
from planner.config import PlannerConfig, load_config
from planner.session_store import SESSION_MAX_AGE_SECONDS, SessionStore

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "planner_session"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle for the shared clients."""
    services = app.state.services
    logger.info(
        "Planner API starting (model=%s, timezone=%s)",
        services.config.model,
        services.config.timezone,
    )

    yield

    await services.aclose()


def create_app(
    config: PlannerConfig | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    model_client: Any = None,
    session_store: SessionStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Validated configuration. Defaults to :func:`~planner.config.load_config`
        over the process environment.
    http_client:
        Shared ``httpx.AsyncClient`` for the Google OAuth and Calendar APIs.
        When omitted the app creates one and closes it on shutdown.
    model_client:
        A ``google.genai.Client`` (or test double). Created from
        ``config.google_api_key`` when omitted.
    session_store:
        Server-side credential store. Defaults to an in-memory store.
    """
    if config is None:
        config = load_config()

    app = FastAPI(
        title="Planner API",
        version=__version__,
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False
    app.state.services = build_services(
        config,
        http_client=http_client,
        model_client=model_client,
        session_store=session_store,
    )

    # Later middleware wraps earlier; CORS stays outermost.
    register_error_handlers(app)
    app.add_middleware(
        SessionMiddleware,
        secret_key=config.session_secret,
        session_cookie=SESSION_COOKIE_NAME,
        max_age=SESSION_MAX_AGE_SECONDS,
        same_site="lax",
        https_only=config.secure_cookies,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(chat_router)
    app.include_router(calendar_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
