"""Tests for the FastAPI app factory, health endpoint, and lifecycle."""

from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI

from conftest import FakeModelClient
from planner.api.app import create_app
from planner.api.deps import PlannerServices
from planner.gateways.model import PlannerGateway

pytestmark = pytest.mark.unit


class TestCreateApp:
    def test_returns_fastapi_instance(self, app):
        assert isinstance(app, FastAPI)
        assert isinstance(app.state.services, PlannerServices)

    def test_routes_registered(self, app):
        paths = {getattr(route, "path", None) for route in app.routes}
        assert {
            "/api/health",
            "/api/chat",
            "/api/calendar/events",
            "/api/auth/google/start",
            "/api/auth/google/callback",
            "/api/auth/session",
            "/api/auth/signout",
        } <= paths

    def test_injected_collaborators_used(self, app, http_client, session_store, config):
        services = app.state.services
        assert services.http_client is http_client
        assert services.session_store is session_store
        assert services.owns_http_client is False
        assert isinstance(services.planner_gateway, PlannerGateway)
        assert services.planner_gateway.model == config.model

    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    async def test_cors_preflight(self, client):
        resp = await client.options(
            "/api/chat",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"
        assert resp.headers["access-control-allow-credentials"] == "true"

    async def test_cors_rejects_unknown_origin(self, client):
        resp = await client.options(
            "/api/chat",
            headers={
                "Origin": "https://evil.example.com",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert "access-control-allow-origin" not in resp.headers


class TestLifecycle:
    async def test_owned_http_client_closed_on_shutdown(self, config):
        app = create_app(config, model_client=FakeModelClient())
        services = app.state.services
        assert services.owns_http_client is True

        async with app.router.lifespan_context(app):
            assert not services.http_client.is_closed

        assert services.http_client.is_closed

    async def test_injected_http_client_left_open(self, config):
        async with httpx.AsyncClient() as http_client:
            app = create_app(config, http_client=http_client, model_client=FakeModelClient())
            async with app.router.lifespan_context(app):
                pass
            assert not http_client.is_closed
