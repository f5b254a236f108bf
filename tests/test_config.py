"""Tests for planner.config: environment loading and validation."""

from __future__ import annotations

import pytest

from planner.config import (
    DEFAULT_MODEL,
    DEFAULT_REDIRECT_URI,
    DEFAULT_TIMEZONE,
    ConfigError,
    PlannerConfig,
    load_config,
)

pytestmark = pytest.mark.unit

BASE_ENV = {
    "GOOGLE_CLIENT_ID": "client-id",
    "GOOGLE_CLIENT_SECRET": "client-secret-value",
    "GOOGLE_API_KEY": "api-key-value",
    "SESSION_SECRET": "session-secret-value",
}


def _env(**overrides: str) -> dict[str, str]:
    return {**BASE_ENV, **overrides}


class TestRequiredValues:
    def test_minimal_env_loads_with_defaults(self):
        config = load_config(BASE_ENV)

        assert isinstance(config, PlannerConfig)
        assert config.google_client_id == "client-id"
        assert config.model == DEFAULT_MODEL
        assert config.timezone == DEFAULT_TIMEZONE
        assert config.redirect_uri == DEFAULT_REDIRECT_URI
        assert config.dashboard_url is None
        assert config.cors_origins == ["http://localhost:3000"]
        assert config.secure_cookies is False
        assert config.http_timeout == 30.0
        assert config.logging.level == "INFO"
        assert config.logging.format == "text"

    @pytest.mark.parametrize(
        "missing",
        ["GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_API_KEY", "SESSION_SECRET"],
    )
    def test_missing_required_variable_raises(self, missing):
        env = {k: v for k, v in BASE_ENV.items() if k != missing}
        with pytest.raises(ConfigError, match=missing):
            load_config(env)

    def test_blank_value_counts_as_missing(self):
        with pytest.raises(ConfigError, match="GOOGLE_API_KEY"):
            load_config(_env(GOOGLE_API_KEY="   "))

    def test_all_missing_listed_together(self):
        with pytest.raises(ConfigError) as exc_info:
            load_config({})
        message = str(exc_info.value)
        for key in BASE_ENV:
            assert key in message


class TestOptionalValues:
    def test_overrides_are_applied(self):
        config = load_config(
            _env(
                GOOGLE_OAUTH_REDIRECT_URI="https://planner.example.com/api/auth/google/callback",
                PLANNER_DASHBOARD_URL="https://planner.example.com/",
                PLANNER_MODEL="gemini-2.5-pro",
                PLANNER_TIMEZONE="Europe/Berlin",
                PLANNER_HTTP_TIMEOUT="12.5",
                PLANNER_CORS_ORIGINS="https://a.example.com, https://b.example.com,",
                PLANNER_SECURE_COOKIES="true",
                LOG_LEVEL="debug",
                LOG_FORMAT="JSON",
            )
        )

        assert config.redirect_uri.startswith("https://planner.example.com")
        assert config.dashboard_url == "https://planner.example.com/"
        assert config.model == "gemini-2.5-pro"
        assert config.timezone == "Europe/Berlin"
        assert config.zone.key == "Europe/Berlin"
        assert config.http_timeout == 12.5
        assert config.cors_origins == ["https://a.example.com", "https://b.example.com"]
        assert config.secure_cookies is True
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ConfigError, match="PLANNER_TIMEZONE"):
            load_config(_env(PLANNER_TIMEZONE="Mars/Olympus_Mons"))

    @pytest.mark.parametrize("raw", ["abc", "0", "-5"])
    def test_bad_timeout_rejected(self, raw):
        with pytest.raises(ConfigError, match="PLANNER_HTTP_TIMEOUT"):
            load_config(_env(PLANNER_HTTP_TIMEOUT=raw))

    def test_bad_log_format_rejected(self):
        with pytest.raises(ConfigError, match="LOG_FORMAT"):
            load_config(_env(LOG_FORMAT="xml"))

    @pytest.mark.parametrize("raw", ["false", "0", "no", ""])
    def test_secure_cookies_falsy(self, raw):
        assert load_config(_env(PLANNER_SECURE_COOKIES=raw)).secure_cookies is False


class TestRedaction:
    def test_repr_hides_secrets(self):
        config = load_config(BASE_ENV)
        text = repr(config)

        assert "client-secret-value" not in text
        assert "api-key-value" not in text
        assert "session-secret-value" not in text
        assert "client-id" in text
        assert "<REDACTED>" in text
