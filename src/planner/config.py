"""Planner configuration loading and validation.

Reads the process environment and returns a validated PlannerConfig
dataclass. Required values (OAuth app credentials, model API key, session
signing secret) raise ConfigError when absent.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_TIMEZONE = "Asia/Tokyo"
DEFAULT_REDIRECT_URI = "http://localhost:8000/api/auth/google/callback"
DEFAULT_CORS_ORIGINS: tuple[str, ...] = ("http://localhost:3000",)
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0

_REQUIRED_ENV = (
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_API_KEY",
    "SESSION_SECRET",
)
_TRUTHY = {"1", "true", "yes", "on"}


class ConfigError(Exception):
    """Raised when planner configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from LOG_LEVEL / LOG_FORMAT."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"


@dataclass
class PlannerConfig:
    """Validated runtime configuration for the planner API."""

    google_client_id: str
    google_client_secret: str
    google_api_key: str
    session_secret: str
    redirect_uri: str = DEFAULT_REDIRECT_URI
    dashboard_url: str | None = None
    model: str = DEFAULT_MODEL
    timezone: str = DEFAULT_TIMEZONE
    http_timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    secure_cookies: bool = False
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __repr__(self) -> str:
        return (
            f"PlannerConfig(google_client_id={self.google_client_id!r}, "
            f"google_client_secret=<REDACTED>, google_api_key=<REDACTED>, "
            f"session_secret=<REDACTED>, model={self.model!r}, "
            f"timezone={self.timezone!r})"
        )

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _get(environ: Mapping[str, str], key: str) -> str | None:
    value = environ.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_timeout(raw: str | None) -> float:
    if raw is None:
        return DEFAULT_HTTP_TIMEOUT_SECONDS
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"PLANNER_HTTP_TIMEOUT must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError("PLANNER_HTTP_TIMEOUT must be positive")
    return value


def _parse_timezone(raw: str | None) -> str:
    name = raw or DEFAULT_TIMEZONE
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"PLANNER_TIMEZONE is not a known IANA timezone: {name!r}") from exc
    return name


def _parse_logging(environ: Mapping[str, str]) -> LoggingConfig:
    level = (_get(environ, "LOG_LEVEL") or "INFO").upper()
    fmt = (_get(environ, "LOG_FORMAT") or "text").lower()
    if fmt not in ("text", "json"):
        raise ConfigError(f"LOG_FORMAT must be 'text' or 'json', got {fmt!r}")
    return LoggingConfig(level=level, format=fmt)


def load_config(environ: Mapping[str, str] | None = None) -> PlannerConfig:
    """Build a PlannerConfig from environment variables.

    Parameters
    ----------
    environ:
        Mapping to read from. Defaults to ``os.environ``.

    Raises
    ------
    ConfigError
        If a required variable is missing or a value cannot be parsed.
    """
    if environ is None:
        environ = os.environ

    missing = [key for key in _REQUIRED_ENV if _get(environ, key) is None]
    if missing:
        raise ConfigError(f"Missing required environment variable(s): {', '.join(missing)}")

    cors_raw = _get(environ, "PLANNER_CORS_ORIGINS")
    cors_origins = (
        [origin.strip() for origin in cors_raw.split(",") if origin.strip()]
        if cors_raw
        else list(DEFAULT_CORS_ORIGINS)
    )

    return PlannerConfig(
        google_client_id=environ["GOOGLE_CLIENT_ID"].strip(),
        google_client_secret=environ["GOOGLE_CLIENT_SECRET"].strip(),
        google_api_key=environ["GOOGLE_API_KEY"].strip(),
        session_secret=environ["SESSION_SECRET"].strip(),
        redirect_uri=_get(environ, "GOOGLE_OAUTH_REDIRECT_URI") or DEFAULT_REDIRECT_URI,
        dashboard_url=_get(environ, "PLANNER_DASHBOARD_URL"),
        model=_get(environ, "PLANNER_MODEL") or DEFAULT_MODEL,
        timezone=_parse_timezone(_get(environ, "PLANNER_TIMEZONE")),
        http_timeout=_parse_timeout(_get(environ, "PLANNER_HTTP_TIMEOUT")),
        cors_origins=cors_origins,
        secure_cookies=(_get(environ, "PLANNER_SECURE_COOKIES") or "").lower() in _TRUTHY,
        logging=_parse_logging(environ),
    )
