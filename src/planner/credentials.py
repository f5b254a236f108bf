"""Delegated-access credential lifecycle for Google OAuth.

The :class:`SessionCredential` record holds the user's access/refresh token
pair plus its expiry and a persistent error flag. It is immutable; every
change goes through a transition function that returns a new record:

- :meth:`SessionCredential.issue`: first credential after sign-in.
- :meth:`SessionCredential.refreshed`: new access token from the refresh grant.
- :meth:`SessionCredential.invalidated`: refresh failed; re-authentication required.

:class:`TokenManager` owns the policy: it loads the credential for a session,
refreshes it through :class:`GoogleTokenClient` once it has expired, and writes
every mutation back to the :class:`~planner.session_store.SessionStore`
immediately. A credential carrying the error flag keeps failing with
:class:`RefreshFailed` until the user signs in again.

Secret material (client secret, access and refresh tokens) is never logged.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from planner.session_store import SessionStore

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

GOOGLE_SCOPES = (
    "openid",
    "email",
    "profile",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
)

REFRESH_ERROR = "RefreshAccessTokenError"
_DEFAULT_LIFETIME_SECONDS = 3600


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class AuthError(Exception):
    """Base class for credential errors surfaced to HTTP callers."""


class Unauthenticated(AuthError):
    """Raised when the session carries no credential at all."""


class RefreshFailed(AuthError):
    """Raised when the credential could not be refreshed.

    Callers must treat this as requiring re-authentication, not as a
    retryable condition within the same request.
    """


class TokenEndpointError(Exception):
    """Raised when a call to Google's OAuth token endpoint fails."""


# ---------------------------------------------------------------------------
# Token endpoint payloads
# ---------------------------------------------------------------------------


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return _DEFAULT_LIFETIME_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else _DEFAULT_LIFETIME_SECONDS
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or _DEFAULT_LIFETIME_SECONDS
    return _DEFAULT_LIFETIME_SECONDS


class TokenGrant(BaseModel):
    """Successful response from Google's token endpoint."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)
    expires_in: int = _DEFAULT_LIFETIME_SECONDS
    refresh_token: str | None = None
    scope: str | None = None

    @field_validator("access_token")
    @classmethod
    def _normalize_access_token(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("access_token must be a non-empty string")
        return normalized

    @field_validator("expires_in", mode="before")
    @classmethod
    def _normalize_expires_in(cls, value: Any) -> int:
        return _coerce_expires_in_seconds(value)

    @field_validator("refresh_token", "scope")
    @classmethod
    def _normalize_optional(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    def __repr__(self) -> str:
        return (
            f"TokenGrant(access_token=<REDACTED>, expires_in={self.expires_in}, "
            f"refresh_token={'<REDACTED>' if self.refresh_token else None}, "
            f"scope={self.scope!r})"
        )

    __str__ = __repr__


# ---------------------------------------------------------------------------
# Credential record
# ---------------------------------------------------------------------------


class SessionCredential(BaseModel):
    """A user's delegated-access credential as held in the session store."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    access_token: str = Field(min_length=1)
    expires_at: datetime
    refresh_token: str | None = None
    scope: str | None = None
    error: str | None = None

    @classmethod
    def issue(cls, grant: TokenGrant, *, now: datetime) -> SessionCredential:
        return cls(
            access_token=grant.access_token,
            expires_at=now + timedelta(seconds=grant.expires_in),
            refresh_token=grant.refresh_token,
            scope=grant.scope,
        )

    def refreshed(self, grant: TokenGrant, *, now: datetime) -> SessionCredential:
        """Apply a refresh grant; keeps the refresh token unless a new one was issued."""
        return self.model_copy(
            update={
                "access_token": grant.access_token,
                "expires_at": now + timedelta(seconds=grant.expires_in),
                "refresh_token": grant.refresh_token or self.refresh_token,
                "scope": grant.scope or self.scope,
                "error": None,
            }
        )

    def invalidated(self, reason: str = REFRESH_ERROR) -> SessionCredential:
        return self.model_copy(update={"error": reason})

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def __repr__(self) -> str:
        return (
            f"SessionCredential(access_token=<REDACTED>, "
            f"expires_at={self.expires_at.isoformat()}, "
            f"refresh_token={'<REDACTED>' if self.refresh_token else None}, "
            f"error={self.error!r})"
        )

    # Pydantic's default __str__ would expose field values verbatim.
    __str__ = __repr__


# ---------------------------------------------------------------------------
# Google token endpoint client
# ---------------------------------------------------------------------------


class GoogleTokenClient:
    """Authorization-code and refresh-token exchanges against Google OAuth."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        client_id: str,
        client_secret: str,
        token_url: str = GOOGLE_TOKEN_URL,
    ) -> None:
        self._http_client = http_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url

    @property
    def client_id(self) -> str:
        return self._client_id

    async def exchange_code(self, *, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange an authorization code for tokens.

        Raises
        ------
        TokenEndpointError
            If the exchange fails for any reason (HTTP error, invalid code,
            network error, malformed body).
        """
        return await self._post(
            {
                "code": code,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            }
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Obtain a new access token using *refresh_token*."""
        return await self._post(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )

    async def _post(self, data: dict[str, str]) -> TokenGrant:
        grant_type = data["grant_type"]
        try:
            response = await self._http_client.post(
                self._token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenEndpointError(
                f"Network error during {grant_type} exchange: {exc}"
            ) from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise TokenEndpointError(
                f"Token endpoint returned HTTP {response.status_code} "
                f"({_safe_oauth_error_code(response)}) for {grant_type}"
            )

        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise TokenEndpointError(f"Invalid JSON in token response: {exc}") from exc

        if not isinstance(payload, dict):
            raise TokenEndpointError("Token response is not a JSON object")
        if "error" in payload:
            raise TokenEndpointError(f"Token endpoint reported error: {payload.get('error')}")

        try:
            return TokenGrant.model_validate(payload)
        except ValueError as exc:
            raise TokenEndpointError("Token response is missing a usable access_token") from exc


def _safe_oauth_error_code(response: httpx.Response) -> str:
    """Return Google's OAuth ``error`` code without echoing the raw body."""
    try:
        body = response.json()
    except ValueError:
        return "no error code"
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return "no error code"


# ---------------------------------------------------------------------------
# Token manager
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenManager:
    """Hands out valid access credentials for a session, refreshing on expiry."""

    def __init__(
        self,
        store: SessionStore,
        token_client: GoogleTokenClient,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._token_client = token_client
        self._clock = clock

    async def get_valid_credential(self, session_id: str | None) -> SessionCredential:
        """Return a credential whose access token is usable right now.

        Raises
        ------
        Unauthenticated
            If the session has no stored credential.
        RefreshFailed
            If the credential is flagged from an earlier failure, or the
            refresh attempted now fails.
        """
        credential = await self._store.load(session_id) if session_id else None
        if credential is None:
            raise Unauthenticated("No credential stored for this session")

        if credential.error is not None:
            raise RefreshFailed("Credential refresh previously failed; sign in again")

        now = self._clock()
        if not credential.is_expired(now):
            return credential

        assert session_id is not None
        return await self._refresh(session_id, credential, now)

    async def _refresh(
        self,
        session_id: str,
        credential: SessionCredential,
        now: datetime,
    ) -> SessionCredential:
        if not credential.refresh_token:
            logger.warning("Access token expired and no refresh token is stored")
            await self._store.store(session_id, credential.invalidated())
            raise RefreshFailed("No refresh token available")

        try:
            grant = await self._token_client.refresh(credential.refresh_token)
        except TokenEndpointError as exc:
            logger.warning("Access token refresh failed: %s", exc)
            await self._store.store(session_id, credential.invalidated())
            raise RefreshFailed("Access token refresh failed") from exc

        updated = credential.refreshed(grant, now=self._clock())
        await self._store.store(session_id, updated)
        logger.info(
            "Access token refreshed (expires_at=%s, rotated_refresh_token=%s)",
            updated.expires_at.isoformat(),
            grant.refresh_token is not None,
        )
        return updated

    async def issue(self, session_id: str, grant: TokenGrant) -> SessionCredential:
        """Store a freshly issued credential for *session_id* after sign-in."""
        credential = SessionCredential.issue(grant, now=self._clock())
        await self._store.store(session_id, credential)
        logger.info(
            "Credential issued (expires_at=%s, refresh_token_present=%s)",
            credential.expires_at.isoformat(),
            credential.refresh_token is not None,
        )
        return credential

    async def peek(self, session_id: str | None) -> SessionCredential | None:
        """Return the stored credential without refreshing it."""
        if not session_id:
            return None
        return await self._store.load(session_id)

    async def sign_out(self, session_id: str | None) -> bool:
        """Destroy the credential for *session_id*."""
        if not session_id:
            return False
        return await self._store.delete(session_id)
