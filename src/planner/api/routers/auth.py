"""Google sign-in endpoints.

Implements the OAuth 2.0 authorization-code flow that issues the user's
delegated-access credential for Google Calendar:

  1. GET /api/auth/google/start
     - Generates a cryptographically random state token (CSRF protection).
     - Stores the state in the browser's signed session cookie (TTL 10 min).
     - Redirects to Google's consent screen (or returns the URL as JSON).

  2. GET /api/auth/google/callback
     - Checks the state against the one stored in this browser's session,
       then removes it.
     - Exchanges the authorization code for tokens via Google's token endpoint.
     - Rotates the session id and stores the credential server-side.
     - Redirects to PLANNER_DASHBOARD_URL when set, else returns JSON.

  3. GET /api/auth/session: reports whether the session is signed in.

  4. POST /api/auth/signout: destroys the credential and clears the cookie.

Security notes:
  - State tokens are bound to the browser that started sign-in, are
    one-time-use, and expire after 10 minutes.
  - Tokens never leave the server; the browser holds only a signed session id.
  - Error messages are sanitized to avoid leaking OAuth provider details.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import MutableMapping
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from planner.api.deps import (
    SESSION_ID_KEY,
    get_config,
    get_session_id,
    get_token_client,
    get_token_manager,
)
from planner.api.models.auth import (
    SessionStatusResponse,
    SignInCallbackError,
    SignInCallbackSuccess,
    SignInStartResponse,
    SignOutResponse,
)
from planner.config import PlannerConfig
from planner.credentials import (
    GOOGLE_AUTH_URL,
    GOOGLE_SCOPES,
    GoogleTokenClient,
    TokenEndpointError,
    TokenManager,
)
from planner.session_store import new_session_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

# ---------------------------------------------------------------------------
# CSRF state, bound to the browser's session cookie
# ---------------------------------------------------------------------------

_STATE_TTL_SECONDS = 600  # 10 minutes
_STATE_KEY = "oauth_state"
_STATE_EXPIRES_KEY = "oauth_state_expires"


def _generate_state() -> str:
    """Generate a cryptographically random CSRF state token."""
    return secrets.token_urlsafe(32)


def _remember_state(session: MutableMapping[str, Any], state: str) -> None:
    """Record *state* in the signed session of the browser starting sign-in.

    A later sign-in start replaces any earlier pending state.
    """
    session[_STATE_KEY] = state
    session[_STATE_EXPIRES_KEY] = time.time() + _STATE_TTL_SECONDS


def _consume_state(session: MutableMapping[str, Any], state: str) -> bool:
    """Check *state* against the one this session started with, then forget it.

    Returns True only when this browser has a pending, unexpired state equal
    to *state*. The pending state is removed either way (one-time-use).
    """
    expected = session.pop(_STATE_KEY, None)
    expires_at = session.pop(_STATE_EXPIRES_KEY, None)
    if not isinstance(expected, str) or not isinstance(expires_at, (int, float)):
        return False
    if time.time() >= expires_at:
        return False
    return secrets.compare_digest(expected.encode(), state.encode())


def _dashboard_url(config: PlannerConfig, **params: str) -> str:
    """Append *params* to the dashboard URL, keeping any query it already has."""
    assert config.dashboard_url is not None
    parts = urlsplit(config.dashboard_url)
    query = parse_qsl(parts.query, keep_blank_values=True) + list(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


# ---------------------------------------------------------------------------
# Start endpoint
# ---------------------------------------------------------------------------


@router.get(
    "/google/start",
    responses={
        200: {"model": SignInStartResponse, "description": "JSON payload (redirect=false)"},
        302: {"description": "Redirect to Google authorization URL"},
    },
)
async def google_sign_in_start(
    request: Request,
    redirect: bool = Query(
        default=True,
        description="If true (default), redirect to Google's consent screen. "
        "If false, return the URL as JSON for programmatic callers.",
    ),
    config: PlannerConfig = Depends(get_config),
) -> Response:
    """Begin the Google sign-in flow."""
    state = _generate_state()
    _remember_state(request.session, state)

    params = {
        "client_id": config.google_client_id,
        "redirect_uri": config.redirect_uri,
        "response_type": "code",
        "scope": " ".join(GOOGLE_SCOPES),
        "access_type": "offline",
        "prompt": "consent",  # Force refresh token to be returned
        "state": state,
    }
    authorization_url = f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    logger.info("Google sign-in started (state=%s...)", state[:8])

    if redirect:
        return RedirectResponse(url=authorization_url, status_code=302)

    return JSONResponse(
        content=SignInStartResponse(authorization_url=authorization_url, state=state).model_dump()
    )


# ---------------------------------------------------------------------------
# Callback endpoint
# ---------------------------------------------------------------------------


def _callback_error(
    config: PlannerConfig,
    error_code: str,
    message: str,
) -> Response:
    payload = SignInCallbackError(error_code=error_code, message=message)
    if config.dashboard_url:
        return RedirectResponse(
            url=_dashboard_url(config, auth_error=error_code),
            status_code=302,
        )
    return JSONResponse(status_code=400, content=payload.model_dump())


@router.get("/google/callback")
async def google_sign_in_callback(
    request: Request,
    code: str | None = Query(default=None, description="Authorization code from Google."),
    state: str | None = Query(default=None, description="CSRF state token."),
    error: str | None = Query(default=None, description="OAuth error code from Google."),
    config: PlannerConfig = Depends(get_config),
    token_client: GoogleTokenClient = Depends(get_token_client),
    token_manager: TokenManager = Depends(get_token_manager),
    session_id: str | None = Depends(get_session_id),
) -> Response:
    """Finish sign-in: validate state, exchange the code, store the credential."""
    if error:
        logger.warning("Google sign-in provider error: %s", error)
        # A denied or cancelled flow still uses up its state.
        if state:
            _consume_state(request.session, state)
        return _callback_error(config, "provider_error", _sanitize_provider_error(error))

    if not code:
        return _callback_error(
            config, "missing_code", "Authorization code is missing from the callback."
        )

    if not state:
        return _callback_error(
            config,
            "missing_state",
            "State parameter is missing from the callback. Possible CSRF attempt.",
        )

    if not _consume_state(request.session, state):
        logger.warning("Sign-in callback received invalid or expired state token")
        return _callback_error(
            config,
            "invalid_state",
            "State parameter is invalid or expired. Please sign in again.",
        )

    try:
        grant = await token_client.exchange_code(code=code, redirect_uri=config.redirect_uri)
    except TokenEndpointError as exc:
        logger.warning("Google token exchange failed: %s", exc)
        return _callback_error(
            config,
            "token_exchange_failed",
            "Failed to exchange authorization code for tokens. "
            "The code may have expired or already been used. Please sign in again.",
        )

    if grant.refresh_token is None:
        logger.warning("Google token response did not include a refresh token")

    # Rotate the session id on sign-in so a pre-login cookie cannot be fixated.
    if session_id:
        await token_manager.sign_out(session_id)
    new_sid = new_session_id()
    await token_manager.issue(new_sid, grant)
    request.session[SESSION_ID_KEY] = new_sid

    logger.info("Google sign-in complete (scope=%s)", grant.scope)

    if config.dashboard_url:
        return RedirectResponse(url=_dashboard_url(config, signed_in="true"), status_code=302)

    return JSONResponse(content=SignInCallbackSuccess(scope=grant.scope).model_dump())


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@router.get("/session", response_model=SessionStatusResponse)
async def session_status(
    session_id: str | None = Depends(get_session_id),
    token_manager: TokenManager = Depends(get_token_manager),
) -> SessionStatusResponse:
    """Report the session's sign-in state without refreshing or calling Google."""
    credential = await token_manager.peek(session_id)
    if credential is None:
        return SessionStatusResponse(authenticated=False)
    return SessionStatusResponse(
        authenticated=credential.error is None,
        expires_at=credential.expires_at,
        error=credential.error,
    )


@router.post("/signout", response_model=SignOutResponse)
async def sign_out(
    request: Request,
    session_id: str | None = Depends(get_session_id),
    token_manager: TokenManager = Depends(get_token_manager),
) -> SignOutResponse:
    """Destroy the session's credential and clear the session cookie."""
    signed_out = await token_manager.sign_out(session_id)
    request.session.clear()
    logger.info("Session signed out (had_credential=%s)", signed_out)
    return SignOutResponse(signed_out=signed_out)


# ---------------------------------------------------------------------------
# Error sanitization
# ---------------------------------------------------------------------------

_KNOWN_PROVIDER_ERRORS: dict[str, str] = {
    "access_denied": "Calendar access was denied. Sign-in cancelled.",
    "invalid_request": "The sign-in request was malformed. Please try again.",
    "unauthorized_client": "This application is not authorized to use Google sign-in. "
    "Check the OAuth app configuration.",
    "invalid_scope": "One or more requested permissions are invalid or not permitted.",
    "server_error": "Google encountered an internal error. Please try again.",
    "temporarily_unavailable": "Google sign-in is temporarily unavailable. Please try later.",
}


def _sanitize_provider_error(error: str) -> str:
    """Convert a provider error code into a safe, actionable user message.

    Unknown error codes are replaced with a generic message to avoid
    leaking internal provider state.
    """
    return _KNOWN_PROVIDER_ERRORS.get(error, "Google sign-in failed. Please try again.")
