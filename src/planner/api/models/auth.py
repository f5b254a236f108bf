"""Pydantic models for the Google sign-in endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class SignInStartResponse(BaseModel):
    """Authorization URL returned when ``redirect=false``."""

    authorization_url: str
    state: str


class SignInCallbackSuccess(BaseModel):
    success: bool = True
    message: str = "Signed in. Calendar access granted."
    provider: str = "google"
    scope: str | None = None


class SignInCallbackError(BaseModel):
    """Error payload returned when the sign-in callback fails.

    Messages are actionable but do not leak client secrets or raw provider
    error details.
    """

    success: bool = False
    error_code: str
    message: str
    provider: str = "google"


class SessionStatusResponse(BaseModel):
    """Sign-in state of the calling browser session.

    ``error`` is ``"RefreshAccessTokenError"`` once a token refresh has failed;
    the client should send the user through sign-in again.
    """

    authenticated: bool
    expires_at: datetime | None = None
    error: str | None = None


class SignOutResponse(BaseModel):
    success: bool = True
    signed_out: bool
