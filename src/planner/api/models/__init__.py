"""Shared Pydantic response models for the planner API.

Provides the error envelope used by every endpoint. Endpoint-specific
request/response models live in sibling modules.
"""

from __future__ import annotations

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response body: ``{"error": "...", "code": "..."}``.

    ``error`` is a user-facing message and never carries provider payloads
    or stack traces.
    """

    error: str
    code: str
    details: str | None = None
