"""Pydantic models for the calendar endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field

from planner.gateways.calendar import EventWriteResult


class BatchCreateResponse(BaseModel):
    """Outcome of a batch calendar write.

    ``success`` is true when at least one event was created, so callers can
    report partial success; ``results`` follows the input order.
    """

    success: bool
    message: str
    success_count: int
    results: list[EventWriteResult] = Field(default_factory=list)
