"""Calendar endpoints: list upcoming events and batch-create a plan."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response

from planner.api.deps import (
    get_calendar_gateway,
    get_token_manager,
    require_credential,
    require_session,
)
from planner.api.models import ErrorResponse
from planner.api.models.calendar import BatchCreateResponse
from planner.credentials import SessionCredential, TokenManager
from planner.gateways.calendar import BatchResult, CalendarEventRead, CalendarGateway
from planner.validation import validate_calendar_write_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendar", tags=["calendar"])


@router.get(
    "/events",
    response_model=list[CalendarEventRead],
    response_model_exclude_none=True,
    responses={401: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def list_upcoming_events(
    response: Response,
    credential: SessionCredential = Depends(require_credential),
    gateway: CalendarGateway = Depends(get_calendar_gateway),
) -> list[CalendarEventRead]:
    """Return the next 10 events from the user's primary calendar."""
    events = await gateway.list_upcoming(credential)
    response.headers["Cache-Control"] = "no-store"
    return events


def _batch_message(result: BatchResult) -> str:
    total = len(result.results)
    if result.success_count == total:
        return f"Created {total} event(s)."
    if result.success:
        return (
            f"Created {result.success_count} of {total} event(s); "
            f"{result.failure_count} failed."
        )
    return "No events could be created."


@router.post(
    "/events",
    response_model=BatchCreateResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
async def create_events(
    request: Request,
    session_id: str = Depends(require_session),
    token_manager: TokenManager = Depends(get_token_manager),
    gateway: CalendarGateway = Depends(get_calendar_gateway),
) -> BatchCreateResponse:
    """Create the submitted events one by one; partial success is reported, not raised."""
    batch = validate_calendar_write_request(await request.body())
    credential = await token_manager.get_valid_credential(session_id)
    result = await gateway.create_events(credential, batch)
    return BatchCreateResponse(
        success=result.success,
        message=_batch_message(result),
        success_count=result.success_count,
        results=list(result.results),
    )
