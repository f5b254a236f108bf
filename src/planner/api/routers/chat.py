"""Chat endpoint: one planning-conversation turn per request."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Request

from planner.api.deps import get_config, get_planner_gateway, get_token_manager, require_session
from planner.api.models import ErrorResponse
from planner.api.models.chat import ChatResponse
from planner.config import PlannerConfig
from planner.credentials import TokenManager
from planner.gateways.model import PlannerGateway
from planner.plan import extract_plan
from planner.prompts import PERSONA_TEMPLATE, compose_conversation
from planner.validation import validate_chat_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def chat(
    request: Request,
    session_id: str = Depends(require_session),
    config: PlannerConfig = Depends(get_config),
    token_manager: TokenManager = Depends(get_token_manager),
    gateway: PlannerGateway = Depends(get_planner_gateway),
) -> ChatResponse:
    """Send the user's message, with bounded history and schedule context, to the model."""
    chat_request = validate_chat_request(await request.body())
    await token_manager.get_valid_credential(session_id)

    conversation = compose_conversation(
        PERSONA_TEMPLATE,
        chat_request.history,
        datetime.now(config.zone),
        chat_request.schedule,
        chat_request.message,
    )
    reply = await gateway.send_turn(conversation.history, conversation.message)

    plan = extract_plan(reply)
    if plan is not None:
        logger.info("Model proposed a plan with %d event(s)", len(plan))
    return ChatResponse(reply=reply, plan=plan)
