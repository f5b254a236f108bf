"""Pydantic models for the chat endpoint."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ChatResponse(BaseModel):
    """Reply to one chat turn.

    ``plan`` holds the events from the fenced JSON block the model emits once
    a plan is agreed, or ``None`` while the negotiation is still going.
    """

    reply: str
    plan: list[dict[str, Any]] | None = None
