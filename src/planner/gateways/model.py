"""Conversational planner gateway around the Gemini API.

The ``google.genai.Client`` is constructed once by the application and
injected, so tests can substitute a fake. Provider failures are classified:

- rate limiting (HTTP 429, or an error message mentioning ``429``) raises
  :class:`RateLimited`;
- everything else raises :class:`ProviderFailure`.

Diagnostic detail is logged here; the exception messages are generic and
safe to hand to HTTP callers.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from google import genai
from google.genai import types

from planner.prompts import Turn

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429


class ProviderError(Exception):
    """Base class for generative-model provider failures."""


class RateLimited(ProviderError):
    """Raised when the model provider rejects the call for rate limiting."""

    def __init__(self) -> None:
        super().__init__(
            "The AI usage limit has been reached. Please wait a while and try again."
        )


class ProviderFailure(ProviderError):
    """Raised for any other model provider failure."""

    def __init__(self) -> None:
        super().__init__("An error occurred while processing your request.")


def is_rate_limited(exc: BaseException) -> bool:
    """Return True when *exc* reports a provider rate-limit condition."""
    for attr in ("code", "status", "status_code"):
        if getattr(exc, attr, None) == RATE_LIMIT_STATUS:
            return True
    return str(RATE_LIMIT_STATUS) in str(exc)


def to_content(turn: Turn) -> types.Content:
    return types.Content(role=turn.role, parts=[types.Part(text=turn.text)])


class PlannerGateway:
    """Sends one chat turn to the planning model and returns its reply text."""

    def __init__(self, client: genai.Client | Any, *, model: str) -> None:
        self._client = client
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    async def send_turn(self, conversation: Sequence[Turn], message: str) -> str:
        """Start a chat seeded with *conversation* and send *message*.

        Raises
        ------
        RateLimited
            If the provider reports a rate-limit condition.
        ProviderFailure
            For any other failure, including an empty reply.
        """
        try:
            chat = self._client.aio.chats.create(
                model=self._model,
                history=[to_content(turn) for turn in conversation],
            )
            response = await chat.send_message(message)
        except Exception as exc:
            if is_rate_limited(exc):
                logger.warning("Model provider rate limit reached (model=%s)", self._model)
                raise RateLimited() from exc
            logger.error(
                "Model provider call failed (model=%s): %s",
                self._model,
                exc,
                exc_info=True,
            )
            raise ProviderFailure() from exc

        text = getattr(response, "text", None)
        if not isinstance(text, str) or not text.strip():
            logger.error(
                "Model provider returned an empty reply (model=%s, turns=%d)",
                self._model,
                len(conversation),
            )
            raise ProviderFailure()

        logger.info(
            "Model reply received (model=%s, turns=%d, reply_chars=%d)",
            self._model,
            len(conversation),
            len(text),
        )
        return text
