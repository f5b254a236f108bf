"""Extraction of the proposed calendar plan from a model reply.

When a planning negotiation is finished the model ends its reply with a
fenced JSON block of events. This is a prompt convention only: the block is
decoded but not schema-checked here. The client submits it to the
calendar-write endpoint, which validates it.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?P<lang>[A-Za-z0-9_-]*)[ \t]*\n(?P<body>.*?)```", re.DOTALL)


def extract_plan(reply: str) -> list[dict[str, Any]] | None:
    """Return the events from the last ``json`` fenced block in *reply*.

    Blocks labelled with another language are ignored. A single JSON object is
    wrapped in a list. Returns ``None`` when no block decodes to objects.
    """
    candidates = [
        match.group("body")
        for match in _FENCED_BLOCK.finditer(reply)
        if match.group("lang").lower() in ("", "json")
    ]
    for body in reversed(candidates):
        try:
            decoded = json.loads(body)
        except json.JSONDecodeError:
            logger.debug("Ignoring fenced block that is not valid JSON")
            continue
        if isinstance(decoded, dict):
            decoded = [decoded]
        if isinstance(decoded, list) and decoded and all(isinstance(e, dict) for e in decoded):
            return decoded
    return None
