"""Server-side session credential storage.

The browser holds only a signed cookie carrying an opaque session id; the
delegated-access credential itself stays on the server in a SessionStore.

``InMemorySessionStore`` is process-local. Do not run multiple worker
processes (e.g. ``uvicorn --workers N``) against it; sessions created in one
worker are invisible to the others.
"""

from __future__ import annotations

import abc
import logging
import secrets
import time
from collections.abc import Callable

from planner.credentials import SessionCredential

logger = logging.getLogger(__name__)

# Lifetime of the session cookie. The cookie is re-issued on every response,
# so a session lapses after this long without a request.
SESSION_MAX_AGE_SECONDS = 30 * 24 * 3600


def new_session_id() -> str:
    """Generate a cryptographically random, URL-safe session id."""
    return secrets.token_urlsafe(32)


class SessionStore(abc.ABC):
    """Storage interface for session credentials, keyed by session id."""

    @abc.abstractmethod
    async def load(self, session_id: str) -> SessionCredential | None:
        """Return the credential stored for *session_id*, or ``None``."""

    @abc.abstractmethod
    async def store(self, session_id: str, credential: SessionCredential) -> None:
        """Insert or replace the credential for *session_id*."""

    @abc.abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Delete the credential for *session_id*.

        Returns ``True`` if a credential was removed.
        """


class InMemorySessionStore(SessionStore):
    """Dict-backed SessionStore for single-process deployments and tests.

    Each entry records when its session was last used. Entries idle for
    longer than *max_age* seconds belong to a browser whose cookie has
    already expired; they are evicted on every ``load`` and ``store``.
    """

    def __init__(
        self,
        max_age: float = SESSION_MAX_AGE_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_age = max_age
        self._clock = clock
        self._entries: dict[str, tuple[SessionCredential, float]] = {}

    def _evict_expired(self, now: float) -> None:
        expired = [sid for sid, (_, seen) in self._entries.items() if now - seen >= self._max_age]
        for sid in expired:
            del self._entries[sid]
        if expired:
            logger.debug("Evicted %d idle session(s)", len(expired))

    async def load(self, session_id: str) -> SessionCredential | None:
        now = self._clock()
        self._evict_expired(now)
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        credential = entry[0]
        self._entries[session_id] = (credential, now)
        return credential

    async def store(self, session_id: str, credential: SessionCredential) -> None:
        now = self._clock()
        self._evict_expired(now)
        self._entries[session_id] = (credential, now)
        logger.debug("Stored credential for session %s...", session_id[:8])

    async def delete(self, session_id: str) -> bool:
        removed = self._entries.pop(session_id, None) is not None
        if removed:
            logger.debug("Deleted credential for session %s...", session_id[:8])
        return removed

    def __len__(self) -> int:
        return len(self._entries)
