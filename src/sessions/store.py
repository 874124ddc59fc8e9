"""In-memory session store for dispatches awaiting a workflow callback.

This module provides the SessionStore class for:
- Registering the conversational context of a dispatched prompt
- Looking up and clearing it when the callback arrives
- TTL-based expiration of sessions whose callback never came
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from src.models import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """Bounded-lifetime map from session id to conversational context.

    Sessions are lost on process restart; a callback for a lost session is
    treated as unknown by the resolver.
    """

    DEFAULT_TTL_SECONDS = 900  # 15 minutes

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the session store.

        Args:
            ttl_seconds: Maximum age of a session before a sweep may drop it.
            clock: Source of monotonic seconds, injectable for tests.
        """
        self._ttl_seconds = self.DEFAULT_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._sessions: dict[str, Session] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def register(self, session: Session) -> Session:
        """Insert a session stamped with the current time.

        An existing entry under the same id is replaced.

        Returns:
            The stored Session, with ``created_at`` set.
        """
        if session.session_id in self._sessions:
            logger.warning("Overwriting existing session %s", session.session_id)
        stored = session.model_copy(update={"created_at": self._clock()})
        self._sessions[stored.session_id] = stored
        return stored

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def clear(self, session_id: str) -> Session | None:
        """Remove a session. Clearing an unknown id is a no-op.

        Returns:
            The removed Session, or None if there was none.
        """
        return self._sessions.pop(session_id, None)

    def sweep(self) -> int:
        """Remove sessions older than the TTL.

        Returns:
            Number of sessions removed.
        """
        cutoff = self._clock() - self._ttl_seconds
        expired = [
            sid for sid, session in self._sessions.items()
            if session.created_at < cutoff
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug("Swept %d expired session(s)", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
