"""
Process-lifetime conversation memory.

Each session owns an append-only transcript and a separate list of facts.  Sessions are created
lazily on first access and are never deleted.  Mutations of one session are serialized by that
session's lock; unrelated sessions never wait on each other.
"""

from __future__ import annotations

import logging
from dataclasses import (
    dataclass,
    field,
)
from threading import Lock
from typing import (
    Dict,
    List,
    TypeVar,
)

from llmchat.core.schema import (
    ChatMessage,
    ChatRole,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _SessionLog:
    """Append-only state of one session, guarded by its own lock."""

    lock: Lock = field(default_factory=Lock)
    messages: List[ChatMessage] = field(default_factory=list)
    facts: List[str] = field(default_factory=list)


def _tail(items: List[T], limit: int) -> List[T]:
    if limit <= 0:
        return []
    return list(items[-limit:])


class InMemoryStore:
    """Per-session transcript and fact store."""

    def __init__(self) -> None:
        self._guard = Lock()  # only protects the session table itself
        self._sessions: Dict[str, _SessionLog] = {}

    def _session(self, session_id: str) -> _SessionLog:
        with self._guard:
            log = self._sessions.get(session_id)
            if log is None:
                log = self._sessions[session_id] = _SessionLog()
            return log

    # ------------------------------------------------------------------ #
    # Transcript
    # ------------------------------------------------------------------ #
    async def append(self, session_id: str, role: ChatRole | str, content: str) -> None:
        """Add one message to the end of the session's log."""
        message = ChatMessage(role=ChatRole.parse(role), content=content)
        log = self._session(session_id)
        with log.lock:
            log.messages.append(message)
        logger.debug("Appended %s message to session %s", message.role.value, session_id)

    async def recent(self, session_id: str, limit: int = 50) -> List[ChatMessage]:
        """Return the last *limit* messages of the session in original order."""
        log = self._session(session_id)
        with log.lock:
            return _tail(log.messages, limit)

    # ------------------------------------------------------------------ #
    # Facts
    # ------------------------------------------------------------------ #
    async def add_fact(self, session_id: str, note: str) -> None:
        """Record a durable note about the session."""
        log = self._session(session_id)
        with log.lock:
            log.facts.append(note)
        logger.debug("Recorded fact for session %s", session_id)

    async def recent_facts(self, session_id: str, limit: int = 10) -> List[str]:
        """Return the last *limit* facts of the session in original order."""
        log = self._session(session_id)
        with log.lock:
            return _tail(log.facts, limit)

    # Convenience for the API / admin
    def sessions(self) -> List[str]:
        """Return every session id that has been touched so far."""
        with self._guard:
            return list(self._sessions)
