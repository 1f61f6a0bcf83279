"""
Conversation Session Store

Keeps one DataAnalyst per conversation id so history survives between
requests. Bounded by size (least recently used is evicted first) and by idle
time.

A session remembers the permissions fingerprint it was built with; when the
caller presents a config with a different fingerprint, the conversation is
rebuilt so no tool ever runs under a stale policy.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

from src.core.config import settings
from src.core.logging import get_logger
from src.core.permissions import PermissionsConfig, fingerprint
from src.services.analyst import DataAnalyst

logger = get_logger(__name__)


@dataclass
class Session:
    analyst: DataAnalyst
    permissions_fingerprint: str
    last_used: float = field(default_factory=time.monotonic)
    # Serializes turns on one conversation
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


AnalystFactory = Callable[[PermissionsConfig], DataAnalyst]


class SessionStore:
    """
    LRU + TTL map of conversation id to Session.

    THREAD-SAFE: every operation holds the store lock.

    Args:
        max_sessions: Most conversations kept at once (defaults to settings.session_max_conversations)
        ttl_seconds: Idle time before a conversation expires (defaults to settings.session_ttl_seconds)
        clock: Monotonic time source (overridable in tests)
    """

    def __init__(
        self,
        max_sessions: int | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_sessions = max_sessions or settings.session_max_conversations
        self.ttl_seconds = ttl_seconds or settings.session_ttl_seconds
        self._clock = clock
        self._sessions: OrderedDict[str, Session] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _expired(self, session: Session) -> bool:
        return self._clock() - session.last_used > self.ttl_seconds

    def _purge_expired(self) -> None:
        expired = [key for key, session in self._sessions.items() if self._expired(session)]
        for key in expired:
            del self._sessions[key]
        if expired:
            logger.debug(f"Expired {len(expired)} idle conversation(s)")

    def get(self, conversation_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(conversation_id)
            if session is None:
                return None
            if self._expired(session):
                del self._sessions[conversation_id]
                return None
            session.last_used = self._clock()
            self._sessions.move_to_end(conversation_id)
            return session

    def put(self, conversation_id: str, session: Session) -> None:
        with self._lock:
            session.last_used = self._clock()
            self._sessions[conversation_id] = session
            self._sessions.move_to_end(conversation_id)
            self._purge_expired()
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.debug(f"Evicted conversation {evicted}")

    def invalidate(self, conversation_id: str) -> bool:
        """Drop a conversation. Returns True if it existed."""
        with self._lock:
            return self._sessions.pop(conversation_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def get_or_create(
        self, conversation_id: str, permissions: PermissionsConfig, factory: AnalystFactory
    ) -> Session:
        """
        Return the conversation's session, building a new one when it is
        missing, expired, or bound to a different permissions fingerprint.
        """
        current = fingerprint(permissions)
        session = self.get(conversation_id)

        if session is not None and session.permissions_fingerprint == current:
            return session

        if session is not None:
            logger.info(f"Permissions changed for conversation {conversation_id}; starting fresh")

        session = Session(analyst=factory(permissions), permissions_fingerprint=current)
        self.put(conversation_id, session)
        return session
