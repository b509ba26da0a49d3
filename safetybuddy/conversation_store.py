"""
Conversation Store
==================
In-memory session registry. Each session id maps to exactly one
ConversationContext whose message list only ever grows.

All reads and writes go through a single lock so concurrent requests for
the same session cannot lose messages or create duplicate contexts. The
lock is held only for the duration of each store call; callers must not
hold it across the provider call.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from safetybuddy.models import ChatMessage, ConversationContext, InjuryRecord

logger = logging.getLogger(__name__)


class ConversationStore:
    """Holds per-session history and derived state.

    Attributes:
        session_ttl_seconds: Sessions idle longer than this are evicted on
            the next get_or_create. 0 disables eviction.
    """

    def __init__(self, session_ttl_seconds: int = 0) -> None:
        self.session_ttl_seconds = session_ttl_seconds
        self._contexts: dict[str, ConversationContext] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get_or_create(self, session_id: Optional[str] = None) -> ConversationContext:
        """Return the context for session_id, creating it if needed.

        Args:
            session_id: Existing or client-chosen id. When None, a new
                uuid4 id is generated.

        Returns:
            The (possibly new) ConversationContext.
        """
        if self.session_ttl_seconds > 0:
            self.evict_idle()

        sid = session_id or str(uuid4())
        with self._lock:
            context = self._contexts.get(sid)
            if context is None:
                context = ConversationContext(session_id=sid)
                self._contexts[sid] = context
                logger.info("Created session %s", sid)
            return context

    def get(self, session_id: str) -> Optional[ConversationContext]:
        with self._lock:
            return self._contexts.get(session_id)

    def clear(self, session_id: str) -> bool:
        """Remove a session entirely. Returns False if it did not exist."""
        with self._lock:
            removed = self._contexts.pop(session_id, None)
        if removed is not None:
            logger.info("Cleared session %s", session_id)
            return True
        return False

    def evict_idle(self) -> int:
        """Drop sessions idle for longer than session_ttl_seconds.

        Returns:
            Number of sessions removed.
        """
        if self.session_ttl_seconds <= 0:
            return 0
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.session_ttl_seconds)
        with self._lock:
            stale = [
                sid for sid, ctx in self._contexts.items() if ctx.updated_at < cutoff
            ]
            for sid in stale:
                del self._contexts[sid]
        if stale:
            logger.info("Evicted %d idle session(s).", len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append(self, session_id: str, *messages: ChatMessage) -> bool:
        """Append messages to a session's history, in the order given.

        Returns:
            False (and appends nothing) if the session is unknown.
        """
        with self._lock:
            context = self._contexts.get(session_id)
            if context is None:
                logger.warning("append to unknown session %s ignored", session_id)
                return False
            context.messages.extend(messages)
            context.updated_at = datetime.now(timezone.utc)
            return True

    def mark_emergency(self, session_id: str) -> None:
        with self._lock:
            context = self._contexts.get(session_id)
            if context is not None:
                context.emergency_detected = True

    def set_current_injury(self, session_id: str, injury: InjuryRecord) -> None:
        with self._lock:
            context = self._contexts.get(session_id)
            if context is not None:
                context.current_injury = injury

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def recent_messages(self, session_id: str, limit: int) -> list[ChatMessage]:
        """Snapshot of the last `limit` messages, oldest first."""
        with self._lock:
            context = self._contexts.get(session_id)
            if context is None or limit <= 0:
                return []
            return list(context.messages[-limit:])

    def message_count(self, session_id: str) -> int:
        """Number of recorded messages; 0 for an unknown session."""
        with self._lock:
            context = self._contexts.get(session_id)
            return len(context.messages) if context is not None else 0
