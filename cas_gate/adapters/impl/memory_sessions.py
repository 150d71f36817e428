"""
In-process session store.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional
from cas_gate.adapters.sessions import SessionState, SessionStore

SWEEP_INTERVAL = 60.0


class InMemorySessionStore(SessionStore):
    """
    Session states kept in a dict, one asyncio lock per session.

    A session that has not been saved for ``duration`` seconds expires.
    Expired sessions are swept, together with their locks, at most once
    per ``SWEEP_INTERVAL`` seconds as the store is used. A lock only lives
    while its session exists or a request is using it.
    """

    def __init__(self, duration: Optional[float] = 7200):
        """
        Initialize the store.

        Args:
            duration: Session lifetime in seconds, refreshed on every save;
                None keeps sessions until they are deleted
        """
        self.sessions: Dict[str, SessionState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._saved_at: Dict[str, float] = {}
        self._duration = duration
        self._next_sweep = 0.0

    def _expired(self, session_id: str, now: float) -> bool:
        saved_at = self._saved_at.get(session_id)
        if self._duration is None or saved_at is None:
            return False
        return now - saved_at >= self._duration

    def _live(self, session_id: str) -> Optional[SessionState]:
        if self._expired(session_id, time.monotonic()):
            return None
        return self.sessions.get(session_id)

    def _evict_expired(self) -> None:
        now = time.monotonic()
        if self._duration is None or now < self._next_sweep:
            return
        self._next_sweep = now + min(self._duration, SWEEP_INTERVAL)

        stale = [sid for sid in self._saved_at if self._expired(sid, now)]
        for session_id in stale:
            if session_id in self._lock_users:
                continue
            self.sessions.pop(session_id, None)
            self._saved_at.pop(session_id, None)
            self._locks.pop(session_id, None)

    def _acquire_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        return lock

    def _release_lock(self, session_id: str) -> None:
        users = self._lock_users.pop(session_id) - 1
        if users:
            self._lock_users[session_id] = users
        elif session_id not in self.sessions:
            self._locks.pop(session_id, None)

    @asynccontextmanager
    async def session(self, session_id: str) -> AsyncIterator[SessionState]:
        """Open a session under its lock; changes are kept on clean exit."""
        self._evict_expired()
        lock = self._acquire_lock(session_id)
        try:
            async with lock:
                current = self._live(session_id)
                # Work on a copy so an exception inside the block leaves the stored state untouched
                state = SessionState(**vars(current)) if current else SessionState()
                yield state
                self.sessions[session_id] = state
                self._saved_at[session_id] = time.monotonic()
        finally:
            self._release_lock(session_id)

    async def exists(self, session_id: str) -> bool:
        """Check whether a session id names a live session."""
        self._evict_expired()
        return self._live(session_id) is not None

    async def peek(self, session_id: str) -> Optional[SessionState]:
        """Read a session without locking it or refreshing its lifetime."""
        current = self._live(session_id)
        return SessionState(**vars(current)) if current else None

    async def delete(self, session_id: str) -> bool:
        """Delete a session."""
        lock = self._acquire_lock(session_id)
        try:
            async with lock:
                existed = self.sessions.pop(session_id, None) is not None
                self._saved_at.pop(session_id, None)
        finally:
            self._release_lock(session_id)
        return existed

    def get(self, session_id: str) -> Optional[SessionState]:
        """Peek at a stored session without locking (for testing)."""
        return self.sessions.get(session_id)
