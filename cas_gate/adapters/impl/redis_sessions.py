"""
Redis-backed session store for clustered deployments.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
from redis.exceptions import LockError, RedisError
from cas_gate.adapters.sessions import SessionState, SessionStore
from cas_gate.core.exceptions import SessionStoreError

logger = logging.getLogger(__name__)


class RedisSessionStore(SessionStore):
    """
    Session states stored as JSON in Redis.

    Every read-modify-write runs under a Redis lock named after the session,
    so concurrent requests for one session on different nodes are applied
    one at a time. The lock expires after ``lock_timeout`` seconds, which
    bounds how long a crashed node can hold a session.
    """

    def __init__(
        self,
        client: Any,
        key_prefix: str = "cas-gate:session:",
        duration: int = 7200,
        lock_timeout: float = 30.0,
        lock_wait: float = 10.0
    ):
        """
        Initialize the Redis session store.

        Args:
            client: A ``redis.asyncio.Redis`` or ``RedisCluster`` client
            key_prefix: Prefix for session keys
            duration: Session lifetime in seconds, refreshed on every save
            lock_timeout: Seconds after which an abandoned lock expires
            lock_wait: Seconds to wait for a busy session before failing
        """
        self.r = client
        self.key_prefix = key_prefix
        self._duration = duration
        self._lock_timeout = lock_timeout
        self._lock_wait = lock_wait

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    def _lock_name(self, session_id: str) -> str:
        return f"{self.key_prefix}lock:{session_id}"

    async def _read(self, session_id: str) -> Optional[SessionState]:
        raw = await self.r.get(self._key(session_id))
        if not raw:
            return None
        try:
            return SessionState.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.error('Discarding corrupt session %s: %s', session_id[:8], e)
            return None

    async def _load(self, session_id: str) -> SessionState:
        return await self._read(session_id) or SessionState()

    async def _save(self, session_id: str, state: SessionState) -> None:
        await self.r.set(
            self._key(session_id),
            json.dumps(state.to_dict()),
            ex=self._duration
        )

    @asynccontextmanager
    async def session(self, session_id: str) -> AsyncIterator[SessionState]:
        """Open a session under its distributed lock; changes are saved on clean exit."""
        lock = self.r.lock(
            self._lock_name(session_id),
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_wait
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            raise SessionStoreError(f'Failed to lock session: {e}') from e
        if not acquired:
            raise SessionStoreError('Timed out waiting for session lock')

        try:
            try:
                state = await self._load(session_id)
            except RedisError as e:
                raise SessionStoreError(f'Failed to load session: {e}') from e
            yield state
            try:
                await self._save(session_id, state)
            except RedisError as e:
                raise SessionStoreError(f'Failed to save session: {e}') from e
        finally:
            try:
                await lock.release()
            except (LockError, RedisError) as e:
                # The lock expired while we held it; the save above may have raced another node
                logger.warning('Session lock for %s was lost: %s', session_id[:8], e)

    async def exists(self, session_id: str) -> bool:
        """Check whether a session key is present; expired keys are gone."""
        try:
            return bool(await self.r.exists(self._key(session_id)))
        except RedisError as e:
            raise SessionStoreError(f'Failed to look up session: {e}') from e

    async def peek(self, session_id: str) -> Optional[SessionState]:
        """Read a session without taking its lock or refreshing its expiry."""
        try:
            return await self._read(session_id)
        except RedisError as e:
            raise SessionStoreError(f'Failed to load session: {e}') from e

    async def delete(self, session_id: str) -> bool:
        """Delete a session."""
        try:
            return bool(await self.r.delete(self._key(session_id)))
        except RedisError as e:
            raise SessionStoreError(f'Failed to delete session: {e}') from e

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self.r.aclose()
