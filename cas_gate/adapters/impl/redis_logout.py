"""
Cluster-replicated logout store backed by Redis.
"""

import logging
from typing import Any, Optional
import redis.asyncio as redis
from redis.asyncio.cluster import RedisCluster
from redis.exceptions import RedisError
from cas_gate.adapters.logout import LogoutStore
from cas_gate.core.exceptions import LogoutStoreError

logger = logging.getLogger(__name__)


def create_redis_client(host: str, port: int, db: int = 0, cluster: bool = False) -> Any:
    """
    Open a Redis client, either a single node or a cluster.

    Connections are made lazily by redis-py when the first command runs, so
    this never blocks.
    """
    logger.debug('New Redis connection at %s, port %s (cluster=%s)', host, port, cluster)
    if cluster:
        return RedisCluster(host=host, port=port, decode_responses=True)
    return redis.Redis(host=host, port=port, db=db, decode_responses=True)


class RedisLogoutStore(LogoutStore):
    """
    Logout store shared by every node through Redis.

    Each pending ticket is its own key so inserts are idempotent and need no
    read-modify-write. Keys expire after ``ttl_seconds``; that is the
    retention policy for tickets nobody came back for. Reads on other nodes
    see an insert as soon as their Redis replica has it.
    """

    def __init__(
        self,
        client: Any,
        key_prefix: str = "cas-gate:logout:",
        ttl_seconds: Optional[int] = 86400
    ):
        """
        Initialize the Redis logout store.

        Args:
            client: A ``redis.asyncio.Redis`` or ``RedisCluster`` client
            key_prefix: Prefix for ticket keys
            ttl_seconds: Expiry for ticket keys, None to keep them forever
        """
        self.r = client
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds

    def _key(self, ticket: str) -> str:
        return f"{self.key_prefix}{ticket}"

    async def insert(self, ticket: str) -> None:
        """Mark a ticket as pending logout."""
        try:
            await self.r.set(self._key(ticket), "1", ex=self.ttl_seconds)
        except RedisError as e:
            raise LogoutStoreError(f'Failed to queue ticket for logout: {e}') from e

    async def contains(self, ticket: str) -> bool:
        """Check whether a ticket is pending logout."""
        try:
            return bool(await self.r.exists(self._key(ticket)))
        except RedisError as e:
            raise LogoutStoreError(f'Failed to check logout queue: {e}') from e

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self.r.aclose()
