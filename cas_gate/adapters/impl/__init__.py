"""
Default adapter implementations for cas-gate.
"""

from .memory_logout import InMemoryLogoutStore
from .redis_logout import RedisLogoutStore, create_redis_client
from .memory_sessions import InMemorySessionStore
from .redis_sessions import RedisSessionStore
from .cas_validator import CasReceiptValidator

__all__ = [
    "InMemoryLogoutStore",
    "RedisLogoutStore",
    "create_redis_client",
    "InMemorySessionStore",
    "RedisSessionStore",
    "CasReceiptValidator",
]
