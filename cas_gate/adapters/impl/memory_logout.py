"""
Single-process logout store.
"""

import threading
from typing import Set
from cas_gate.adapters.logout import LogoutStore


class InMemoryLogoutStore(LogoutStore):
    """Thread-safe in-process set of tickets pending logout."""

    def __init__(self):
        self._tickets: Set[str] = set()
        self._lock = threading.Lock()

    async def insert(self, ticket: str) -> None:
        """Mark a ticket as pending logout."""
        with self._lock:
            self._tickets.add(ticket)

    async def contains(self, ticket: str) -> bool:
        """Check whether a ticket is pending logout."""
        with self._lock:
            return ticket in self._tickets

    def __len__(self) -> int:
        with self._lock:
            return len(self._tickets)
