"""
Session state and session store interfaces.
"""

import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from typing import Any, AsyncContextManager, Dict, Optional
from cas_gate.models.schemas import Receipt


@dataclass
class SessionState:
    """Per-session authentication state, mutated only by the gate."""
    receipt: Optional[Receipt] = None
    receipt_fresh: bool = False
    receipt_fresh_before_redirect: bool = False
    gateway_attempted: bool = False
    ticket_retry_count: int = 0

    @property
    def username(self) -> Optional[str]:
        """Username of the cached receipt; marks a prior successful authentication."""
        if self.receipt is None:
            return None
        return self.receipt.username

    def clear(self) -> None:
        """Drop every attribute, as when CAS revokes the session."""
        self.receipt = None
        self.receipt_fresh = False
        self.receipt_fresh_before_redirect = False
        self.gateway_attempted = False
        self.ticket_retry_count = 0

    def store_receipt(self, receipt: Receipt) -> None:
        """Record a freshly validated receipt."""
        self.receipt = receipt
        self.receipt_fresh = True
        self.receipt_fresh_before_redirect = True
        self.gateway_attempted = False
        self.ticket_retry_count = 0

    def consume_freshness(self) -> None:
        """Clear one freshness flag: the pre-redirect one first, then the other."""
        if self.receipt_fresh_before_redirect:
            self.receipt_fresh_before_redirect = False
        elif self.receipt_fresh:
            self.receipt_fresh = False

    def take_over(self, other: "SessionState") -> None:
        """Copy every attribute of another state into this one."""
        for field in fields(self):
            setattr(self, field.name, getattr(other, field.name))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "receipt": self.receipt.model_dump() if self.receipt else None,
            "receipt_fresh": self.receipt_fresh,
            "receipt_fresh_before_redirect": self.receipt_fresh_before_redirect,
            "gateway_attempted": self.gateway_attempted,
            "ticket_retry_count": self.ticket_retry_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionState":
        receipt_data = data.get("receipt")
        return cls(
            receipt=Receipt(**receipt_data) if receipt_data else None,
            receipt_fresh=bool(data.get("receipt_fresh", False)),
            receipt_fresh_before_redirect=bool(data.get("receipt_fresh_before_redirect", False)),
            gateway_attempted=bool(data.get("gateway_attempted", False)),
            ticket_retry_count=int(data.get("ticket_retry_count", 0)),
        )


class SessionStore(ABC):
    """Abstract base class for session state backends."""

    @abstractmethod
    def session(self, session_id: str) -> AsyncContextManager[SessionState]:
        """
        Open a session for a read-modify-write cycle.

        The returned context manager holds the session's lock while it is
        open, yields the current SessionState (a new, empty one if the id is
        unknown) and persists the state when the block exits without error.

        Args:
            session_id: Opaque session identifier

        Returns:
            Async context manager yielding the SessionState

        Raises:
            SessionStoreError: If the backend is unavailable
        """
        pass

    @abstractmethod
    async def exists(self, session_id: str) -> bool:
        """
        Check whether a session id names a live session.

        Ids that were never minted by this store, or whose session has
        expired, are unknown and must not be adopted.

        Raises:
            SessionStoreError: If the backend is unavailable
        """
        pass

    @abstractmethod
    async def peek(self, session_id: str) -> Optional[SessionState]:
        """
        Read a session without locking it or saving it back.

        Args:
            session_id: Opaque session identifier

        Returns:
            A copy of the stored state, or None if the session does not exist

        Raises:
            SessionStoreError: If the backend is unavailable
        """
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """
        Delete a session.

        Args:
            session_id: Opaque session identifier

        Returns:
            True if a session was deleted, False if it did not exist
        """
        pass

    def new_session_id(self) -> str:
        """Mint a new opaque session identifier."""
        return secrets.token_urlsafe(32)

    async def rotate(self, state: SessionState) -> str:
        """
        Move an open session's state to a newly minted id.

        Call this while the old session is still open. ``state`` is emptied,
        so the old id is saved without it and can be deleted once closed.

        Args:
            state: The state yielded by the currently open session

        Returns:
            The new session id
        """
        new_id = self.new_session_id()
        async with self.session(new_id) as moved:
            moved.take_over(state)
        state.clear()
        return new_id

    async def close(self) -> None:
        """Release backend resources."""
        pass
