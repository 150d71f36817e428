"""
Logout store interfaces.
"""

from abc import ABC, abstractmethod
from enum import Enum


class LogoutStoreKind(Enum):
    """Where tickets pending forced logout are kept."""
    LOCAL = "local"
    CLUSTERED = "clustered"


class LogoutStore(ABC):
    """
    Abstract set of service tickets pending forced logout.

    A ticket lands here when CAS sends a single-logout notification for it.
    The gate checks every cached receipt against the store, so an entry is
    consumed the next time the owning session makes a request. Entries are
    never removed explicitly; matching an already logged-out ticket again is
    harmless because the session has lost its receipt by then.
    """

    @abstractmethod
    async def insert(self, ticket: str) -> None:
        """
        Mark a ticket as pending logout.

        Inserting the same ticket twice has the same effect as inserting it once.

        Args:
            ticket: The service ticket, without the logout prefix

        Raises:
            LogoutStoreError: If the backing store is unavailable
        """
        pass

    @abstractmethod
    async def contains(self, ticket: str) -> bool:
        """
        Check whether a ticket is pending logout.

        Args:
            ticket: The service ticket

        Returns:
            True if a logout notification for the ticket has been seen

        Raises:
            LogoutStoreError: If the backing store is unavailable
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass
