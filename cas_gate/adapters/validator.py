"""
Ticket validator interface.
"""

from abc import ABC, abstractmethod
from typing import Optional
from cas_gate.models.schemas import Receipt


class ReceiptValidator(ABC):
    """Abstract base class for exchanging a CAS ticket for a Receipt."""

    @abstractmethod
    async def validate(
        self,
        ticket: str,
        service: str,
        renew: bool = False,
        proxy_callback_url: Optional[str] = None
    ) -> Receipt:
        """
        Validate a ticket against the authentication service.

        Args:
            ticket: The service or proxy ticket presented by the browser
            service: The service URL the ticket was issued for (not encoded)
            renew: Require that the ticket came from fresh credential entry
            proxy_callback_url: Where CAS should deliver a proxy-granting ticket

        Returns:
            The validated Receipt

        Raises:
            TicketInvalid: If CAS reports the ticket invalid or expired
            ValidatorError: For every other failure, including timeouts
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass
