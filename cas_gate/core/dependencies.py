"""
FastAPI dependency injection for cas-gate.
"""

from typing import Optional
from fastapi import Depends, HTTPException, Request
from cas_gate.core.gate import AuthGate
from cas_gate.models.schemas import Receipt

# Global instance (initialized by the application)
_gate: Optional[AuthGate] = None


def initialize_gate(gate: Optional[AuthGate]) -> None:
    """
    Initialize the global gate instance.

    This should be called during application startup, and with None at shutdown.
    """
    global _gate
    _gate = gate


def is_gate_initialized() -> bool:
    """True once the application has built its gate."""
    return _gate is not None


def get_gate() -> AuthGate:
    """Get the current authentication gate."""
    if _gate is None:
        raise HTTPException(
            status_code=500,
            detail="Authentication gate not initialized"
        )
    return _gate


def remote_user_for(receipt: Receipt, attribute: Optional[str] = None) -> str:
    """
    Name to report as the remote user for a receipt.

    Args:
        receipt: The session's receipt
        attribute: Released attribute to use instead of the username

    Returns:
        The attribute's first value, or the username if it is not released
    """
    if attribute:
        value = receipt.attribute(attribute)
        if value:
            return value
    return receipt.username


async def get_current_receipt(request: Request) -> Receipt:
    """
    Get the receipt the gate attached to this request.

    Raises:
        HTTPException: If the request carries no authenticated identity
    """
    receipt = getattr(request.state, "cas_receipt", None)
    if receipt is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return receipt


async def get_remote_user(
    receipt: Receipt = Depends(get_current_receipt),
    gate: AuthGate = Depends(get_gate)
) -> str:
    """Get the remote user name for the authenticated request."""
    return remote_user_for(receipt, gate.config.remote_user_attribute)
