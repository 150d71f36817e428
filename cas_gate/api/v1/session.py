"""
Session API: the identity the gate attached to the current request.
"""

from fastapi import APIRouter, Depends, Request
from cas_gate.core.dependencies import get_current_receipt, get_remote_user
from cas_gate.models.schemas import Receipt, SessionInfoResponse

router = APIRouter(tags=["Session"])


@router.get("/session", response_model=SessionInfoResponse)
async def get_session(
    request: Request,
    receipt: Receipt = Depends(get_current_receipt),
    remote_user: str = Depends(get_remote_user)
):
    """
    Describe the authenticated session.

    ``receipt_fresh`` is true only on the first requests after the ticket
    was validated.
    """
    return SessionInfoResponse(
        username=receipt.username,
        remote_user=remote_user,
        primary_authentication=receipt.primary_authentication,
        proxied=receipt.proxied,
        proxying_service=receipt.proxying_service,
        receipt_fresh=getattr(request.state, "cas_receipt_fresh", False),
        attributes=receipt.attributes
    )
