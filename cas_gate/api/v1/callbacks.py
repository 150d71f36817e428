"""
CAS proxy-granting ticket callback endpoint.
"""

import logging
from urllib.parse import urlsplit
from fastapi import FastAPI, Request
from cas_gate.models.schemas import ProxyCallbackResponse
from cas_gate.observability.logging import ticket_hint

logger = logging.getLogger(__name__)


async def proxy_callback(request: Request) -> ProxyCallbackResponse:
    """Acknowledge delivery of a proxy-granting ticket."""
    pgt_iou = request.query_params.get("pgtIou")
    if pgt_iou is None and request.method == "POST":
        form = await request.form()
        pgt_iou = form.get("pgtIou")
    logger.info(
        "Proxy-granting ticket delivered",
        extra={"pgt_iou": ticket_hint(pgt_iou), "event": "proxy_callback"}
    )
    return ProxyCallbackResponse()


def register_proxy_callback(app: FastAPI, proxy_callback_url: str) -> str:
    """
    Serve the proxy callback at the path of the configured callback URL.

    Returns:
        The registered path
    """
    path = urlsplit(proxy_callback_url).path or "/"
    app.add_api_route(
        path,
        proxy_callback,
        methods=["GET", "POST"],
        response_model=ProxyCallbackResponse,
        tags=["CAS"]
    )
    return path
