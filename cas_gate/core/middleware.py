"""
Starlette middleware that runs every request through the AuthGate.
"""

import logging
import time
from typing import Optional
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from starlette.authentication import AuthCredentials, BaseUser
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from cas_gate.core.dependencies import get_gate, remote_user_for
from cas_gate.core.gate import AuthGate, GateAction, GateResult
from cas_gate.core.request import GateRequest
from cas_gate.models.schemas import Receipt

logger = logging.getLogger(__name__)

DEFAULT_COOKIE_NAME = "cas_gate_session"

# Operational endpoints are never gated
BYPASS_PATHS = frozenset(["/health", "/healthz", "/readyz", "/metrics"])


class CasUser(BaseUser):
    """Request user backed by a CAS receipt; unauthenticated without one."""

    def __init__(self, receipt: Optional[Receipt] = None, remote_user: Optional[str] = None):
        self.receipt = receipt
        self.remote_user = remote_user

    @property
    def is_authenticated(self) -> bool:
        return self.receipt is not None

    @property
    def display_name(self) -> str:
        return self.remote_user or ""

    @property
    def identity(self) -> str:
        return self.receipt.username if self.receipt else ""


class CasGateMiddleware(BaseHTTPMiddleware):
    """Turns GateResults into responses and exposes the identity downstream."""

    def __init__(
        self,
        app: ASGIApp,
        gate: Optional[AuthGate] = None,
        cookie_name: str = DEFAULT_COOKIE_NAME
    ):
        """
        Args:
            app: Wrapped ASGI application
            gate: Gate to use; the application-wide one from ``get_gate`` if omitted
            cookie_name: Cookie carrying the session id
        """
        super().__init__(app)
        self.gate = gate
        self.cookie_name = cookie_name

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.time()
        if request.url.path in BYPASS_PATHS:
            return await call_next(request)

        session_id = request.cookies.get(self.cookie_name)

        try:
            gate = self.gate or get_gate()
            result = await gate.handle(GateRequest.from_starlette(request), session_id)
        except HTTPException as e:
            return JSONResponse(status_code=e.status_code, content={"detail": e.detail})
        except Exception as e:
            logger.error(f"Gate error: {e}", exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error"}
            )

        if result.action is GateAction.CONTINUE:
            self._expose_identity(request, gate, result)
            response = await call_next(request)
        elif result.action is GateAction.REDIRECT:
            response = RedirectResponse(result.location, status_code=302)
        elif result.action is GateAction.HANDLED:
            response = Response(status_code=200)
        else:
            response = self._failure_response(result)

        if result.session_id and result.session_id != session_id:
            response.set_cookie(
                self.cookie_name,
                result.session_id,
                httponly=True,
                samesite="lax",
                secure=request.url.scheme == "https"
            )

        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response

    @staticmethod
    def _expose_identity(request: Request, gate: AuthGate, result: GateResult) -> None:
        receipt = result.receipt
        request.state.cas_receipt = receipt
        request.state.cas_receipt_fresh = result.receipt_fresh
        request.state.cas_user = receipt.username if receipt else None

        if gate.config.wrap_request:
            if receipt is not None:
                user = CasUser(receipt, remote_user_for(receipt, gate.config.remote_user_attribute))
                request.scope["auth"] = AuthCredentials(["authenticated"])
            else:
                user = CasUser()
                request.scope["auth"] = AuthCredentials()
            request.scope["user"] = user

    @staticmethod
    def _failure_response(result: GateResult) -> JSONResponse:
        content = {"detail": str(result.error), "error": type(result.error).__name__}
        if result.error.__cause__ is not None:
            content["cause"] = str(result.error.__cause__)
        return JSONResponse(status_code=500, content=content)
