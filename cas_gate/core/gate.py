"""
Request authentication gate for CAS single sign-on.

For every request the gate decides, in this order, whether to:

1. pass an excluded path through without changing its session;
2. pass a CAS proxy-granting callback through;
3. record a single-logout notification and finish the request;
4. revoke a session whose ticket has been logged out;
5. pass an already authenticated session through;
6. redirect a request without a ticket to the CAS login page;
7. validate a ticket, then redirect back to the same URL without it.

The gate is transport-neutral: it reads a GateRequest and returns a
GateResult that the transport adapter turns into a response.
"""

import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Pattern
from cas_gate.adapters.logout import LogoutStore
from cas_gate.adapters.sessions import SessionState, SessionStore
from cas_gate.adapters.validator import ReceiptValidator
from cas_gate.core.exceptions import (
    ConfigurationError, LogoutStoreError, PolicyRejected, RetryLimitExceeded,
    SessionStoreError, TicketInvalid, ValidatorError
)
from cas_gate.core.request import GateRequest
from cas_gate.core.service_url import ServiceURLResolver
from cas_gate.models.schemas import GateConfig, Receipt
from cas_gate.observability.logging import AuditLogger, GateLogger
from cas_gate.observability.metrics import MetricsCollector, get_metrics_collector
from cas_gate.observability.tracing import get_tracer

LOGOUT_TICKET_PREFIX = "-"

# Invalid tickets re-requested from CAS before giving up
TICKET_RETRY_LIMIT = 3


class GateAction(Enum):
    """What the transport should do with a request."""
    CONTINUE = "continue"
    REDIRECT = "redirect"
    FAIL = "fail"
    HANDLED = "handled"


@dataclass
class GateResult:
    """Outcome of running a request through the gate."""
    action: GateAction
    reason: str
    location: Optional[str] = None
    error: Optional[Exception] = None
    receipt: Optional[Receipt] = None
    receipt_fresh: bool = False
    session_id: Optional[str] = None

    @classmethod
    def proceed(cls, reason: str, receipt: Optional[Receipt] = None,
                receipt_fresh: bool = False) -> "GateResult":
        return cls(GateAction.CONTINUE, reason, receipt=receipt, receipt_fresh=receipt_fresh)

    @classmethod
    def redirect(cls, location: str, reason: str) -> "GateResult":
        return cls(GateAction.REDIRECT, reason, location=location)

    @classmethod
    def fail(cls, error: Exception, reason: str) -> "GateResult":
        return cls(GateAction.FAIL, reason, error=error)

    @classmethod
    def handled(cls, reason: str) -> "GateResult":
        return cls(GateAction.HANDLED, reason)


class AuthGate:
    """CAS authentication state machine."""

    def __init__(
        self,
        config: GateConfig,
        logout_store: LogoutStore,
        session_store: SessionStore,
        validator: ReceiptValidator,
        resolver: Optional[ServiceURLResolver] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        """
        Initialize the gate.

        Args:
            config: Validated gate configuration
            logout_store: Tickets pending forced logout, shared by all sessions
            session_store: Per-session state backend
            validator: Exchanges tickets for receipts
            resolver: Service URL resolver, built from config if omitted
            metrics: Metrics collector, the global one if omitted
        """
        self.config = config
        self.logout_store = logout_store
        self.session_store = session_store
        self.validator = validator
        self.resolver = resolver or ServiceURLResolver(config)
        self.metrics = metrics or get_metrics_collector()
        self.gate_logger = GateLogger()
        self.audit_logger = AuditLogger()
        self.tracer = get_tracer()
        self._exclusions: List[Pattern] = [re.compile(p) for p in config.url_pattern_exclude]
        self._authorized_proxies = frozenset(config.authorized_proxies)

    # Request classification

    def is_excluded(self, path: str) -> bool:
        """True if the whole path matches one of the exclusion patterns."""
        return any(pattern.fullmatch(path) for pattern in self._exclusions)

    def is_proxy_callback(self, request: GateRequest) -> bool:
        """True if this is CAS delivering a proxy-granting ticket to our callback."""
        callback = self.config.proxy_callback_url
        return (
            callback is not None
            and callback.endswith(request.path)
            and "pgtId" in request.params
            and "pgtIou" in request.params
        )

    @staticmethod
    def is_logout_notification(request: GateRequest) -> bool:
        """True if this is a CAS single-logout notification rather than a login."""
        ticket = request.params.get("ticket")
        return (
            not request.is_post
            and ticket is not None
            and ticket.startswith(LOGOUT_TICKET_PREFIX)
        )

    # Receipt policy

    def rejection_reason(self, receipt: Receipt) -> Optional[str]:
        """
        Explain why a receipt is unacceptable, or return None if it is acceptable.

        Raises:
            ValueError: If called without a receipt
        """
        if receipt is None:
            raise ValueError("Cannot evaluate a null receipt.")
        if self.config.renew and not receipt.primary_authentication:
            return "renew required but authentication was not primary"
        if receipt.proxied and receipt.proxying_service not in self._authorized_proxies:
            return f"proxying service {receipt.proxying_service} is not authorized"
        return None

    def is_receipt_acceptable(self, receipt: Receipt) -> bool:
        """Is this receipt acceptable evidence of authentication for this path?"""
        return self.rejection_reason(receipt) is None

    # Entry point

    async def handle(self, request: GateRequest, session_id: Optional[str] = None) -> GateResult:
        """
        Decide what to do with a request.

        Args:
            request: The incoming request
            session_id: The caller's session id, None if it has none yet

        Returns:
            GateResult; ``session_id`` is set whenever session state was used.
            It is a freshly minted id if the caller had none or an unknown
            one, and a new id once a ticket validates
        """
        result = await self._decide(request, session_id)
        self.metrics.record_decision(result.action.value, result.reason)

        if result.action is GateAction.CONTINUE:
            self.gate_logger.log_passthrough(
                request.path, result.reason,
                user=result.receipt.username if result.receipt else None
            )
        elif result.action is GateAction.REDIRECT:
            self.gate_logger.log_redirect(request.path, result.location, result.reason)
        elif result.action is GateAction.FAIL:
            self.gate_logger.log_failure(request.path, result.error)
        return result

    async def _decide(self, request: GateRequest, session_id: Optional[str]) -> GateResult:
        if self.is_excluded(request.path):
            return await self._excluded(session_id)

        if self.is_proxy_callback(request):
            return GateResult.proceed("proxy_callback")

        if self.is_logout_notification(request):
            ticket = request.params["ticket"][len(LOGOUT_TICKET_PREFIX):]
            try:
                await self.queue_for_logout(ticket)
            except LogoutStoreError as e:
                return GateResult.fail(e, "logout_store_unavailable")
            return GateResult.handled("logout_notification")

        try:
            # Only ids this store minted are adopted
            if session_id is None or not await self.session_store.exists(session_id):
                session_id = self.session_store.new_session_id()

            rotated_from = None
            async with self.session_store.session(session_id) as state:
                result = await self._authenticate(request, state)
                if result.reason == "ticket_validated":
                    rotated_from = session_id
                    session_id = await self.session_store.rotate(state)
            if rotated_from is not None:
                await self.session_store.delete(rotated_from)
        except LogoutStoreError as e:
            result = GateResult.fail(e, "logout_store_unavailable")
        except SessionStoreError as e:
            result = GateResult.fail(e, "session_store_unavailable")

        result.session_id = session_id
        return result

    async def _excluded(self, session_id: Optional[str]) -> GateResult:
        """
        Pass an excluded request through, carrying the session's identity when wrapping.

        The session is only read: logouts are not reconciled, freshness is
        not consumed and no session id is minted.
        """
        if not self.config.wrap_request or session_id is None:
            return GateResult.proceed("excluded")

        try:
            state = await self.session_store.peek(session_id)
        except SessionStoreError as e:
            return GateResult.fail(e, "session_store_unavailable")

        if state is None:
            return GateResult.proceed("excluded")
        return GateResult.proceed("excluded", receipt=state.receipt)

    async def queue_for_logout(self, ticket: str) -> None:
        """Record that CAS has logged out the session holding ``ticket``."""
        await self.logout_store.insert(ticket)
        self.audit_logger.log_logout_notification(ticket)
        self.metrics.record_logout_notification()

    # Session-bound steps; ``state`` is locked for the duration

    async def _authenticate(self, request: GateRequest, state: SessionState) -> GateResult:
        receipt = state.receipt

        if receipt is not None and await self.logout_store.contains(receipt.service_ticket):
            self.audit_logger.log_session_revoked(receipt.username, receipt.service_ticket)
            self.metrics.record_session_revoked()
            state.clear()
            receipt = None

        ticket = request.ticket

        if ticket is None and receipt is not None and self.is_receipt_acceptable(receipt):
            state.consume_freshness()
            return GateResult.proceed(
                "cached_receipt",
                receipt=receipt,
                receipt_fresh=state.receipt_fresh
            )

        if ticket is None:
            return self._ticket_required(request, state)

        return await self._validate(request, state, ticket)

    def _ticket_required(self, request: GateRequest, state: SessionState) -> GateResult:
        if not state.gateway_attempted:
            return self._redirect_to_login(request, state, "no_ticket")

        # Second pass after a redirect came back without a ticket
        if self.config.gateway or state.username is not None:
            return GateResult.proceed("gateway_passthrough")

        # Unknown state; redirect again. Not rate limited.
        return self._redirect_to_login(request, state, "no_ticket_after_redirect")

    def _redirect_to_login(self, request: GateRequest, state: SessionState, reason: str) -> GateResult:
        try:
            location = self.resolver.login_redirect(request)
        except ConfigurationError as e:
            return GateResult.fail(e, "login_url_missing")
        state.gateway_attempted = True
        return GateResult.redirect(location, reason)

    async def _validate(self, request: GateRequest, state: SessionState, ticket: str) -> GateResult:
        service = self.resolver.service_url(request)
        start_time = time.time()

        try:
            with self.tracer.start_as_current_span("cas.validate_ticket") as span:
                span.set_attribute("cas.service", service)
                receipt = await self.validator.validate(
                    ticket,
                    service,
                    renew=self.config.renew,
                    proxy_callback_url=self.config.proxy_callback_url
                )
        except TicketInvalid as e:
            self._record_validation(ticket, service, start_time, "ticket_invalid", reason=str(e))
            return self._handle_invalid_ticket(request, state, e)
        except ValidatorError as e:
            self._record_validation(ticket, service, start_time, "validator_error", reason=str(e))
            return GateResult.fail(e, "validator_error")
        except Exception as e:
            # Anything the validator did not classify is an "other" failure
            error = ValidatorError(f"Ticket validation failed: {e}")
            error.__cause__ = e
            self._record_validation(ticket, service, start_time, "validator_error", reason=str(e))
            return GateResult.fail(error, "validator_error")

        self._record_validation(ticket, service, start_time, "success", user=receipt.username)

        reason = self.rejection_reason(receipt)
        if reason is not None:
            self.audit_logger.log_policy_rejection(receipt.username, reason, receipt.proxying_service)
            return GateResult.fail(
                PolicyRejected(
                    f"Authentication was technically successful but rejected as a matter "
                    f"of policy: {reason} [user={receipt.username}]",
                    receipt=receipt
                ),
                "policy_rejected"
            )

        state.store_receipt(receipt)
        return GateResult.redirect(self.resolver.redirect_url(request), "ticket_validated")

    def _handle_invalid_ticket(self, request: GateRequest, state: SessionState,
                               error: TicketInvalid) -> GateResult:
        count = state.ticket_retry_count
        limit = TICKET_RETRY_LIMIT
        if count >= limit:
            exceeded = RetryLimitExceeded(
                f"Already re-requested a ticket {count} times; giving up. Last failure: {error}",
                attempts=count
            )
            exceeded.__cause__ = error
            return GateResult.fail(exceeded, "retry_limit_exceeded")

        try:
            location = self.resolver.login_redirect(request)
        except ConfigurationError as e:
            return GateResult.fail(e, "login_url_missing")

        state.ticket_retry_count = count + 1
        self.gate_logger.log_retry(state.ticket_retry_count, limit)
        return GateResult.redirect(location, "ticket_invalid")

    def _record_validation(self, ticket: str, service: str, start_time: float, outcome: str,
                           user: Optional[str] = None, reason: Optional[str] = None) -> None:
        duration = time.time() - start_time
        self.metrics.record_validation(outcome, duration)
        self.gate_logger.log_validation(
            ticket, service, outcome == "success", duration * 1000,
            user=user, reason=reason
        )

    async def close(self) -> None:
        """Release the stores and the validator."""
        await self.validator.close()
        await self.session_store.close()
        await self.logout_store.close()
