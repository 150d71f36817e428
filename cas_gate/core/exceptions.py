"""
Exception hierarchy for cas-gate.
"""

from typing import Optional


class CasGateError(Exception):
    """Base class for all cas-gate errors."""


class ConfigurationError(CasGateError):
    """Invalid gate configuration. Raised at startup and prevents the gate from initializing."""


class TicketInvalid(CasGateError):
    """CAS reported the ticket as invalid or expired (``INVALID_TICKET``)."""

    def __init__(self, message: str, code: str = "INVALID_TICKET"):
        super().__init__(message)
        self.code = code


class ValidatorError(CasGateError):
    """Ticket validation failed for a reason other than an invalid ticket."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class PolicyRejected(CasGateError):
    """A receipt was obtained but is unacceptable under the renew/proxy policy."""

    def __init__(self, message: str, receipt=None):
        super().__init__(message)
        self.receipt = receipt


class RetryLimitExceeded(CasGateError):
    """Too many consecutive invalid-ticket redirects for one session."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class LogoutStoreError(CasGateError):
    """The logout store backend could not be reached."""


class SessionStoreError(CasGateError):
    """The session store backend could not be reached or returned corrupt data."""
