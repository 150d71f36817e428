"""
Adapter interfaces and implementations for cas-gate.
"""

from .logout import LogoutStore, LogoutStoreKind
from .sessions import SessionState, SessionStore
from .validator import ReceiptValidator

__all__ = [
    "LogoutStore",
    "LogoutStoreKind",
    "SessionState",
    "SessionStore",
    "ReceiptValidator",
]
