"""
Structured logging setup for cas-gate.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message'
}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Fields passed through ``extra``
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    log_file: Optional[str] = None
) -> None:
    """
    Setup application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format_type: Format type (json, text)
        log_file: Optional log file path
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if format_type == "json":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logging.getLogger("uvicorn.access").disabled = True
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)


def ticket_hint(ticket: Optional[str]) -> Optional[str]:
    """Shorten a ticket for logs; full tickets are bearer credentials."""
    if not ticket:
        return ticket
    return ticket[:8] + "..."


class GateLogger:
    """Logs the decisions the gate makes for each request."""

    def __init__(self, logger_name: str = "cas_gate.gate"):
        self.logger = get_logger(logger_name)

    def log_passthrough(self, path: str, reason: str, user: Optional[str] = None):
        """Log a request passed through to the protected resource."""
        self.logger.debug(
            "Request passed through",
            extra={
                "path": path,
                "reason": reason,
                "user": user,
                "event": "passthrough"
            }
        )

    def log_redirect(self, path: str, location: str, reason: str):
        """Log a redirect to CAS or back to the service."""
        self.logger.debug(
            "Redirecting browser",
            extra={
                "path": path,
                "location": location,
                "reason": reason,
                "event": "redirect"
            }
        )

    def log_validation(
        self,
        ticket: str,
        service: str,
        success: bool,
        duration_ms: float,
        user: Optional[str] = None,
        reason: Optional[str] = None
    ):
        """Log a ticket validation attempt."""
        level = logging.INFO if success else logging.WARNING
        message = "Ticket validated" if success else "Ticket validation failed"

        self.logger.log(
            level,
            message,
            extra={
                "ticket": ticket_hint(ticket),
                "service": service,
                "success": success,
                "duration_ms": duration_ms,
                "user": user,
                "reason": reason,
                "event": "ticket_validation"
            }
        )

    def log_retry(self, attempt: int, limit: int):
        """Log a re-request for a new ticket after an invalid one."""
        self.logger.warning(
            f"Requesting a new ticket (attempt {attempt} of {limit})",
            extra={
                "attempt": attempt,
                "limit": limit,
                "event": "ticket_retry"
            }
        )

    def log_failure(self, path: str, error: Exception):
        """Log a request terminated with an error."""
        self.logger.error(
            f"Request failed: {error}",
            extra={
                "path": path,
                "error_type": type(error).__name__,
                "event": "gate_failure"
            }
        )


class AuditLogger:
    """Security audit logging for session revocation and policy decisions."""

    def __init__(self, logger_name: str = "cas_gate.audit"):
        self.logger = get_logger(logger_name)

    def log_logout_notification(self, ticket: str):
        """Log a single-logout notification received from CAS."""
        self.logger.info(
            "Ticket queued for logout",
            extra={
                "ticket": ticket_hint(ticket),
                "event": "logout_notification"
            }
        )

    def log_session_revoked(self, user: str, ticket: str):
        """Log a session cleared because its ticket was logged out."""
        self.logger.info(
            f"Session for user {user} revoked by single logout",
            extra={
                "user": user,
                "ticket": ticket_hint(ticket),
                "event": "session_revoked"
            }
        )

    def log_policy_rejection(self, user: str, reason: str, proxying_service: Optional[str] = None):
        """Log a receipt rejected by the renew/proxy policy."""
        self.logger.warning(
            f"Receipt for user {user} rejected: {reason}",
            extra={
                "user": user,
                "reason": reason,
                "proxying_service": proxying_service,
                "event": "policy_rejection"
            }
        )
