"""
Exceptions raised by the live session layer.

Each error carries a client-safe message plus a details dict for the logs.
"""

from typing import Any, Dict, Optional


class LiveSessionError(Exception):
    """Base error for live class / study group coordination."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class PayloadValidationError(LiveSessionError):
    """Raised when an event payload is missing required fields or is malformed."""

    def __init__(self, message: str, event: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        if event:
            details["event"] = event
        super().__init__(message, details)


class PersistenceError(LiveSessionError):
    """Raised when the message/class store cannot complete a write or read."""

