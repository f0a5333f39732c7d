"""
Governor error types.

Admission refusals, provider throttling and shutdown are distinct failures
so callers can branch on them without inspecting messages.
"""

from typing import Optional


class GovernorError(Exception):
    """Base class for errors raised by the governor and ledger."""


class AdmissionRejected(GovernorError):
    """Raised when a request can never be admitted by waiting.

    Covers budget refusals and requests that alone exceed a rate ceiling.
    """
    def __init__(self, message: str, reason: Optional[str] = None, status=None):
        super().__init__(message)
        self.reason = reason or message
        self.status = status


class ThrottleError(GovernorError):
    """Raised when the provider kept throttling after all retries."""
    def __init__(self, message: str, retries: int, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retries = retries
        self.retry_after = retry_after


class GovernorDestroyedError(GovernorError):
    """Raised for queued or new work once the governor has been destroyed."""
