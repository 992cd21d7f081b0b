"""
Tracker Exceptions

Custom exception classes for store access and mutation error handling.
"""

from typing import Any, Optional


class TrackerError(Exception):
    """Base exception for servicer tracker errors"""

    def __init__(self, message: str, code: Optional[str] = None,
                 details: Optional[Any] = None, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details
        self.hint = hint

    @classmethod
    def from_api_error(cls, error: Any, action: str) -> "TrackerError":
        """Wrap a PostgREST APIError, keeping its structured fields"""
        message = getattr(error, "message", None) or str(error) or "Unknown error"
        return cls(
            f"{action} failed: {message}",
            code=getattr(error, "code", None),
            details=getattr(error, "details", None),
            hint=getattr(error, "hint", None),
        )

    def as_log_fields(self) -> dict:
        return {
            "error_message": self.message,
            "error_code": self.code,
            "error_details": self.details,
            "error_hint": self.hint,
        }


class StoreUnavailableError(TrackerError):
    """Exception for an unreachable store or a failed query"""
    pass


class StoreWriteError(TrackerError):
    """Exception for a rejected insert, update or delete"""
    pass


class ReadOnlyModeError(TrackerError):
    """Exception for writes attempted in demo mode"""
    pass


class NotFoundError(TrackerError):
    """Exception for a missing customer, task or sub-category"""
    pass


class DuplicateSubmissionError(TrackerError):
    """Exception for a create operation submitted while one is in flight"""
    pass
