"""
Exception hierarchy shared across the data source pipeline
"""

from typing import Optional


class ConfigurationError(Exception):
    """Raised when a declaration or setting is invalid. Never retried."""
    pass


class ExternalAPIError(Exception):
    """
    Raised when a request to the external service fails

    Exposes the HTTP status and the underlying response (when one was
    received) so callers can decide whether to reschedule the work.
    """

    def __init__(self, message: str, status: Optional[int] = None, response=None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.response = response


class IncompleteResultError(Exception):
    """Raised when a caller requires a complete result but retrieval is pending"""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result
