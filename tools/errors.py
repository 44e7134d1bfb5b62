from typing import Any, Optional


class LeadError(Exception):
    """Base class for errors that end up shaped into an HTTP response."""

    status: Optional[int] = 500

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class ValidationError(LeadError):
    """Missing or invalid required input."""

    status = 400


class ConfigurationError(LeadError):
    """CRM URL or credentials are not configured."""

    status = 500


class DownstreamError(LeadError):
    """LeadSquared rejected the request or could not be reached."""

    status = None

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        reason: Optional[str] = None,
        body: Any = None,
    ):
        super().__init__(message, status)
        self.reason = reason
        self.body = body


class NotificationError(LeadError):
    """Outbound email failed. Logged by the notifier, never returned to callers."""


class PayloadTooLargeError(LeadError):
    """Request body exceeds the accepted size."""

    status = 413
