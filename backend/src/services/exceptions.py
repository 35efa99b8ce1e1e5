"""
Custom exceptions for the service and channel layers.

Service errors describe store-level failures that routes translate to HTTP
responses. Dispatch errors describe channel failures; the notification
engine catches them at its boundary so they never reach business logic.
"""

from typing import Any, Optional


class ServiceError(Exception):
    """Base exception for service layer errors."""
    pass


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class ValidationError(ServiceError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


# ============================================================================
# Channel dispatch
# ============================================================================


class DispatchError(Exception):
    """Base exception for channel delivery failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmailDeliveryError(DispatchError):
    """Raised when the email relay rejects or cannot be reached."""
    pass


class PushDeliveryError(DispatchError):
    """Raised when the push provider rejects a targeted send."""
    pass


class PushProviderAuthError(PushDeliveryError):
    """Raised when the client-credentials token exchange fails."""
    pass
