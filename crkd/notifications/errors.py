"""
Exceptions raised by the notification dispatcher and mail transports.
"""

from typing import Optional


class NotificationError(Exception):
    """Base class for notification failures."""


class ServiceNotReadyError(NotificationError):
    """The mail transport failed its start-up handshake; nothing was sent."""

    def __init__(self, message: str = "Email service is not ready"):
        super().__init__(message)


class TransportError(NotificationError):
    """A mail transport rejected or failed to deliver a message."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class DeliveryError(NotificationError):
    """A single send attempt for a dispatcher operation failed."""

    def __init__(self, operation: str, recipient: str, cause: BaseException):
        super().__init__(f"{operation} to {recipient} failed: {cause}")
        self.operation = operation
        self.recipient = recipient
        self.cause = cause


class RecipientLookupError(NotificationError):
    """No recipient could be resolved for an operation."""
