"""
Transactional email for the Crime Report Kenya platform.

Provides:
- Validated event payloads for every notification kind
- HTML templates sharing one page shell
- SMTP and MailDiver transports
- The notification dispatcher with readiness tracking and settle-all fan-out
"""

from .dispatcher import DispatchResult, DispatcherState, NotificationDispatcher, ServiceStatus
from .errors import (
    DeliveryError,
    NotificationError,
    RecipientLookupError,
    ServiceNotReadyError,
    TransportError,
)
from .transports import MailDiverTransport, MailTransport, OutgoingEmail, SMTPTransport, create_transport

__all__ = [
    'DispatchResult',
    'DispatcherState',
    'NotificationDispatcher',
    'ServiceStatus',
    'DeliveryError',
    'NotificationError',
    'RecipientLookupError',
    'ServiceNotReadyError',
    'TransportError',
    'MailDiverTransport',
    'MailTransport',
    'OutgoingEmail',
    'SMTPTransport',
    'create_transport',
]
