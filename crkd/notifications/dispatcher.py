"""
Notification dispatcher.

Turns validated notification events into rendered HTML mail handed to a
``MailTransport``. Readiness is decided once by ``initialize()``; while the
transport is unavailable every send fails fast with ``ServiceNotReadyError``
without touching the transport.

Every send attempt is bounded by a timeout and by a cap on in-flight sends.
Fan-out operations settle every recipient and return a summary instead of
failing on the first rejected address.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from crkd.config import EmailConfig
from crkd.storage.interfaces import DirectoryStore

from . import templates
from .errors import DeliveryError, RecipientLookupError, ServiceNotReadyError
from .events import (
    AdminAlert,
    AssignmentEmailRequest,
    BlogPublished,
    CaseUpdated,
    ContactFormSubmitted,
    OfficerAssigned,
    SubscriptionConfirmed,
)
from .templates import RenderedEmail
from .transports import MailTransport, OutgoingEmail

logger = structlog.get_logger(__name__)


class DispatcherState(Enum):
    UNINITIALIZED = "uninitialized"
    VERIFYING = "verifying"
    READY = "ready"
    UNAVAILABLE = "unavailable"


@dataclass
class ServiceStatus:
    """Result of a live transport handshake."""
    status: str  # 'ready' or 'error'
    message: str
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'status': self.status, 'message': self.message}
        if self.details is not None:
            data['details'] = self.details
        return data


@dataclass
class RecipientFailure:
    recipient: str
    error: str


@dataclass
class DispatchResult:
    """Outcome of a dispatcher operation."""
    success: bool
    message: str
    sent: int = 0
    failed: int = 0
    failures: List[RecipientFailure] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.sent + self.failed

    def to_dict(self, include_summary: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {'success': self.success, 'message': self.message}
        if include_summary:
            data.update({
                'sent': self.sent,
                'failed': self.failed,
                'failures': [{'recipient': f.recipient, 'error': f.error} for f in self.failures],
            })
        return data


class NotificationDispatcher:
    """
    Sends one kind of email per operation.

    Exactly one send attempt is made per recipient; there is no internal
    retry.
    """

    def __init__(self,
                 transport: MailTransport,
                 directory: DirectoryStore,
                 frontend_url: str = "http://localhost:3000",
                 admin_email: Optional[str] = None,
                 admin_emails: Optional[List[str]] = None,
                 send_timeout_seconds: float = 30.0,
                 max_concurrent_sends: int = 10,
                 metrics=None):
        if send_timeout_seconds <= 0:
            raise ValueError("send_timeout_seconds must be positive")
        if max_concurrent_sends <= 0:
            raise ValueError("max_concurrent_sends must be positive")

        self.transport = transport
        self.directory = directory
        self.frontend_url = frontend_url.rstrip('/')
        self.admin_email = admin_email
        self.admin_emails = list(admin_emails or [])
        self.send_timeout_seconds = send_timeout_seconds
        self.max_concurrent_sends = max_concurrent_sends
        self.metrics = metrics

        self._state = DispatcherState.UNINITIALIZED
        self._semaphore: Optional[asyncio.Semaphore] = None

    @classmethod
    def from_config(cls, transport: MailTransport, directory: DirectoryStore,
                    config: EmailConfig, metrics=None) -> 'NotificationDispatcher':
        return cls(
            transport,
            directory,
            frontend_url=config.frontend_url,
            admin_email=config.admin_email,
            admin_emails=config.admin_emails,
            send_timeout_seconds=config.send_timeout_seconds,
            max_concurrent_sends=config.max_concurrent_sends,
            metrics=metrics
        )

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is DispatcherState.READY

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------
    async def initialize(self) -> DispatcherState:
        """Run the start-up handshake once and fix the dispatcher state."""
        if self._state is not DispatcherState.UNINITIALIZED:
            return self._state

        self._state = DispatcherState.VERIFYING
        status = await self._handshake()
        self._state = DispatcherState.READY if status.status == 'ready' else DispatcherState.UNAVAILABLE
        logger.info("Email service status", state=self._state.value, message=status.message,
                    details=status.details)
        return self._state

    async def get_service_status(self) -> ServiceStatus:
        """Re-run the transport handshake now; does not change the dispatcher state."""
        return await self._handshake()

    async def _handshake(self) -> ServiceStatus:
        try:
            await asyncio.wait_for(self.transport.verify(), timeout=self.send_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("Email service configuration error", error="handshake timed out")
            return ServiceStatus('error', 'Email service configuration error',
                                 f"Handshake timed out after {self.send_timeout_seconds}s")
        except Exception as e:
            logger.error("Email service configuration error", error=str(e))
            return ServiceStatus('error', 'Email service configuration error', str(e))
        return ServiceStatus('ready', 'Email service is configured and ready')

    def _ensure_ready(self, operation: str) -> None:
        if self._state is not DispatcherState.READY:
            logger.warning("Email service is not ready", operation=operation, state=self._state.value)
            raise ServiceNotReadyError()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------
    def _get_semaphore(self) -> asyncio.Semaphore:
        # Created lazily so it binds to the loop that runs the sends
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent_sends)
        return self._semaphore

    async def _deliver(self, operation: str, recipient: str, rendered: RenderedEmail,
                       reply_to: Optional[str] = None) -> None:
        """One send attempt; raises ``DeliveryError`` on any failure."""
        message = OutgoingEmail(to=recipient, subject=rendered.subject, html=rendered.html,
                                reply_to=reply_to)
        started = time.monotonic()
        try:
            async with self._get_semaphore():
                await asyncio.wait_for(self.transport.send(message), timeout=self.send_timeout_seconds)
        except asyncio.TimeoutError as e:
            self._record(operation, False, started)
            logger.error("Email send timed out", operation=operation, recipient=recipient,
                         timeout=self.send_timeout_seconds)
            raise DeliveryError(operation, recipient,
                                TimeoutError(f"timed out after {self.send_timeout_seconds}s")) from e
        except Exception as e:
            self._record(operation, False, started)
            logger.error("Email send failed", operation=operation, recipient=recipient, error=str(e))
            raise DeliveryError(operation, recipient, e) from e

        self._record(operation, True, started)
        logger.info("Email sent", operation=operation, recipient=recipient, subject=rendered.subject)

    def _record(self, operation: str, success: bool, started: float) -> None:
        if self.metrics is not None:
            self.metrics.record_send(operation, success, time.monotonic() - started)

    async def _fan_out(self, operation: str, recipients: List[str],
                       rendered: RenderedEmail, noun: str) -> DispatchResult:
        """Send to every recipient and settle all attempts."""
        if not recipients:
            logger.info("No recipients for fan-out", operation=operation)
            return DispatchResult(True, f"{noun} sent successfully (no recipients)")

        outcomes = await asyncio.gather(
            *(self._deliver(operation, recipient, rendered) for recipient in recipients),
            return_exceptions=True
        )

        failures = []
        for recipient, outcome in zip(recipients, outcomes):
            if isinstance(outcome, DeliveryError):
                failures.append(RecipientFailure(recipient, str(outcome.cause)))
            elif isinstance(outcome, BaseException):
                # Anything else (including cancellation) is not a per-recipient outcome
                raise outcome

        sent = len(recipients) - len(failures)
        if not failures:
            message = f"{noun} sent successfully"
        elif sent:
            message = f"{noun} sent to {sent} of {len(recipients)} recipients"
        else:
            message = f"Failed to send {noun.lower()} to any recipient"

        logger.info("Fan-out complete", operation=operation, sent=sent, failed=len(failures))
        return DispatchResult(sent > 0, message, sent=sent, failed=len(failures), failures=failures)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def send_blog_notification(self, event: BlogPublished) -> DispatchResult:
        self._ensure_ready('blog_notification')
        subscribers = await self.directory.list_active_subscribers()
        rendered = templates.blog_notification(event.blog, self.frontend_url)
        return await self._fan_out('blog_notification', subscribers, rendered, 'Blog notification')

    async def send_case_update(self, event: CaseUpdated) -> DispatchResult:
        self._ensure_ready('case_update')
        rendered = templates.case_update(event.case_details, self.frontend_url)
        await self._deliver('case_update', event.user_email, rendered)
        return DispatchResult(True, 'Case update notification sent successfully', sent=1)

    async def send_officer_assignment_notification(self, event: OfficerAssigned) -> DispatchResult:
        """
        Notify the assigned officer, then the station OCS.

        Only the officer send can fail the operation. The OCS copy goes to the
        station's ``ocs_email`` or, failing that, to the admin address; any
        error on that secondary path is logged and dropped.
        """
        self._ensure_ready('officer_assignment')
        rendered = templates.officer_assignment(event.case_details, event.officer_details,
                                                self.frontend_url)
        await self._deliver('officer_assignment', event.officer_email, rendered)

        sent = 1
        try:
            if await self._notify_ocs(event):
                sent += 1
        except Exception as e:
            logger.error("Error sending OCS notification", operation='ocs_notification',
                         tracking_id=event.case_details.tracking_id, error=str(e))

        return DispatchResult(True, 'Officer notification sent successfully', sent=sent)

    async def _notify_ocs(self, event: OfficerAssigned) -> bool:
        recipient = await self._resolve_ocs_recipient(event.officer_details.station)
        if not recipient:
            logger.warning("No OCS or admin address configured; skipping OCS notification",
                           operation='ocs_notification', tracking_id=event.case_details.tracking_id)
            return False

        rendered = templates.ocs_notification(event.case_details, event.officer_details,
                                              self.frontend_url)
        await self._deliver('ocs_notification', recipient, rendered)
        return True

    async def _resolve_ocs_recipient(self, station_id: Optional[str]) -> Optional[str]:
        if station_id:
            try:
                station = await self.directory.get_station(station_id)
            except Exception as e:
                logger.warning("Station lookup failed; falling back to admin address",
                               station=station_id, error=str(e))
                station = None
            if station is not None and station.ocs_email:
                return station.ocs_email
        return self.admin_email

    async def send_subscription_confirmation(self, event: SubscriptionConfirmed) -> DispatchResult:
        self._ensure_ready('subscription_confirmation')
        rendered = templates.subscription_confirmation(event.email, self.frontend_url)
        await self._deliver('subscription_confirmation', event.email, rendered)
        return DispatchResult(True, 'Subscription confirmation sent successfully', sent=1)

    async def send_contact_form_submission(self, event: ContactFormSubmitted) -> DispatchResult:
        self._ensure_ready('contact_form')
        if not self.admin_email:
            raise RecipientLookupError("ADMIN_EMAIL is not configured")
        rendered = templates.contact_form_submission(event)
        await self._deliver('contact_form', self.admin_email, rendered, reply_to=event.email)
        return DispatchResult(True, 'Contact form submission sent successfully', sent=1)

    async def send_admin_alert(self, event: AdminAlert) -> DispatchResult:
        self._ensure_ready('admin_alert')
        if not self.admin_emails:
            raise RecipientLookupError("ADMIN_EMAILS is not configured")
        rendered = templates.admin_alert(event)
        return await self._fan_out('admin_alert', self.admin_emails, rendered, 'Admin alert')

    async def send_assignment_email(self, event: AssignmentEmailRequest) -> DispatchResult:
        """Standalone assignment email with its own layout."""
        self._ensure_ready('send_assignment')
        rendered = templates.assignment_email(event.report_details)
        await self._deliver('send_assignment', event.officer_email, rendered)
        return DispatchResult(True, 'Assignment email sent successfully', sent=1)
