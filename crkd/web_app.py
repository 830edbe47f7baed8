"""
Flask web application for CRKD with notification and retention endpoints.
"""

import concurrent.futures
import time
from typing import Any, Callable, Dict, List, Optional, Type

import structlog
from flask import Flask, g, jsonify, request
from flask_cors import CORS
from pydantic import BaseModel, ValidationError

from crkd.monitoring import ServiceMetrics
from crkd.notifications import NotificationDispatcher, NotificationError, ServiceNotReadyError
from crkd.notifications.events import (
    AdminAlert,
    AssignmentEmailRequest,
    BlogPublished,
    CaseUpdated,
    ContactFormSubmitted,
    OfficerAssigned,
    SubscriptionConfirmed,
)
from crkd.runtime import BackgroundLoop
from crkd.storage import RetentionSweeper

logger = structlog.get_logger(__name__)


def _validation_errors(error: ValidationError) -> List[Dict[str, str]]:
    return [
        {'field': '.'.join(str(part) for part in err['loc']), 'message': err['msg']}
        for err in error.errors()
    ]


class CRKWebApp:
    """Crime Report Kenya Flask application: email API, retention status, metrics."""

    def __init__(self,
                 dispatcher: NotificationDispatcher,
                 runner: BackgroundLoop,
                 sweeper: Optional[RetentionSweeper] = None,
                 metrics: Optional[ServiceMetrics] = None,
                 cors_origins: Optional[List[str]] = None,
                 request_timeout_seconds: float = 120.0):
        self.app = Flask(__name__)
        self.dispatcher = dispatcher
        self.runner = runner
        self.sweeper = sweeper
        self.metrics = metrics
        self.request_timeout_seconds = request_timeout_seconds

        # Configure CORS for the web client
        CORS(self.app, origins=cors_origins or ["*"])

        self._register_request_hooks()
        self._register_routes()

        logger.info("CRKD web application initialized")

    def _dispatch(self,
                  operation: str,
                  model: Type[BaseModel],
                  send: Callable[[Any], Any],
                  failure_message: str,
                  include_summary: bool = False,
                  missing_message: str = 'No JSON data provided',
                  invalid_message: str = 'Invalid request payload'):
        """Validate the JSON body, run ``send`` on the loop and map the outcome to a response."""
        payload = request.get_json(silent=True)
        if not payload:
            return jsonify({'success': False, 'message': missing_message, 'errors': []}), 400

        try:
            event = model.model_validate(payload)
        except ValidationError as e:
            logger.warning("Invalid notification payload", operation=operation, errors=e.error_count())
            return jsonify({
                'success': False,
                'message': invalid_message,
                'errors': _validation_errors(e)
            }), 400

        try:
            result = self.runner.run(send(event), timeout=self.request_timeout_seconds)
        except ServiceNotReadyError as e:
            return jsonify({'success': False, 'message': str(e)}), 503
        except NotificationError as e:
            logger.error("Notification failed", operation=operation, error=str(e))
            return jsonify({'success': False, 'message': failure_message, 'error': str(e)}), 500
        except concurrent.futures.TimeoutError:
            logger.error("Notification request timed out", operation=operation,
                         timeout=self.request_timeout_seconds)
            return jsonify({'success': False, 'message': failure_message,
                            'error': 'Request timed out'}), 504
        except Exception as e:
            logger.exception("Unexpected error handling notification", operation=operation)
            return jsonify({'success': False, 'message': 'Internal server error', 'error': str(e)}), 500

        body = result.to_dict(include_summary=include_summary)
        if include_summary and not result.success:
            return jsonify(body), 502
        return jsonify(body)

    def _register_request_hooks(self):
        """Access logging and security headers for every response."""

        @self.app.before_request
        def start_timer():
            g.request_started = time.monotonic()

        @self.app.after_request
        def finish_request(response):
            response.headers.setdefault('X-Content-Type-Options', 'nosniff')
            response.headers.setdefault('X-Frame-Options', 'DENY')
            response.headers.setdefault('Referrer-Policy', 'no-referrer')

            started = g.get('request_started')
            duration_ms = round((time.monotonic() - started) * 1000, 1) if started is not None else None
            logger.info("HTTP request", method=request.method, path=request.path,
                        status=response.status_code, duration_ms=duration_ms,
                        remote_addr=request.remote_addr)
            return response

    def _register_routes(self):
        """Register all API routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Liveness only."""
            return jsonify({'status': 'Server is running'})

        @self.app.route('/api/email/status', methods=['GET'])
        def get_email_service_status():
            """Re-verify the mail transport and report the outcome."""
            try:
                status = self.runner.run(self.dispatcher.get_service_status(),
                                         timeout=self.request_timeout_seconds)
                return jsonify(status.to_dict())
            except Exception as e:
                logger.error("Error checking email service status", error=str(e))
                return jsonify({'error': 'Failed to check email service status'}), 500

        @self.app.route('/api/email/blog-notification', methods=['POST'])
        def send_blog_notification():
            """
            Notify every active subscriber about a published blog post.

            Expected JSON payload:
            {"blog": {"id": "...", "title": "...", "content": "...", "seoDescription": "..."}}
            """
            return self._dispatch('blog_notification', BlogPublished,
                                  self.dispatcher.send_blog_notification,
                                  'Failed to send blog notification', include_summary=True)

        @self.app.route('/api/email/case-update', methods=['POST'])
        def send_case_update():
            return self._dispatch('case_update', CaseUpdated,
                                  self.dispatcher.send_case_update,
                                  'Failed to send case update notification')

        @self.app.route('/api/email/officer-assignment', methods=['POST'])
        def send_officer_assignment():
            """Notify the assigned officer; the station OCS copy is best effort."""
            return self._dispatch('officer_assignment', OfficerAssigned,
                                  self.dispatcher.send_officer_assignment_notification,
                                  'Failed to send officer assignment notification')

        @self.app.route('/api/email/subscribe', methods=['POST'])
        def send_subscription_confirmation():
            return self._dispatch('subscription_confirmation', SubscriptionConfirmed,
                                  self.dispatcher.send_subscription_confirmation,
                                  'Failed to send subscription confirmation')

        @self.app.route('/api/email/contact', methods=['POST'])
        def send_contact_form():
            return self._dispatch('contact_form', ContactFormSubmitted,
                                  self.dispatcher.send_contact_form_submission,
                                  'Failed to send contact form submission')

        @self.app.route('/api/email/admin-alert', methods=['POST'])
        def send_admin_alert():
            return self._dispatch('admin_alert', AdminAlert,
                                  self.dispatcher.send_admin_alert,
                                  'Failed to send admin alert', include_summary=True)

        @self.app.route('/api/email/send-assignment', methods=['POST'])
        def send_assignment():
            """
            Standalone assignment email.

            Expected JSON payload:
            {"officerEmail": "...", "reportDetails": {"status": "...", "incidentType": "...", ...}}
            """
            return self._dispatch('send_assignment', AssignmentEmailRequest,
                                  self.dispatcher.send_assignment_email,
                                  'Failed to send assignment email',
                                  missing_message='Officer email and report details are required',
                                  invalid_message='Officer email and report details are required')

        @self.app.route('/api/retention/status', methods=['GET'])
        def get_retention_status():
            """Current retention sweeper status."""
            if self.sweeper is None:
                return jsonify({'error': 'Retention sweeper is disabled'}), 404
            return jsonify(self.sweeper.get_status().to_dict())

        @self.app.route('/metrics', methods=['GET'])
        def get_metrics():
            """
            Prometheus metrics endpoint.

            Returns metrics in Prometheus format for scraping.
            """
            if self.metrics is None:
                return jsonify({'error': 'Metrics are disabled'}), 404
            return self.metrics.get_metrics_response()

    def run(self, host='0.0.0.0', port=5000, debug=False):
        """Run the Flask application."""
        logger.info("Starting CRKD web application", host=host, port=port)
        self.app.run(host=host, port=port, debug=debug, use_reloader=False)


def create_app(dispatcher: NotificationDispatcher,
               runner: BackgroundLoop,
               sweeper: Optional[RetentionSweeper] = None,
               metrics: Optional[ServiceMetrics] = None,
               **kwargs) -> Flask:
    """Create and configure the Flask application."""
    web_app = CRKWebApp(dispatcher, runner, sweeper=sweeper, metrics=metrics, **kwargs)
    return web_app.app
