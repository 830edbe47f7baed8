"""
Main application entry point.

Wires the report store, mail transport, notification dispatcher, retention
sweeper and Flask app together and serves the HTTP API until interrupted.
"""

import argparse
import logging
import signal
import sys
from typing import Optional

import structlog

from crkd.config import (
    ConfigurationError,
    load_email_config,
    load_retention_config,
    load_server_config,
)
from crkd.monitoring import ServiceMetrics
from crkd.notifications import NotificationDispatcher, create_transport
from crkd.runtime import BackgroundLoop
from crkd.storage import InMemoryDocumentStore, RetentionSweeper, SQLiteDocumentStore
from crkd.web_app import CRKWebApp

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Configure stdlib logging and route structlog through it."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=['event'], sort_keys=True),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class CRKDaemon:
    """Owns the long-lived components and their start/stop order."""

    def __init__(self, server_config, email_config, retention_config, use_memory_store: bool = False):
        self.logger = logging.getLogger(__name__)
        self.server_config = server_config

        if use_memory_store:
            self.store = InMemoryDocumentStore()
        else:
            self.store = SQLiteDocumentStore(server_config.database_path)

        self.metrics = ServiceMetrics()
        self.transport = create_transport(email_config)
        self.dispatcher = NotificationDispatcher.from_config(
            self.transport, self.store, email_config, metrics=self.metrics
        )

        self.sweeper: Optional[RetentionSweeper] = None
        if retention_config.enabled:
            self.sweeper = RetentionSweeper.from_config(self.store, retention_config, metrics=self.metrics)
        else:
            self.logger.warning("Retention sweeper disabled by configuration")

        self.runner = BackgroundLoop()
        self.web_app = CRKWebApp(
            self.dispatcher,
            self.runner,
            sweeper=self.sweeper,
            metrics=self.metrics,
            cors_origins=server_config.cors_origins
        )

    def start(self) -> None:
        self.runner.start()
        state = self.runner.run(self.dispatcher.initialize())
        self.logger.info(f"Email dispatcher state: {state.value}")
        if self.sweeper is not None:
            self.runner.run(self.sweeper.start())

    def stop(self) -> None:
        if self.sweeper is not None and self.runner.running:
            self.runner.run(self.sweeper.stop(), timeout=10)
        self.runner.stop()
        self.logger.info("CRKD shutdown complete")

    def serve(self) -> None:
        self.web_app.run(host=self.server_config.host, port=self.server_config.port)


def _handle_sigterm(signum, frame):
    raise SystemExit(0)


def main(argv=None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Crime Report Kenya auxiliary server")
    parser.add_argument('--host', default=None, help='Bind address (default: HOST or 0.0.0.0)')
    parser.add_argument('--port', type=int, default=None, help='Port (default: PORT or 5000)')
    parser.add_argument('--db', default=None, help='SQLite database path (default: DATABASE_PATH)')
    parser.add_argument('--memory-store', action='store_true',
                        help='Keep reports and subscribers in memory instead of SQLite')
    args = parser.parse_args(argv)

    try:
        server_config = load_server_config()
        setup_logging(server_config.log_level)
        email_config = load_email_config()
        retention_config = load_retention_config()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error(f"Configuration error: {e}")
        return 1

    if args.host:
        server_config.host = args.host
    if args.port:
        server_config.port = args.port
    if args.db:
        server_config.database_path = args.db

    daemon = CRKDaemon(server_config, email_config, retention_config,
                       use_memory_store=args.memory_store)

    signal.signal(signal.SIGTERM, _handle_sigterm)
    daemon.start()
    try:
        daemon.serve()
    except KeyboardInterrupt:
        pass
    finally:
        daemon.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
