"""
Retention sweeper for closed crime reports.

Periodically removes reports that have been closed for longer than the
retention window. The sweep reads through the narrow ``ReportStore`` port
and removes every matched report in one atomic bulk delete, so a failed sweep
never leaves a partially applied batch behind. Errors are logged and
swallowed; the next tick simply tries again.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from .interfaces import ReportStore
from .models import ReportStatus, SweepResult, SweeperStatus
from .retention_logging import SweepAuditLog

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]

DEFAULT_RETENTION_WINDOW = timedelta(hours=24)
DEFAULT_INTERVAL_SECONDS = 60 * 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RetentionSweeper:
    """
    Interval-driven deletion of closed reports.

    Features:
    - Single atomic bulk delete per sweep
    - Injectable clock and sleep for deterministic tests
    - Cancellable background task
    - Optional dry-run mode and JSON-lines audit trail
    """

    def __init__(self,
                 store: ReportStore,
                 retention_window: timedelta = DEFAULT_RETENTION_WINDOW,
                 interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
                 run_immediately: bool = False,
                 dry_run: bool = False,
                 collection: str = "reports",
                 clock: Optional[Clock] = None,
                 sleep: Optional[Sleep] = None,
                 metrics=None,
                 audit_log: Optional[SweepAuditLog] = None):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.store = store
        self.retention_window = retention_window
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self.dry_run = dry_run
        self.collection = collection
        self.metrics = metrics
        self.audit_log = audit_log
        self.logger = logging.getLogger(__name__)

        self._clock: Clock = clock or utc_now
        self._sleep: Sleep = sleep or asyncio.sleep

        # Sweeper state
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._start_time: Optional[datetime] = None
        self._last_sweep: Optional[datetime] = None
        self._next_sweep: Optional[datetime] = None
        self._total_sweeps = 0
        self._successful_sweeps = 0
        self._failed_sweeps = 0
        self._total_deleted = 0
        self._last_error: Optional[str] = None

    @classmethod
    def from_config(cls, store: ReportStore, config, **kwargs) -> 'RetentionSweeper':
        """Create a sweeper from a ``RetentionConfig``."""
        audit_log = SweepAuditLog(config.audit_dir) if config.audit_dir else None
        return cls(
            store,
            retention_window=timedelta(hours=config.retention_hours),
            interval_seconds=config.interval_seconds,
            run_immediately=config.run_immediately,
            dry_run=config.dry_run,
            collection=config.collection,
            audit_log=audit_log,
            **kwargs
        )

    @property
    def running(self) -> bool:
        return self._running

    def cutoff(self) -> datetime:
        """Latest lastUpdated value that is old enough to be deleted."""
        return self._clock() - self.retention_window

    async def sweep_once(self, dry_run: Optional[bool] = None) -> SweepResult:
        """
        Delete every closed report last updated at or before the cutoff.

        Never raises on store errors: the failure is logged and reported in
        the returned ``SweepResult`` with ``status == 'failed'``.
        """
        dry_run = self.dry_run if dry_run is None else dry_run
        sweep_id = f"sweep_{uuid.uuid4().hex[:12]}"
        started_at = self._clock()
        cutoff = started_at - self.retention_window
        started = time.monotonic()
        matched = 0

        try:
            expired = await self.store.find_reports(ReportStatus.CLOSED, cutoff)
            matched = len(expired)

            if dry_run:
                deleted = 0
                status = 'dry_run'
            elif expired:
                deleted = await self.store.delete_reports([report.id for report in expired])
                status = 'success'
            else:
                deleted = 0
                status = 'success'

            result = SweepResult(
                sweep_id=sweep_id,
                started_at=started_at,
                cutoff=cutoff,
                matched=matched,
                deleted_count=deleted,
                status=status,
                duration_seconds=time.monotonic() - started
            )

            if dry_run:
                self.logger.info(f"Dry-run sweep of '{self.collection}': {matched} closed reports "
                                 f"older than {cutoff.isoformat()} would be deleted")
            else:
                self.logger.info(f"Successfully deleted {deleted} closed reports from "
                                 f"'{self.collection}' in {result.duration_seconds:.2f}s")

        except Exception as e:
            result = SweepResult(
                sweep_id=sweep_id,
                started_at=started_at,
                cutoff=cutoff,
                matched=matched,
                deleted_count=0,
                status='failed',
                duration_seconds=time.monotonic() - started,
                error_message=str(e)
            )
            self.logger.error(f"Error in retention sweep_once for '{self.collection}': {e}")

        await self._record(result)
        return result

    async def _record(self, result: SweepResult) -> None:
        """Update counters, metrics and audit trail for a finished sweep."""
        self._total_sweeps += 1
        self._last_sweep = result.started_at
        if result.success:
            self._successful_sweeps += 1
            self._total_deleted += result.deleted_count
            self._last_error = None
        else:
            self._failed_sweeps += 1
            self._last_error = result.error_message

        if self.metrics is not None:
            self.metrics.record_sweep(result.status, result.deleted_count)
        if self.audit_log is not None:
            await asyncio.to_thread(
                self.audit_log.record, result, self.collection,
                self.retention_window.total_seconds() / 3600
            )

    async def start(self, interval_seconds: Optional[float] = None) -> None:
        """
        Start sweeping in the background.

        The first sweep runs after one full interval unless the sweeper was
        created with ``run_immediately=True``.
        """
        if self._running:
            self.logger.warning("Retention sweeper is already running")
            return

        if interval_seconds is not None:
            if interval_seconds <= 0:
                raise ValueError("interval_seconds must be positive")
            self.interval_seconds = interval_seconds

        self._running = True
        self._start_time = self._clock()
        self._task = asyncio.create_task(self._sweep_loop())

        self.logger.info(f"Retention sweeper started (interval: {self.interval_seconds}s, "
                         f"window: {self.retention_window}, run_immediately: {self.run_immediately}, "
                         f"dry_run: {self.dry_run})")

    async def stop(self) -> None:
        """Stop the background task and wait for it to finish."""
        if not self._running:
            return

        self.logger.info("Stopping retention sweeper...")
        self._running = False
        self._next_sweep = None
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self.logger.info("Retention sweeper stopped")

    async def _sweep_loop(self) -> None:
        """Main sweeper loop."""
        if self.run_immediately:
            await self._tick()

        while self._running:
            self._next_sweep = self._clock() + timedelta(seconds=self.interval_seconds)
            await self._sleep(self.interval_seconds)
            if not self._running:
                break
            await self._tick()

    async def _tick(self) -> None:
        self.logger.info("Running scheduled report cleanup...")
        try:
            await self.sweep_once()
        except Exception as e:
            # sweep_once reports its own failures; this only guards bookkeeping
            self.logger.error(f"Error in sweeper loop: {e}")
            self._last_error = str(e)

    def get_status(self) -> SweeperStatus:
        """Get current sweeper status."""
        uptime = 0.0
        if self._start_time and self._running:
            uptime = (self._clock() - self._start_time).total_seconds()

        return SweeperStatus(
            running=self._running,
            interval_seconds=self.interval_seconds,
            retention_hours=self.retention_window.total_seconds() / 3600,
            last_sweep=self._last_sweep,
            next_sweep=self._next_sweep if self._running else None,
            total_sweeps=self._total_sweeps,
            successful_sweeps=self._successful_sweeps,
            failed_sweeps=self._failed_sweeps,
            total_deleted=self._total_deleted,
            last_error=self._last_error,
            uptime_seconds=uptime
        )
