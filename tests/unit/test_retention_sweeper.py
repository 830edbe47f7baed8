"""
Unit tests for the retention sweeper.

Time is simulated with a fake clock and a stepping sleep, so interval
behaviour is exercised without real delays.
"""

import threading
from datetime import timedelta

import pytest

from crkd.config import RetentionConfig
from crkd.monitoring import ServiceMetrics
from crkd.storage import InMemoryDocumentStore, ReportStatus, RetentionSweeper
from crkd.storage.retention_logging import SweepAuditLog
from tests.utils.fakes import START, FakeClock, FlakyDocumentStore, SteppingSleep, make_report


async def _seed(store, *reports):
    for report in reports:
        await store.put_report(report)


class TestSweepOnce:
    """Single sweep behaviour."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.mark.asyncio
    async def test_deletes_only_closed_reports_past_window(self, clock):
        store = InMemoryDocumentStore()
        await _seed(
            store,
            make_report("old-closed", ReportStatus.CLOSED, 25),
            make_report("fresh-closed", ReportStatus.CLOSED, 1),
            make_report("old-pending", ReportStatus.PENDING, 72, title="Burglary"),
            make_report("old-resolved", ReportStatus.RESOLVED, 48),
        )
        pending_before = (await store.get_report("old-pending")).to_document()

        sweeper = RetentionSweeper(store, clock=clock)
        result = await sweeper.sweep_once()

        assert result.success
        assert result.deleted_count == 1
        assert await store.get_report("old-closed") is None
        assert await store.get_report("fresh-closed") is not None
        assert await store.get_report("old-resolved") is not None
        assert (await store.get_report("old-pending")).to_document() == pending_before

    @pytest.mark.asyncio
    async def test_report_exactly_at_cutoff_is_deleted(self, clock):
        store = InMemoryDocumentStore()
        await _seed(
            store,
            make_report("at-cutoff", ReportStatus.CLOSED, 24),
            make_report("just-inside", ReportStatus.CLOSED, 23.99),
        )

        result = await RetentionSweeper(store, clock=clock).sweep_once()

        assert result.deleted_count == 1
        assert await store.get_report("at-cutoff") is None
        assert await store.get_report("just-inside") is not None

    @pytest.mark.asyncio
    async def test_empty_matching_set_returns_zero(self, clock):
        store = InMemoryDocumentStore()
        await _seed(store, make_report("fresh", ReportStatus.CLOSED, 2))

        result = await RetentionSweeper(store, clock=clock).sweep_once()

        assert result.status == 'success'
        assert result.deleted_count == 0
        assert result.matched == 0
        assert store.report_count() == 1

    @pytest.mark.asyncio
    async def test_custom_retention_window(self, clock):
        store = InMemoryDocumentStore()
        await _seed(store, make_report("two-hours", ReportStatus.CLOSED, 2))

        sweeper = RetentionSweeper(store, retention_window=timedelta(hours=1), clock=clock)
        result = await sweeper.sweep_once()

        assert result.deleted_count == 1
        assert sweeper.cutoff() == START - timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_store_error_is_reported_not_raised(self, clock):
        store = FlakyDocumentStore()
        store.fail_find = True

        sweeper = RetentionSweeper(store, clock=clock)
        result = await sweeper.sweep_once()

        assert result.status == 'failed'
        assert result.deleted_count == 0
        assert "unreachable" in result.error_message
        status = sweeper.get_status()
        assert status.failed_sweeps == 1
        assert status.last_error == result.error_message

    @pytest.mark.asyncio
    async def test_failed_delete_leaves_every_report(self, clock):
        store = FlakyDocumentStore()
        await _seed(
            store,
            make_report("a", ReportStatus.CLOSED, 30),
            make_report("b", ReportStatus.CLOSED, 40),
        )
        store.fail_delete = True

        result = await RetentionSweeper(store, clock=clock).sweep_once()

        assert result.status == 'failed'
        assert result.matched == 2
        assert store.report_count() == 2

    @pytest.mark.asyncio
    async def test_recovers_after_store_comes_back(self, clock):
        store = FlakyDocumentStore()
        await _seed(store, make_report("old", ReportStatus.CLOSED, 30))
        sweeper = RetentionSweeper(store, clock=clock)

        store.fail_find = True
        failed = await sweeper.sweep_once()
        store.fail_find = False
        recovered = await sweeper.sweep_once()

        assert failed.status == 'failed'
        assert recovered.status == 'success'
        assert recovered.deleted_count == 1
        status = sweeper.get_status()
        assert status.total_sweeps == 2
        assert status.successful_sweeps == 1
        assert status.last_error is None

    @pytest.mark.asyncio
    async def test_dry_run_counts_without_deleting(self, clock):
        store = InMemoryDocumentStore()
        await _seed(store, make_report("old", ReportStatus.CLOSED, 30))

        sweeper = RetentionSweeper(store, dry_run=True, clock=clock)
        result = await sweeper.sweep_once()

        assert result.status == 'dry_run'
        assert result.matched == 1
        assert result.deleted_count == 0
        assert await store.get_report("old") is not None

        forced = await sweeper.sweep_once(dry_run=False)
        assert forced.deleted_count == 1

    @pytest.mark.asyncio
    async def test_metrics_and_audit_log_are_updated(self, clock, tmp_path):
        store = InMemoryDocumentStore()
        await _seed(store, make_report("old", ReportStatus.CLOSED, 30))
        metrics = ServiceMetrics()
        audit_log = SweepAuditLog(str(tmp_path))

        sweeper = RetentionSweeper(store, clock=clock, metrics=metrics, audit_log=audit_log)
        result = await sweeper.sweep_once()

        registry = metrics.registry
        assert registry.get_sample_value('crkd_retention_sweeps_total', {'outcome': 'success'}) == 1.0
        assert registry.get_sample_value('crkd_retention_reports_deleted_total') == 1.0

        entries = audit_log.read_day(START)
        assert len(entries) == 1
        assert entries[0]['sweep_id'] == result.sweep_id
        assert entries[0]['deleted_count'] == 1
        assert entries[0]['collection'] == 'reports'
        assert entries[0]['retention_hours'] == 24.0

    @pytest.mark.asyncio
    async def test_audit_log_is_written_off_the_event_loop(self, clock, tmp_path):
        writer_threads = []

        class ThreadRecordingAuditLog(SweepAuditLog):
            def record(self, result, collection, retention_hours):
                writer_threads.append(threading.get_ident())
                super().record(result, collection, retention_hours)

        audit_log = ThreadRecordingAuditLog(str(tmp_path))
        sweeper = RetentionSweeper(InMemoryDocumentStore(), clock=clock, audit_log=audit_log)

        await sweeper.sweep_once()

        assert len(writer_threads) == 1
        assert writer_threads[0] != threading.get_ident()
        assert len(audit_log.read_day(START)) == 1


class TestSweeperSchedule:
    """Interval-driven sweeping."""

    @pytest.mark.asyncio
    async def test_first_sweep_waits_one_interval(self):
        clock = FakeClock()
        sleep = SteppingSleep(clock)
        store = InMemoryDocumentStore()
        await _seed(
            store,
            make_report("R1", ReportStatus.CLOSED, 25),
            make_report("R2", ReportStatus.CLOSED, 1),
        )

        sweeper = RetentionSweeper(store, clock=clock, sleep=sleep)
        await sweeper.start(3600)
        try:
            await sleep.wait_until_sleeping()
            assert sweeper.get_status().total_sweeps == 0
            assert await store.get_report("R1") is not None

            await sleep.tick()

            assert await store.get_report("R1") is None
            assert await store.get_report("R2") is not None
            assert sweeper.get_status().total_sweeps == 1
            assert sleep.calls == [3600, 3600]
        finally:
            await sweeper.stop()

    @pytest.mark.asyncio
    async def test_run_immediately_sweeps_before_first_sleep(self):
        clock = FakeClock()
        sleep = SteppingSleep(clock)
        store = InMemoryDocumentStore()
        await _seed(store, make_report("old", ReportStatus.CLOSED, 48))

        sweeper = RetentionSweeper(store, interval_seconds=60, run_immediately=True,
                                   clock=clock, sleep=sleep)
        await sweeper.start()
        try:
            await sleep.wait_until_sleeping()
            assert await store.get_report("old") is None
            assert sweeper.get_status().total_sweeps == 1
        finally:
            await sweeper.stop()

    @pytest.mark.asyncio
    async def test_timer_survives_failed_tick(self):
        clock = FakeClock()
        sleep = SteppingSleep(clock)
        store = FlakyDocumentStore()
        await _seed(store, make_report("old", ReportStatus.CLOSED, 30))
        store.fail_find = True

        sweeper = RetentionSweeper(store, clock=clock, sleep=sleep)
        await sweeper.start()
        try:
            await sleep.tick()
            status = sweeper.get_status()
            assert status.running
            assert status.failed_sweeps == 1
            assert store.report_count() == 1

            store.fail_find = False
            await sleep.tick()

            assert store.report_count() == 0
            assert sweeper.get_status().successful_sweeps == 1
        finally:
            await sweeper.stop()

    @pytest.mark.asyncio
    async def test_status_reports_next_sweep(self):
        clock = FakeClock()
        sleep = SteppingSleep(clock)
        sweeper = RetentionSweeper(InMemoryDocumentStore(), interval_seconds=600,
                                   clock=clock, sleep=sleep)

        await sweeper.start()
        try:
            await sleep.wait_until_sleeping()
            status = sweeper.get_status()
            assert status.running
            assert status.next_sweep == START + timedelta(seconds=600)
            assert status.to_dict()['interval_seconds'] == 600
        finally:
            await sweeper.stop()

        stopped = sweeper.get_status()
        assert not stopped.running
        assert stopped.next_sweep is None

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_sleep(self):
        clock = FakeClock()
        sleep = SteppingSleep(clock)
        sweeper = RetentionSweeper(InMemoryDocumentStore(), clock=clock, sleep=sleep)

        await sweeper.start()
        await sleep.wait_until_sleeping()
        await sweeper.stop()

        assert not sweeper.running
        assert sweeper._task is None
        assert sweeper.get_status().total_sweeps == 0

    @pytest.mark.asyncio
    async def test_start_twice_keeps_single_task(self):
        clock = FakeClock()
        sleep = SteppingSleep(clock)
        sweeper = RetentionSweeper(InMemoryDocumentStore(), clock=clock, sleep=sleep)

        await sweeper.start()
        task = sweeper._task
        await sweeper.start()
        try:
            assert sweeper._task is task
        finally:
            await sweeper.stop()

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            RetentionSweeper(InMemoryDocumentStore(), interval_seconds=0)


class TestSweeperFromConfig:

    def test_from_config(self, tmp_path):
        config = RetentionConfig(
            retention_hours=48,
            interval_seconds=120,
            run_immediately=True,
            dry_run=True,
            collection="archive",
            audit_dir=str(tmp_path / "audit")
        )

        sweeper = RetentionSweeper.from_config(InMemoryDocumentStore(), config)

        assert sweeper.retention_window == timedelta(hours=48)
        assert sweeper.interval_seconds == 120
        assert sweeper.run_immediately is True
        assert sweeper.dry_run is True
        assert sweeper.collection == "archive"
        assert sweeper.audit_log is not None
        assert (tmp_path / "audit").is_dir()

    def test_from_config_without_audit_dir(self):
        sweeper = RetentionSweeper.from_config(InMemoryDocumentStore(), RetentionConfig())
        assert sweeper.audit_log is None
        assert sweeper.run_immediately is False
