"""Unit tests for the login batch dispatch scheduler."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from login_store.config import Settings, set_settings
from login_store.infra.exceptions import SchedulerFlushError
from login_store.infra.jobs.scheduler import (
    BATCH_DISPATCH_JOB_ID,
    BatchDispatchScheduler,
    SchedulerState,
    get_batch_scheduler,
    initialize_batch_scheduler,
    reset_batch_scheduler,
)
from login_store.infra.observability.events import ErrorEvent
from login_store.infra.observability.logging import correlation_id_var


@pytest.fixture
def flush() -> AsyncMock:
    """Flush collaborator that records its invocations."""
    return AsyncMock(return_value=None)


@pytest.fixture
async def scheduler(flush: AsyncMock) -> BatchDispatchScheduler:
    """BatchDispatchScheduler torn down after each test."""
    dispatcher = BatchDispatchScheduler(flush)
    yield dispatcher
    await dispatcher.shutdown()


class TestLifecycle:
    """Tests for start/stop state handling."""

    @pytest.mark.asyncio
    async def test_initial_state_is_idle(self, scheduler: BatchDispatchScheduler) -> None:
        assert scheduler.state is SchedulerState.IDLE
        assert scheduler.get_job_status() is None

    @pytest.mark.asyncio
    async def test_start_creates_one_job(self, scheduler: BatchDispatchScheduler) -> None:
        job_id = await scheduler.start(interval_ms=1000)

        assert job_id == BATCH_DISPATCH_JOB_ID
        assert scheduler.state is SchedulerState.RUNNING
        assert len(scheduler.scheduler.get_jobs()) == 1

    @pytest.mark.asyncio
    async def test_default_interval(self, scheduler: BatchDispatchScheduler) -> None:
        await scheduler.start()

        job = scheduler.scheduler.get_job(BATCH_DISPATCH_JOB_ID)
        assert job.trigger.interval == timedelta(seconds=10)

    @pytest.mark.asyncio
    async def test_configured_default_interval(self, flush: AsyncMock) -> None:
        dispatcher = BatchDispatchScheduler(flush, default_interval_ms=250)

        try:
            await dispatcher.start()

            job = dispatcher.scheduler.get_job(BATCH_DISPATCH_JOB_ID)
            assert job.trigger.interval == timedelta(milliseconds=250)
            assert dispatcher.get_job_status()["interval_ms"] == 250
        finally:
            await dispatcher.shutdown()

    @pytest.mark.asyncio
    async def test_start_twice_keeps_single_job(self, scheduler: BatchDispatchScheduler) -> None:
        """Restarting replaces the job with the new interval."""
        await scheduler.start(interval_ms=1000)
        await scheduler.start(interval_ms=500)

        jobs = scheduler.scheduler.get_jobs()
        assert len(jobs) == 1
        assert jobs[0].trigger.interval == timedelta(milliseconds=500)
        assert scheduler.interval_ms == 500
        assert scheduler.get_job_status()["interval_ms"] == 500

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, scheduler: BatchDispatchScheduler) -> None:
        await scheduler.stop()

        assert scheduler.state is SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_stop_removes_job(self, scheduler: BatchDispatchScheduler) -> None:
        await scheduler.start(interval_ms=1000)
        await scheduler.stop()

        assert scheduler.state is SchedulerState.IDLE
        assert scheduler.scheduler.get_jobs() == []

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, scheduler: BatchDispatchScheduler) -> None:
        await scheduler.start(interval_ms=1000)
        await scheduler.stop()
        await scheduler.start(interval_ms=2000)

        assert scheduler.state is SchedulerState.RUNNING
        assert len(scheduler.scheduler.get_jobs()) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("interval_ms", [0, -10])
    async def test_invalid_interval(
        self, scheduler: BatchDispatchScheduler, interval_ms: int
    ) -> None:
        with pytest.raises(ValueError):
            await scheduler.start(interval_ms=interval_ms)

        assert scheduler.state is SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_shutdown(self, scheduler: BatchDispatchScheduler) -> None:
        await scheduler.start(interval_ms=1000)
        await scheduler.shutdown()

        assert scheduler.state is SchedulerState.IDLE
        assert scheduler.scheduler.running is False


class TestDispatch:
    """Tests for flush invocation timing and failures."""

    @pytest.mark.asyncio
    async def test_flush_runs_every_interval(
        self, scheduler: BatchDispatchScheduler, flush: AsyncMock
    ) -> None:
        """100ms interval for 350ms gives 3 flushes (+/-1), none after stop."""
        await scheduler.start(interval_ms=100)
        await asyncio.sleep(0.35)

        assert 2 <= flush.await_count <= 4

        await scheduler.stop()
        calls_at_stop = flush.await_count
        await asyncio.sleep(0.2)

        assert flush.await_count == calls_at_stop

    @pytest.mark.asyncio
    async def test_each_flush_gets_own_correlation_id(self) -> None:
        seen: list[str | None] = []

        async def record_flush() -> None:
            seen.append(correlation_id_var.get())

        dispatcher = BatchDispatchScheduler(record_flush)
        try:
            await dispatcher.start(interval_ms=100)
            await asyncio.sleep(0.35)
        finally:
            await dispatcher.shutdown()

        assert len(seen) >= 2
        assert all(cid.startswith("batch-") for cid in seen)
        assert len(set(seen)) == len(seen)

    @pytest.mark.asyncio
    async def test_double_start_does_not_double_fire(
        self, scheduler: BatchDispatchScheduler, flush: AsyncMock
    ) -> None:
        await scheduler.start(interval_ms=100)
        await scheduler.start(interval_ms=100)
        await asyncio.sleep(0.35)

        assert flush.await_count <= 4

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_schedule(self) -> None:
        """A failing flush is reported and the next period still fires."""
        events: list[ErrorEvent] = []
        flush = AsyncMock(side_effect=RuntimeError("queue unavailable"))
        dispatcher = BatchDispatchScheduler(flush, on_error=events.append)

        try:
            await dispatcher.start(interval_ms=100)
            await asyncio.sleep(0.35)
        finally:
            await dispatcher.shutdown()

        assert flush.await_count >= 2
        assert 2 <= len(events) <= flush.await_count
        assert events[0].source == "batch_dispatch"
        assert isinstance(events[0].error, SchedulerFlushError)
        assert isinstance(events[0].error.__cause__, RuntimeError)
        assert events[0].context == {"job_id": BATCH_DISPATCH_JOB_ID}

    @pytest.mark.asyncio
    async def test_slow_flush_never_overlaps(self) -> None:
        """A period that comes due during a running flush is skipped."""
        running = 0
        max_running = 0

        async def slow_flush() -> None:
            nonlocal running, max_running
            running += 1
            max_running = max(max_running, running)
            await asyncio.sleep(0.25)
            running -= 1

        dispatcher = BatchDispatchScheduler(slow_flush)
        try:
            await dispatcher.start(interval_ms=100)
            await asyncio.sleep(0.6)
        finally:
            await dispatcher.stop()
            await asyncio.sleep(0.3)
            await dispatcher.shutdown()

        assert max_running == 1


class TestGlobalBatchScheduler:
    """Tests for the global scheduler helpers."""

    def test_get_before_initialize_raises(self) -> None:
        with pytest.raises(RuntimeError, match="not initialized"):
            get_batch_scheduler()

    def test_initialize_and_reset(self) -> None:
        flush = AsyncMock()
        dispatcher = initialize_batch_scheduler(flush)

        assert get_batch_scheduler() is dispatcher
        assert dispatcher.flush is flush

        reset_batch_scheduler()
        with pytest.raises(RuntimeError):
            get_batch_scheduler()

    @pytest.mark.asyncio
    async def test_initialize_uses_batch_interval_setting(self) -> None:
        dispatcher = initialize_batch_scheduler(AsyncMock(), Settings(batch_interval_ms=500))

        try:
            await dispatcher.start()

            assert dispatcher.interval_ms == 500
        finally:
            await dispatcher.shutdown()

    def test_initialize_falls_back_to_global_settings(self) -> None:
        set_settings(Settings(batch_interval_ms=2500))

        dispatcher = initialize_batch_scheduler(AsyncMock())

        assert dispatcher.default_interval_ms == 2500
