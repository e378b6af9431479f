"""APScheduler-based dispatcher for accumulated login events.

Fires one recurring job that awaits an external flush coroutine, which
publishes the pending login batch to the message queue.

Design principles:
- Use AsyncIOScheduler for async compatibility
- Exactly one job per scheduler instance (fixed job id, replace on restart)
- A flush that is still running makes the next firing skip, never overlap
- Flush failures are logged and reported, never retried, never stop the schedule
"""

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from enum import Enum

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MAX_INSTANCES,
    JobEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from login_store.config import Settings, get_settings
from login_store.infra.exceptions import SchedulerFlushError
from login_store.infra.observability.events import ErrorEvent, ErrorObserver, report_error
from login_store.infra.observability.logging import set_correlation_id
from login_store.infra.observability.metrics import record_batch_flush

logger = logging.getLogger(__name__)

BATCH_DISPATCH_JOB_ID = "login_batch_dispatch"

DEFAULT_INTERVAL_MS = 10000

FlushCallable = Callable[[], Awaitable[None]]


class SchedulerState(str, Enum):
    """Lifecycle state of a BatchDispatchScheduler."""

    IDLE = "idle"
    RUNNING = "running"


class BatchDispatchScheduler:
    """Periodic login batch dispatcher.

    Example:
        scheduler = BatchDispatchScheduler(send_batch_to_queue)
        await scheduler.start(interval_ms=10000)

        # Stop further dispatches, letting an in-flight flush finish
        await scheduler.stop()
    """

    def __init__(
        self,
        flush: FlushCallable,
        *,
        default_interval_ms: int = DEFAULT_INTERVAL_MS,
        on_error: ErrorObserver | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            flush: Coroutine function publishing the pending batch
            default_interval_ms: Period used when start() is given none
            on_error: Observer receiving flush failures
        """
        self.flush = flush
        self.default_interval_ms = default_interval_ms
        self.on_error = on_error
        self.interval_ms: int | None = None

        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Combine missed runs
                "max_instances": 1,  # Never overlap flushes
                "misfire_grace_time": None,
            },
        )
        self.scheduler.add_listener(
            self._on_job_event,
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES,
        )

        self._state = SchedulerState.IDLE
        self._flush_started: float | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    async def start(self, interval_ms: int | None = None) -> str:
        """Start dispatching every ``interval_ms`` milliseconds.

        Starting an already running dispatcher replaces its job, so the new
        interval applies and only one job ever exists.

        Args:
            interval_ms: Period between flushes (defaults to default_interval_ms)

        Returns:
            Job ID

        Raises:
            ValueError: If interval_ms is not positive
        """
        if interval_ms is None:
            interval_ms = self.default_interval_ms
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")

        if not self.scheduler.running:
            self.scheduler.start()

        job = self.scheduler.add_job(
            self._dispatch,
            trigger=IntervalTrigger(seconds=interval_ms / 1000),
            id=BATCH_DISPATCH_JOB_ID,
            name="Login Batch Dispatch",
            replace_existing=True,
        )

        replaced = self.running
        self.interval_ms = interval_ms
        self._state = SchedulerState.RUNNING

        logger.info(
            "Batch dispatch restarted" if replaced else "Batch dispatch started",
            extra={"job_id": job.id, "interval_ms": interval_ms},
        )

        return job.id

    async def stop(self) -> None:
        """Stop dispatching. No-op when not running.

        A flush already in progress runs to completion; no further flush
        is started.
        """
        if not self.running:
            return

        if self.scheduler.get_job(BATCH_DISPATCH_JOB_ID) is not None:
            self.scheduler.remove_job(BATCH_DISPATCH_JOB_ID)

        self._state = SchedulerState.IDLE
        self.interval_ms = None

        logger.info("Batch dispatch stopped", extra={"job_id": BATCH_DISPATCH_JOB_ID})

    async def shutdown(self) -> None:
        """Stop dispatching and shut the underlying scheduler down.

        Unlike stop(), an in-flight flush is cancelled.
        """
        await self.stop()

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Batch dispatch scheduler shut down")

    def get_job_status(self) -> dict | None:
        """Get job status.

        Returns:
            Job status dict or None if not running
        """
        job = self.scheduler.get_job(BATCH_DISPATCH_JOB_ID)
        if not job:
            return None

        return {
            "id": job.id,
            "name": job.name,
            "interval_ms": self.interval_ms,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
        }

    async def _dispatch(self) -> None:
        # Each run executes in its own task, so the id covers only this flush
        set_correlation_id(f"batch-{uuid.uuid4()}")
        self._flush_started = time.perf_counter()
        await self.flush()

    def _on_job_event(self, event: JobEvent) -> None:
        """Handle job execution events.

        Args:
            event: APScheduler event
        """
        if event.code == EVENT_JOB_MAX_INSTANCES:
            logger.warning(
                "Previous batch flush still running, skipping this run",
                extra={"job_id": event.job_id},
            )
            return

        duration = None
        if self._flush_started is not None:
            duration = time.perf_counter() - self._flush_started

        if event.exception:
            record_batch_flush(False, duration)
            error = SchedulerFlushError(f"Batch flush failed: {event.exception}")
            error.__cause__ = event.exception
            report_error(
                logger,
                self.on_error,
                ErrorEvent(
                    source="batch_dispatch",
                    error=error,
                    context={"job_id": event.job_id},
                ),
                f"Job {event.job_id} failed",
            )
            return

        record_batch_flush(True, duration)
        logger.debug(
            f"Job {event.job_id} executed successfully",
            extra={"job_id": event.job_id},
        )


# Global scheduler instance
_batch_scheduler: BatchDispatchScheduler | None = None


def get_batch_scheduler() -> BatchDispatchScheduler:
    """Get global batch scheduler instance.

    Raises:
        RuntimeError: If the batch scheduler was not initialized
    """
    if _batch_scheduler is None:
        raise RuntimeError(
            "BatchDispatchScheduler not initialized. Call initialize_batch_scheduler() first."
        )
    return _batch_scheduler


def initialize_batch_scheduler(
    flush: FlushCallable,
    settings: Settings | None = None,
    on_error: ErrorObserver | None = None,
) -> BatchDispatchScheduler:
    """Initialize global batch scheduler instance.

    Args:
        flush: Coroutine function publishing the pending batch
        settings: Login store settings (defaults to the global settings)
        on_error: Observer receiving flush failures

    Returns:
        Initialized BatchDispatchScheduler instance
    """
    global _batch_scheduler
    settings = settings or get_settings()
    _batch_scheduler = BatchDispatchScheduler(
        flush,
        default_interval_ms=settings.batch_interval_ms,
        on_error=on_error,
    )
    logger.info("Global BatchDispatchScheduler initialized")
    return _batch_scheduler


def reset_batch_scheduler() -> None:
    """Reset the global batch scheduler instance (primarily for testing)."""
    global _batch_scheduler
    _batch_scheduler = None


__all__ = [
    "BATCH_DISPATCH_JOB_ID",
    "BatchDispatchScheduler",
    "SchedulerState",
    "get_batch_scheduler",
    "initialize_batch_scheduler",
    "reset_batch_scheduler",
]
