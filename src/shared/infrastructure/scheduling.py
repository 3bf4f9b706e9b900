"""
Background Job Scheduling
=========================

Wrapper around APScheduler's AsyncIOScheduler for the service's periodic
jobs (escalation tick, webhook retry poller).

Every job is registered with ``max_instances=1`` and ``coalesce=True`` so a
slow run is never overlapped by the next one and missed runs collapse into
a single catch-up run.
"""

from typing import Awaitable, Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class JobScheduler:
    """
    Manages the lifecycle of the scheduler and its interval jobs.

    Jobs may be registered before or after ``start()``.
    """

    def __init__(self):
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def _get_scheduler(self) -> AsyncIOScheduler:
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler()
        return self._scheduler

    def add_interval_job(
        self,
        job_func: Callable[[], Awaitable[None]],
        seconds: int,
        job_id: str,
        name: str,
    ) -> None:
        """Register an async job to run every ``seconds``."""
        self._get_scheduler().add_job(
            job_func,
            "interval",
            seconds=seconds,
            id=job_id,
            name=name,
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        logger.info(
            "Scheduled background job",
            extra={"job_id": job_id, "interval_seconds": seconds}
        )

    def start(self) -> None:
        """Start the scheduler. Must be called from a running event loop."""
        if self._running:
            logger.warning("Job scheduler already running")
            return

        self._get_scheduler().start()
        self._running = True
        logger.info("Job scheduler started", extra={"jobs": self.job_ids})

    def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Job scheduler stopped")

    @property
    def job_ids(self) -> List[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
