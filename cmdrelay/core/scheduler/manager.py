"""APScheduler manager for the relay's periodic jobs.

Provides singleton access to the scheduler that drives the queue drain,
completed-command cleanup and expired-session sweep.
Uses AsyncIOScheduler so jobs run on the same event loop as the listener.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MAX_INSTANCES,
    JobEvent,
)
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


class SchedulerManager:
    """Singleton manager for APScheduler.

    Manages periodic jobs with:
    - In-memory job store (jobs are re-registered at every startup)
    - AsyncIO scheduler for async compatibility
    - At most one running instance per job; missed runs are coalesced
    """

    _instance: SchedulerManager | None = None
    _initialized: bool = False

    def __new__(cls) -> SchedulerManager:
        """Singleton pattern - return existing instance if available.

        Returns:
            SchedulerManager singleton instance.
        """
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Initialize the scheduler manager."""
        if SchedulerManager._initialized:
            return

        self._scheduler: AsyncIOScheduler | None = AsyncIOScheduler(
            timezone=UTC,
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,  # Only one instance of each job
                "misfire_grace_time": 30,
            },
        )

        self._scheduler.add_listener(
            self._on_job_event,
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES,
        )

        SchedulerManager._initialized = True
        logger.info("SchedulerManager initialized")

    @classmethod
    def get_instance(cls) -> SchedulerManager:
        """Get the singleton instance.

        Returns:
            SchedulerManager singleton instance.
        """
        return cls()

    def start(self) -> None:
        """Start the scheduler. Must be called from a running event loop."""
        if self._scheduler and not self._scheduler.running:
            self._scheduler.start()
            logger.info("Scheduler started")

    def shutdown(self, wait: bool = False) -> None:
        """Shutdown the scheduler.

        Args:
            wait: Whether to wait for running jobs to complete.
        """
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Scheduler shutdown")

    def add_interval_job(
        self,
        job_id: str,
        func: Callable[..., Any],
        seconds: float,
        run_immediately: bool = False,
    ) -> Job:
        """Add (or replace) a job that runs on a fixed interval.

        Args:
            job_id: Unique job identifier.
            func: Function or coroutine function to run.
            seconds: Interval between runs.
            run_immediately: Also run once as soon as the scheduler is running.

        Returns:
            The APScheduler Job handle.

        Raises:
            RuntimeError: If scheduler is not initialized.
        """
        if not self._scheduler:
            raise RuntimeError("Scheduler not initialized")

        kwargs: dict[str, Any] = {}
        if run_immediately:
            kwargs["next_run_time"] = datetime.now(UTC)

        job = self._scheduler.add_job(
            func,
            "interval",
            seconds=seconds,
            id=job_id,
            replace_existing=True,
            **kwargs,
        )

        logger.info("Job scheduled: id=%s, every %.1fs", job_id, seconds)
        return job

    def remove_job(self, job_id: str) -> bool:
        """Remove a job.

        Args:
            job_id: Job ID to remove.

        Returns:
            True if removed, False if not found.
        """
        if not self._scheduler or not self._scheduler.get_job(job_id):
            return False

        self._scheduler.remove_job(job_id)
        logger.info("Job removed: %s", job_id)
        return True

    def get_jobs(self) -> list[dict]:
        """Get scheduled jobs.

        Returns:
            List of job dictionaries with id and next run time, sorted by
            next run time.
        """
        if not self._scheduler:
            return []

        jobs = [
            {"job_id": job.id, "next_run_time": getattr(job, "next_run_time", None)}
            for job in self._scheduler.get_jobs()
        ]
        jobs.sort(
            key=lambda j: j["next_run_time"]
            if j["next_run_time"]
            else datetime.max.replace(tzinfo=UTC)
        )
        return jobs

    def _on_job_event(self, event: JobEvent) -> None:
        """Handle job events for logging.

        Args:
            event: Job event from APScheduler.
        """
        if event.code == EVENT_JOB_MAX_INSTANCES:
            logger.debug("Job %s still running, skipped this run", event.job_id)
        elif getattr(event, "exception", None):
            logger.error("Job %s failed: %s", event.job_id, str(event.exception))
        else:
            logger.debug("Job %s completed", event.job_id)

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running.

        Returns:
            True if scheduler is running.
        """
        return self._scheduler is not None and self._scheduler.running


# Module-level helper for getting the singleton
def get_scheduler() -> SchedulerManager:
    """Get the scheduler manager singleton.

    Returns:
        SchedulerManager singleton instance.
    """
    return SchedulerManager.get_instance()
