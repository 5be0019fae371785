"""Relay service wiring the session store, command channel and relay queue.

One RelayService owns everything that runs between "event accepted" and
"command typed into the terminal":
- the bounded command channel the event gateway writes to
- the relay queue and its periodic drain
- the completed-command cleanup and expired-session sweep jobs
- the outbound notifier used for session issuance and failure reports
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any

from cmdrelay.config import settings
from cmdrelay.core.relay.executor import ExecutorAdapter, TmuxExecutor
from cmdrelay.core.relay.models import CommandEvent, RelayEvent
from cmdrelay.core.relay.queue import RelayQueue
from cmdrelay.core.scheduler.manager import SchedulerManager, get_scheduler
from cmdrelay.core.scheduler.notification import NotificationProtocol, WebhookNotifier
from cmdrelay.core.sessions.dispatch import Notification, NotificationDispatcher
from cmdrelay.core.sessions.models import Session
from cmdrelay.core.sessions.store import SessionStore, get_session_store

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "relay-cleanup"
SESSION_SWEEP_JOB_ID = "session-sweep"


class RelayService:
    """Owns the relay queue and its periodic jobs for one listener process."""

    def __init__(
        self,
        store: SessionStore | None = None,
        executor: ExecutorAdapter | None = None,
        notifier: NotificationProtocol | None = None,
        scheduler: SchedulerManager | None = None,
        state_file: str | None = None,
    ) -> None:
        """Initialize the service. Collaborators default to settings-based ones.

        Args:
            store: Session store; defaults to the shared store.
            executor: Executor adapter; defaults to TmuxExecutor.
            notifier: Outbound notifier; defaults to the bot webhook.
            scheduler: Scheduler for periodic jobs; defaults to the singleton.
            state_file: Queue snapshot path; defaults to settings.
        """
        self.store = store or get_session_store()
        self.executor = executor or TmuxExecutor(
            default_session=settings.tmux_session,
            timeout=settings.executor_timeout_seconds,
        )
        self.notifier = notifier or WebhookNotifier(
            settings.notify_webhook, settings.notify_secret
        )
        self.scheduler = scheduler or get_scheduler()

        self.channel: asyncio.Queue[CommandEvent] = asyncio.Queue(
            maxsize=settings.command_channel_size
        )
        self.queue = RelayQueue(
            state_file=state_file or settings.relay_state_file,
            executor=self.executor,
            session_store=self.store,
            max_retries=settings.max_retries,
            retry_delay=timedelta(seconds=settings.retry_delay_seconds),
            retention=timedelta(hours=settings.completed_retention_hours),
            executor_timeout=settings.executor_timeout_seconds,
        )
        self.dispatcher = NotificationDispatcher(self.store, self.notifier)
        self.queue.subscribe(self._report_failure)
        self._started = False

    async def _report_failure(self, event: RelayEvent) -> None:
        if event.kind != "failed":
            return
        if not getattr(self.notifier, "is_configured", True):
            return

        item = event.item
        message = (
            f"[Command failed] {item.preview()}\n"
            f"Attempts: {item.retries}\n"
            f"Error: {event.error or 'unknown'}"
        )
        if not await self.notifier.send(message):
            logger.warning("Failure report for %s was not delivered", item.id)

    def _cleanup(self) -> None:
        self.queue.cleanup()

    def _sweep_sessions(self) -> None:
        self.store.sweep_expired()

    def start(self) -> None:
        """Start draining the queue and register the maintenance jobs.

        Must be called from a running event loop, after the scheduler.
        """
        if self._started:
            return

        self.queue.start(
            self.scheduler,
            interval=settings.drain_interval_seconds,
            channel=self.channel,
        )
        self.scheduler.add_interval_job(
            CLEANUP_JOB_ID, self._cleanup, settings.cleanup_interval_minutes * 60
        )
        self.scheduler.add_interval_job(
            SESSION_SWEEP_JOB_ID,
            self._sweep_sessions,
            settings.session_sweep_interval_minutes * 60,
            run_immediately=True,
        )
        self._started = True
        logger.info("Relay service started")

    async def shutdown(self) -> None:
        """Remove maintenance jobs and stop the queue, waiting for a running tick."""
        if not self._started:
            return

        self.scheduler.remove_job(CLEANUP_JOB_ID)
        self.scheduler.remove_job(SESSION_SWEEP_JOB_ID)
        await self.queue.stop()
        self._started = False
        logger.info("Relay service stopped")

    async def notify(self, notification: Notification) -> Session | None:
        """Issue a session for a local notification and send it to the channel."""
        return await self.dispatcher.dispatch(notification)

    def get_status(self) -> dict[str, Any]:
        status = self.queue.get_status()
        status["channel_backlog"] = self.channel.qsize()
        status["stored_sessions"] = self.store.count()
        status["jobs"] = [
            {
                "job_id": job["job_id"],
                "next_run_time": job["next_run_time"].isoformat()
                if job["next_run_time"]
                else None,
            }
            for job in self.scheduler.get_jobs()
        ]
        return status

    @property
    def is_running(self) -> bool:
        return self._started


_service: RelayService | None = None


def get_relay_service() -> RelayService:
    """Get the singleton RelayService instance.

    Returns:
        RelayService built from settings.
    """
    global _service
    if _service is None:
        _service = RelayService()
    return _service


def reset_relay_service() -> None:
    """Reset the singleton service (for testing)."""
    global _service
    _service = None
