# cmdrelay/core/relay/queue.py
"""Durable FIFO of relayed commands with periodic single-flight draining.

The queue decouples "command received" from "command executed". Every state
transition rewrites the whole snapshot file, which is acceptable for
human-reply volumes.

State machine per item:
    queued -> executing -> completed
    executing -> queued   (failure, retries < max_retries, linear backoff)
    executing -> failed   (failure, retries == max_retries; terminal)
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import os
import tempfile
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from cmdrelay.core.relay.executor import ExecutorAdapter
from cmdrelay.core.relay.models import (
    DEFAULT_MAX_RETRIES,
    CommandEvent,
    QueuedCommand,
    RelayEvent,
    RelayEventKind,
    generate_command_id,
)
from cmdrelay.core.sessions.models import SessionContext, utc_now
from cmdrelay.core.sessions.store import SessionStore

if TYPE_CHECKING:
    from apscheduler.job import Job

    from cmdrelay.core.scheduler.manager import SchedulerManager

logger = logging.getLogger(__name__)

RelayObserver = Callable[[RelayEvent], Awaitable[None] | None]

DRAIN_JOB_ID = "relay-drain"


class RelayQueue:
    """Persistent command queue drained on a fixed interval.

    Attributes:
        state_file: Path of the JSON queue snapshot.
        max_retries: Attempts allowed per command.
        retry_delay: Backoff unit; the n-th retry waits n * retry_delay.
        retention: How long completed commands are kept for audit.
        executor_timeout: Upper bound on a single submit() call.

    Example:
        >>> queue = RelayQueue("data/relay-state.json", executor, store)
        >>> item = await queue.enqueue(CommandEvent("sid", "list files", "feishu"))
        >>> await queue.drain()
        1
    """

    def __init__(
        self,
        state_file: str,
        executor: ExecutorAdapter,
        session_store: SessionStore,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: timedelta = timedelta(seconds=60),
        retention: timedelta = timedelta(hours=24),
        executor_timeout: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the queue and load the persisted snapshot.

        Args:
            state_file: Path of the JSON queue snapshot.
            executor: Adapter that delivers commands to the terminal.
            session_store: Store whose usage counters are updated on success.
            max_retries: Attempts allowed per command.
            retry_delay: Backoff unit between attempts.
            retention: How long completed commands are kept.
            executor_timeout: Upper bound on a single submit() call, seconds.
            clock: Returns the current UTC time.
        """
        self.state_file = state_file
        self.executor = executor
        self.session_store = session_store
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retention = retention
        self.executor_timeout = executor_timeout
        self._clock = clock

        self._items: list[QueuedCommand] = []
        self._observers: list[RelayObserver] = []
        self._drain_lock = asyncio.Lock()
        self._idle = asyncio.Event()
        self._idle.set()
        self._running = False
        self._scheduler: SchedulerManager | None = None
        self._drain_job: Job | None = None
        self._pump_task: asyncio.Task | None = None
        self._channel: asyncio.Queue[CommandEvent] | None = None

        state_dir = os.path.dirname(state_file)
        if state_dir:
            os.makedirs(state_dir, exist_ok=True)

        self._load_state()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_state(self) -> None:
        if not os.path.exists(self.state_file):
            return

        try:
            with open(self.state_file, encoding="utf-8") as f:
                state = json.load(f)
            items = [QueuedCommand.from_dict(d) for d in state.get("commandQueue", [])]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Failed to load relay state: %s", e)
            self._items = []
            return

        # An item persisted mid-attempt never reported back; deliver it again
        for item in items:
            if item.status == "executing":
                item.status = "queued"

        self._items = items
        logger.debug("Loaded %d queued commands", len(self._items))

    def save_state(self) -> bool:
        """Write the whole queue snapshot atomically.

        Returns:
            True if saved, False if the write failed (logged, not raised).
        """
        state = {
            "commandQueue": [item.to_dict() for item in self._items],
            "lastSaved": self._clock().isoformat(),
        }
        state_dir = os.path.dirname(self.state_file) or "."
        try:
            fd, tmp_path = tempfile.mkstemp(dir=state_dir, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(state, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, self.state_file)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            logger.error("Failed to save relay state: %s", e)
            return False
        return True

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, observer: RelayObserver) -> None:
        """Register a callback for queued/executed/retry/failed events.

        Callbacks may be plain functions or coroutine functions. Their
        exceptions are logged and never affect queue processing.
        """
        self._observers.append(observer)

    async def _notify(
        self, kind: RelayEventKind, item: QueuedCommand, error: str | None = None
    ) -> None:
        event = RelayEvent(kind=kind, item=item, error=error)
        for observer in list(self._observers):
            try:
                result = observer(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Relay observer failed on %s event: %s", kind, e)

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    @property
    def items(self) -> list[QueuedCommand]:
        """Snapshot of all items in queue order."""
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def get(self, command_id: str) -> QueuedCommand | None:
        return next((item for item in self._items if item.id == command_id), None)

    async def enqueue(self, event: CommandEvent) -> QueuedCommand:
        """Append a validated command to the queue.

        Args:
            event: Command raised by the event gateway.

        Returns:
            The new QueuedCommand with status queued.
        """
        item = QueuedCommand(
            id=generate_command_id(),
            session_id=event.session_id,
            command=event.command,
            origin_channel=event.origin_channel,
            origin_metadata=dict(event.origin_metadata),
            queued_at=self._clock(),
            status="queued",
            retries=0,
            max_retries=self.max_retries,
        )
        self._items.append(item)
        self.save_state()

        logger.info(
            "Command queued: %s (user: %s)",
            item.preview(),
            item.origin_metadata.get("user_id"),
            extra={"session_id": item.session_id, "command_id": item.id},
        )
        await self._notify("queued", item)
        return item

    async def drain(self) -> int | None:
        """Run one drain tick.

        If another tick is still running, this tick is skipped entirely
        rather than waiting for it.

        Returns:
            Number of commands attempted, or None if the tick was skipped.
        """
        if self._drain_lock.locked():
            logger.debug("Drain tick skipped, previous tick still running")
            return None

        async with self._drain_lock:
            self._idle.clear()
            try:
                now = self._clock()
                due = [item for item in self._items if item.is_due(now)]
                for item in due:
                    await self._execute(item)
                return len(due)
            finally:
                self._idle.set()

    @property
    def is_processing(self) -> bool:
        return self._drain_lock.locked()

    async def _submit(self, item: QueuedCommand) -> bool:
        session = self.session_store.get(item.session_id)
        context = (
            SessionContext.from_session(session)
            if session
            else SessionContext(session_id=item.session_id)
        )
        return await asyncio.wait_for(
            self.executor.submit(item.command, context),
            timeout=self.executor_timeout,
        )

    async def _execute(self, item: QueuedCommand) -> None:
        log_extra = {"session_id": item.session_id, "command_id": item.id}
        logger.info("Executing command %s", item.preview(100), extra=log_extra)

        item.status = "executing"
        item.executed_at = self._clock()
        self.save_state()

        try:
            success = await self._submit(item)
            error = None if success else "Executor reported failure"
        except TimeoutError:
            error = f"Executor timed out after {self.executor_timeout:.0f}s"
        except Exception as e:
            error = str(e) or type(e).__name__

        if error is not None:
            await self._handle_failure(item, error)
            return

        item.status = "completed"
        item.completed_at = self._clock()
        item.error = None
        self.save_state()
        self.session_store.record_usage(item.session_id)

        logger.info("Command %s executed successfully", item.id, extra=log_extra)
        await self._notify("executed", item)

    async def _handle_failure(self, item: QueuedCommand, error: str) -> None:
        now = self._clock()
        item.retries += 1
        item.error = error
        item.failed_at = now

        if item.retries < item.max_retries:
            item.status = "queued"
            item.retry_at = now + self.retry_delay * item.retries
            self.save_state()
            logger.warning(
                "Command %s failed (%s), retry %d scheduled at %s",
                item.id,
                error,
                item.retries + 1,
                item.retry_at.isoformat(),
                extra={"session_id": item.session_id, "command_id": item.id},
            )
            await self._notify("retry", item, error)
        else:
            item.status = "failed"
            item.retry_at = None
            self.save_state()
            logger.error(
                "Command %s failed after %d retries: %s",
                item.id,
                item.retries,
                error,
                extra={"session_id": item.session_id, "command_id": item.id},
            )
            await self._notify("failed", item, error)

    def cleanup(self) -> int:
        """Drop completed commands older than the retention window.

        Failed commands are kept for audit.

        Returns:
            Number of commands removed.
        """
        cutoff = self._clock() - self.retention
        before = len(self._items)
        self._items = [
            item
            for item in self._items
            if item.status != "completed"
            or (item.completed_at is not None and item.completed_at > cutoff)
        ]

        removed = before - len(self._items)
        if removed > 0:
            logger.info("Cleaned up %d completed commands", removed)
            self.save_state()
        return removed

    def get_status(self) -> dict[str, Any]:
        """Summarize the queue for status reporting."""
        counts: dict[str, int] = {
            "queued": 0,
            "executing": 0,
            "completed": 0,
            "failed": 0,
        }
        for item in self._items:
            counts[item.status] = counts.get(item.status, 0) + 1

        return {
            "is_running": self._running,
            "queue_length": len(self._items),
            "processing": self.is_processing,
            "counts": counts,
            "recent_commands": [
                {
                    "id": item.id,
                    "status": item.status,
                    "queued_at": item.queued_at.isoformat() if item.queued_at else None,
                    "command": item.preview(),
                    "source": item.origin_channel,
                    "user_id": item.origin_metadata.get("user_id"),
                }
                for item in self._items[-5:]
            ],
        }

    # ------------------------------------------------------------------
    # Command channel and lifecycle
    # ------------------------------------------------------------------

    async def pump(self, channel: asyncio.Queue[CommandEvent]) -> None:
        """Move commands from the gateway's channel into the queue, forever."""
        while True:
            event = await channel.get()
            try:
                await self.enqueue(event)
            finally:
                channel.task_done()

    async def _flush_channel(self) -> None:
        if self._channel is None:
            return
        while True:
            try:
                event = self._channel.get_nowait()
            except asyncio.QueueEmpty:
                break
            await self.enqueue(event)
            self._channel.task_done()

    def start(
        self,
        scheduler: SchedulerManager,
        interval: float = 3.0,
        channel: asyncio.Queue[CommandEvent] | None = None,
    ) -> Job:
        """Start periodic draining and, if given, consuming the command channel.

        Must be called from a running event loop.

        Args:
            scheduler: Scheduler that owns the periodic drain job.
            interval: Seconds between drain ticks.
            channel: Bounded queue fed by the event gateway.

        Returns:
            Handle of the scheduled drain job.
        """
        if self._running and self._drain_job is not None:
            logger.warning("Relay queue already running")
            return self._drain_job

        self._scheduler = scheduler
        self._drain_job = scheduler.add_interval_job(
            DRAIN_JOB_ID, self.drain, interval, run_immediately=True
        )

        if channel is not None:
            self._channel = channel
            self._pump_task = asyncio.create_task(self.pump(channel))

        self._running = True
        logger.info("Relay queue started (%d items loaded)", len(self._items))
        return self._drain_job

    async def stop(self) -> None:
        """Stop draining and wait for an in-flight tick to finish.

        The executing command, if any, is never aborted.
        """
        if not self._running:
            return
        self._running = False

        if self._scheduler is not None:
            self._scheduler.remove_job(DRAIN_JOB_ID)
        self._drain_job = None

        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None
        await self._flush_channel()

        await self._idle.wait()
        self.save_state()
        logger.info("Relay queue stopped")

    @property
    def is_running(self) -> bool:
        return self._running
