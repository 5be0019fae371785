# tests/test_service.py
"""Tests for the relay service wiring."""

from unittest.mock import MagicMock

import pytest
from conftest import RecordingExecutor, RecordingNotifier

from cmdrelay.config import settings
from cmdrelay.core.relay import CommandEvent, RelayService
from cmdrelay.core.relay.queue import DRAIN_JOB_ID
from cmdrelay.core.relay.service import CLEANUP_JOB_ID, SESSION_SWEEP_JOB_ID
from cmdrelay.core.sessions import Notification


@pytest.fixture
def scheduler():
    scheduler = MagicMock()
    scheduler.get_jobs.return_value = []
    return scheduler


@pytest.fixture
def make_service(store, state_file, scheduler):
    def factory(executor=None, notifier=None) -> RelayService:
        return RelayService(
            store=store,
            executor=executor or RecordingExecutor(),
            notifier=notifier or RecordingNotifier(),
            scheduler=scheduler,
            state_file=state_file,
        )

    return factory


class TestRelayService:
    """Tests for RelayService."""

    @pytest.mark.asyncio
    async def test_start_registers_jobs(self, make_service, scheduler):
        service = make_service()

        service.start()

        job_ids = [c.args[0] for c in scheduler.add_interval_job.call_args_list]
        assert job_ids == [DRAIN_JOB_ID, CLEANUP_JOB_ID, SESSION_SWEEP_JOB_ID]
        assert service.is_running is True

        await service.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_removes_jobs(self, make_service, scheduler):
        service = make_service()
        service.start()

        await service.shutdown()

        removed = {c.args[0] for c in scheduler.remove_job.call_args_list}
        assert removed == {DRAIN_JOB_ID, CLEANUP_JOB_ID, SESSION_SWEEP_JOB_ID}
        assert service.is_running is False
        assert service.queue.is_running is False

    @pytest.mark.asyncio
    async def test_shutdown_before_start_is_noop(self, make_service, scheduler):
        service = make_service()

        await service.shutdown()

        scheduler.remove_job.assert_not_called()

    @pytest.mark.asyncio
    async def test_terminal_failure_is_reported(self, make_service, store, monkeypatch):
        monkeypatch.setattr(settings, "max_retries", 1)
        notifier = RecordingNotifier()
        service = make_service(executor=RecordingExecutor(default=False), notifier=notifier)
        session = store.create("feishu")

        await service.queue.enqueue(CommandEvent(session.id, "list files", "feishu"))
        await service.queue.drain()

        assert len(notifier.messages) == 1
        assert "[Command failed] list files" in notifier.messages[0]
        assert "Executor reported failure" in notifier.messages[0]

    @pytest.mark.asyncio
    async def test_retry_is_not_reported(self, make_service, store):
        notifier = RecordingNotifier()
        service = make_service(executor=RecordingExecutor(default=False), notifier=notifier)
        session = store.create("feishu")

        await service.queue.enqueue(CommandEvent(session.id, "list files", "feishu"))
        await service.queue.drain()

        assert notifier.messages == []

    @pytest.mark.asyncio
    async def test_notify_issues_session(self, make_service, store):
        notifier = RecordingNotifier()
        service = make_service(notifier=notifier)

        session = await service.notify(
            Notification(type="waiting", project="app", message="Need input")
        )

        assert session is not None
        assert store.resolve_token(session.token) == session.id
        assert session.token in notifier.messages[0]

    @pytest.mark.asyncio
    async def test_status(self, make_service, store):
        service = make_service()
        session = store.create("feishu")
        service.channel.put_nowait(CommandEvent(session.id, "pending", "feishu"))

        status = service.get_status()

        assert status["channel_backlog"] == 1
        assert status["stored_sessions"] == 1
        assert status["queue_length"] == 0
        assert status["jobs"] == []
