# tests/test_executor.py
"""Tests for the tmux executor adapter."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cmdrelay.core.relay.executor import TmuxExecutor
from cmdrelay.core.sessions.models import SessionContext


def make_process(returncode: int = 0, stderr: bytes = b"") -> MagicMock:
    process = MagicMock()
    process.communicate = AsyncMock(return_value=(b"", stderr))
    process.returncode = returncode
    process.wait = AsyncMock(return_value=returncode)
    return process


class TestTmuxExecutor:
    """Tests for TmuxExecutor.submit."""

    def test_target_defaults_to_configured_session(self):
        executor = TmuxExecutor(default_session="claude-code")

        assert executor.target_for(SessionContext("s-1")) == "claude-code"
        assert (
            executor.target_for(SessionContext("s-1", {"tmux_session": "work"}))
            == "work"
        )

    @pytest.mark.asyncio
    async def test_sends_literal_text_then_enter(self):
        executor = TmuxExecutor(default_session="claude-code")
        with patch(
            "cmdrelay.core.relay.executor.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=[make_process(), make_process()]),
        ) as mock_exec:
            result = await executor.submit(
                "list files", SessionContext("s-1", {"tmux_session": "work"})
            )

        assert result is True
        first, second = mock_exec.call_args_list
        assert first.args == ("tmux", "send-keys", "-t", "work", "-l", "--", "list files")
        assert second.args == ("tmux", "send-keys", "-t", "work", "Enter")

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_failure(self):
        executor = TmuxExecutor()
        with patch(
            "cmdrelay.core.relay.executor.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=make_process(1, b"can't find session")),
        ) as mock_exec:
            result = await executor.submit("ls", SessionContext("s-1"))

        assert result is False
        # Enter is never pressed after a failed send
        assert mock_exec.call_count == 1

    @pytest.mark.asyncio
    async def test_missing_binary_is_failure(self):
        executor = TmuxExecutor(tmux_binary="/nonexistent/tmux")
        with patch(
            "cmdrelay.core.relay.executor.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=FileNotFoundError("no such file")),
        ):
            result = await executor.submit("ls", SessionContext("s-1"))

        assert result is False

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        async def hang():
            await asyncio.sleep(10)

        process = make_process()
        process.communicate = hang
        executor = TmuxExecutor(timeout=0.01)
        with patch(
            "cmdrelay.core.relay.executor.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            result = await executor.submit("ls", SessionContext("s-1"))

        assert result is False
        process.kill.assert_called_once()
