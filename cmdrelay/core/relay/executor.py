"""Executor adapters that deliver relayed commands to the live terminal.

The relay queue only depends on ExecutorAdapter. Submitting may be retried,
so adapters must tolerate repeated calls, and they must bound their own
runtime so a stuck terminal never blocks the drain loop.
"""

import asyncio
import logging
from typing import Protocol

from cmdrelay.core.sessions.models import SessionContext

logger = logging.getLogger(__name__)


class ExecutorAdapter(Protocol):
    """Protocol for submitting an authorized command to the live session."""

    async def submit(self, command: str, context: SessionContext) -> bool:
        """Submit a command.

        Args:
            command: Command text that passed the guardrails.
            context: Session the command was authorized against.

        Returns:
            True if the command was delivered, False on a retryable failure.
        """
        ...


class TmuxExecutor:
    """Types the command into a tmux session and presses Enter.

    The target is the session's ``working_context["tmux_session"]`` when
    present, otherwise the default session name.
    """

    def __init__(
        self,
        default_session: str = "claude-code",
        timeout: float = 10.0,
        tmux_binary: str = "tmux",
    ) -> None:
        """Initialize the executor.

        Args:
            default_session: tmux target used when the session names none.
            timeout: Seconds allowed for each tmux invocation.
            tmux_binary: Path or name of the tmux executable.
        """
        self.default_session = default_session
        self.timeout = timeout
        self.tmux_binary = tmux_binary

    def target_for(self, context: SessionContext) -> str:
        return context.working_context.get("tmux_session") or self.default_session

    async def _tmux(self, *args: str) -> bool:
        try:
            process = await asyncio.create_subprocess_exec(
                self.tmux_binary,
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("Failed to start %s: %s", self.tmux_binary, e)
            return False

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), self.timeout)
        except TimeoutError:
            process.kill()
            await process.wait()
            logger.error("tmux %s timed out after %.1fs", args[0], self.timeout)
            return False

        if process.returncode != 0:
            logger.error(
                "tmux %s exited with %d: %s",
                args[0],
                process.returncode,
                stderr.decode(errors="replace").strip(),
            )
            return False
        return True

    async def submit(self, command: str, context: SessionContext) -> bool:
        """Send the command text literally, then Enter, to the tmux target.

        Args:
            command: Command text.
            context: Session context naming the tmux target.

        Returns:
            True if both tmux calls succeeded.
        """
        target = self.target_for(context)

        if not await self._tmux("send-keys", "-t", target, "-l", "--", command):
            return False
        if not await self._tmux("send-keys", "-t", target, "Enter"):
            return False

        logger.info(
            "Command sent to tmux session %s",
            target,
            extra={"session_id": context.session_id},
        )
        return True
