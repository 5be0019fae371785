"""Data models for the relay queue.

Defines the queued command record persisted in the queue snapshot and the
events passed between the gateway, the queue and its observers.
"""

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

CommandStatus = Literal["queued", "executing", "completed", "failed"]
RelayEventKind = Literal["queued", "executed", "retry", "failed"]

DEFAULT_MAX_RETRIES = 3


def generate_command_id(prefix: str = "rq") -> str:
    """Time-based id with a random suffix, e.g. "rq_18f3a2b9c1d4e5f6a7b8"."""
    return f"{prefix}_{int(time.time() * 1000):x}{secrets.token_hex(4)}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class CommandEvent:
    """A validated command raised by the event gateway.

    Attributes:
        session_id: Session the command was authorized against.
        command: Command text that passed the guardrails.
        origin_channel: Channel the reply came from.
        origin_metadata: Sender, chat and message identifiers from the channel.
    """

    session_id: str
    command: str
    origin_channel: str
    origin_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class InteractionEvent:
    """A card interaction (button press) raised by the event gateway.

    Attributes:
        action: view_details, copy_session or goto_terminal.
        session_id: Session the card belongs to.
        actor_id: User who pressed the button.
        details: Action-specific data (session snapshot, terminal target).
    """

    action: str
    session_id: str
    actor_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class QueuedCommand:
    """A command waiting in, or processed by, the relay queue.

    Attributes:
        id: Relay-assigned identifier.
        session_id: Session the command targets.
        command: Command text to submit.
        origin_channel: Channel the command came from.
        origin_metadata: Sender, chat and message identifiers.
        status: queued, executing, completed or failed.
        retries: Failed attempts so far.
        max_retries: Attempts allowed before the command fails permanently.
        retry_at: Earliest time of the next attempt.
        queued_at: When the command entered the queue.
        executed_at: Start of the latest attempt.
        completed_at: When the command succeeded.
        failed_at: Time of the latest failed attempt.
        error: Message of the latest failure.
    """

    id: str
    session_id: str
    command: str
    origin_channel: str
    queued_at: datetime
    origin_metadata: dict[str, Any] = field(default_factory=dict)
    status: CommandStatus = "queued"
    retries: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_at: datetime | None = None
    executed_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    error: str | None = None

    def is_due(self, now: datetime) -> bool:
        """Check whether a queued command may be attempted at the given time."""
        return self.status == "queued" and (self.retry_at is None or self.retry_at <= now)

    def preview(self, limit: int = 50) -> str:
        return self.command if len(self.command) <= limit else self.command[:limit] + "..."

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization.

        Returns:
            Dictionary representation of the queued command.
        """
        return {
            "id": self.id,
            "session_id": self.session_id,
            "command": self.command,
            "origin_channel": self.origin_channel,
            "origin_metadata": self.origin_metadata,
            "status": self.status,
            "retries": self.retries,
            "max_retries": self.max_retries,
            "retry_at": _iso(self.retry_at),
            "queued_at": _iso(self.queued_at),
            "executed_at": _iso(self.executed_at),
            "completed_at": _iso(self.completed_at),
            "failed_at": _iso(self.failed_at),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueuedCommand":
        """Create from dictionary.

        Args:
            data: Dictionary with queued command data.

        Returns:
            QueuedCommand instance.
        """
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            command=data["command"],
            origin_channel=data.get("origin_channel", ""),
            origin_metadata=data.get("origin_metadata") or {},
            status=data.get("status", "queued"),
            retries=data.get("retries", 0),
            max_retries=data.get("max_retries", DEFAULT_MAX_RETRIES),
            retry_at=_parse(data.get("retry_at")),
            queued_at=_parse(data.get("queued_at")),
            executed_at=_parse(data.get("executed_at")),
            completed_at=_parse(data.get("completed_at")),
            failed_at=_parse(data.get("failed_at")),
            error=data.get("error"),
        )


@dataclass
class RelayEvent:
    """Status notification delivered to relay queue observers.

    Attributes:
        kind: queued, executed, retry or failed.
        item: The queued command the event is about.
        error: Failure message for retry and failed events.
    """

    kind: RelayEventKind
    item: QueuedCommand
    error: str | None = None
