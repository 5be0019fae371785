# cmdrelay/core/sessions/models.py
"""Data models for relay sessions."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

SessionStatus = Literal["waiting", "active", "expired"]

DEFAULT_MAX_COMMANDS = 10
TOKEN_LENGTH = 8
TOKEN_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class Session:
    """Represents a time- and usage-bounded authorization scope.

    A session is created when a notification is dispatched and authorizes
    replies to that notification to submit commands to the live terminal.

    Attributes:
        id: Unique identifier (UUID4 string).
        token: Short human-typeable token the user echoes back.
        channel: Channel the notification was sent through.
        created_at: Creation time (UTC).
        expires_at: Time after which the session is no longer usable.
        working_context: Captured working directory and project identity.
        notification: Type, project and message of the originating notification.
        status: waiting, active or expired.
        command_count: Number of successfully executed commands.
        max_commands: Cap on command_count.
        last_command_at: Time of the last successfully executed command.
    """

    id: str
    token: str
    channel: str
    created_at: datetime
    expires_at: datetime
    working_context: dict[str, Any] = field(default_factory=dict)
    notification: dict[str, Any] = field(default_factory=dict)
    status: SessionStatus = "waiting"
    command_count: int = 0
    max_commands: int = DEFAULT_MAX_COMMANDS
    last_command_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def is_exhausted(self) -> bool:
        return self.command_count >= self.max_commands

    def is_usable(self, now: datetime | None = None) -> bool:
        """Check the session invariant: not expired and under the command cap."""
        return not self.is_expired(now) and not self.is_exhausted()

    def effective_status(self, now: datetime | None = None) -> SessionStatus:
        """Status with expiry derived from the clock rather than the stored field."""
        if self.is_expired(now):
            return "expired"
        return self.status

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization.

        Returns:
            Dictionary representation of the session.
        """
        return {
            "id": self.id,
            "token": self.token,
            "channel": self.channel,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "working_context": self.working_context,
            "notification": self.notification,
            "status": self.status,
            "command_count": self.command_count,
            "max_commands": self.max_commands,
            "last_command_at": self.last_command_at.isoformat()
            if self.last_command_at
            else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Create from dictionary.

        Args:
            data: Dictionary with session data.

        Returns:
            Session instance.
        """
        return cls(
            id=data["id"],
            token=data["token"],
            channel=data.get("channel", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            working_context=data.get("working_context") or {},
            notification=data.get("notification") or {},
            status=data.get("status", "waiting"),
            command_count=data.get("command_count", 0),
            max_commands=data.get("max_commands", DEFAULT_MAX_COMMANDS),
            last_command_at=datetime.fromisoformat(data["last_command_at"])
            if data.get("last_command_at")
            else None,
        )


@dataclass
class SessionContext:
    """What the executor needs to know about the session a command targets.

    Attributes:
        session_id: Session the command was authorized against.
        working_context: Working directory, project and terminal target.
    """

    session_id: str
    working_context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_session(cls, session: Session) -> "SessionContext":
        return cls(session_id=session.id, working_context=dict(session.working_context))
