# cmdrelay/interfaces/api/schemas.py
"""Pydantic models for the event callback and the ambient API endpoints.

The event envelope models only name the fields the gateway reads; everything
else the platform sends is accepted and ignored.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore")


class EventHeader(_Envelope):
    """Header of a v2 event callback."""

    event_id: str | None = None
    event_type: str | None = None
    create_time: str | None = None
    token: str | None = None


class EventCallback(_Envelope):
    """Top-level callback body.

    Attributes:
        type: "url_verification" for the endpoint handshake.
        challenge: Value to echo back during the handshake.
        header: Event header (v2 schema).
        event: Event payload; its shape depends on header.event_type.
    """

    type: str | None = None
    challenge: str | None = None
    header: EventHeader | None = None
    event: dict[str, Any] = Field(default_factory=dict)

    @property
    def event_type(self) -> str | None:
        return self.header.event_type if self.header else None


class UserId(_Envelope):
    user_id: str | None = None
    open_id: str | None = None


class MessageSender(_Envelope):
    sender_id: UserId = Field(default_factory=UserId)
    sender_type: str | None = None


class Message(_Envelope):
    message_id: str | None = None
    chat_id: str | None = None
    chat_type: str | None = None
    message_type: str | None = None
    content: str = ""


class MessageReceiveEvent(_Envelope):
    """Payload of im.message.receive_v1."""

    sender: MessageSender = Field(default_factory=MessageSender)
    message: Message = Field(default_factory=Message)


class CardAction(_Envelope):
    value: dict[str, Any] = Field(default_factory=dict)
    tag: str | None = None


class CardOperator(_Envelope):
    operator_id: UserId = Field(default_factory=UserId)


class CardActionEvent(_Envelope):
    """Payload of card.action.trigger."""

    operator: CardOperator = Field(default_factory=CardOperator)
    action: CardAction = Field(default_factory=CardAction)


class AckResponse(BaseModel):
    """Acknowledgement returned for every handled callback."""

    code: int = 0
    msg: str = "success"


class ChallengeResponse(BaseModel):
    challenge: str


class ErrorResponse(BaseModel):
    error: str


class NotifyRequest(BaseModel):
    """Request body for POST /notify.

    Attributes:
        type: "completed" or "waiting".
        project: Project name shown to the user.
        message: Short summary of what happened.
        working_context: ``cwd``, ``project`` and optional ``tmux_session``
            target for replies.
        metadata: Free-form extra data.
    """

    type: str = Field("completed", description="Notification type (completed, waiting)")
    project: str = Field(..., description="Project name shown in the notification")
    message: str = Field(..., description="Notification body")
    working_context: dict[str, Any] = Field(
        default_factory=dict,
        description="cwd, project and optional tmux_session the replies are relayed to",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotifyResponse(BaseModel):
    """Response body for POST /notify."""

    session_id: str = Field(..., description="Issued session id")
    token: str = Field(..., description="Token users reply with")
    expires_at: str = Field(..., description="Expiry time (ISO 8601, UTC)")


class StatusResponse(BaseModel):
    """Response body for GET /status."""

    is_running: bool
    queue_length: int
    processing: bool
    counts: dict[str, int]
    recent_commands: list[dict[str, Any]]
    channel_backlog: int = 0
    stored_sessions: int = 0
    jobs: list[dict[str, Any]] = Field(default_factory=list)
