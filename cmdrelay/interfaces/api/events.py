# cmdrelay/interfaces/api/events.py
"""Event gateway: turns verified platform callbacks into relay events.

Message pipeline for im.message.receive_v1:
    text -> extract session reference and command
         -> validate session (expiry, command cap)
         -> security filter
         -> CommandEvent on the bounded command channel

Authorization failures and filter rejections are dropped here and never
surfaced to the sender; the HTTP layer acknowledges the callback anyway.
"""

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from cmdrelay.core.commands.parser import extract_command
from cmdrelay.core.relay.models import CommandEvent, InteractionEvent
from cmdrelay.core.sessions.store import SessionStore
from cmdrelay.interfaces.api.schemas import (
    AckResponse,
    CardActionEvent,
    EventCallback,
    EventHeader,
    MessageReceiveEvent,
)
from cmdrelay.middleware.guardrails import CommandPolicy, is_safe

logger = logging.getLogger(__name__)

MESSAGE_RECEIVE_EVENT = "im.message.receive_v1"
CARD_ACTION_EVENT = "card.action.trigger"

InteractionObserver = Callable[[InteractionEvent], Awaitable[None] | None]


class ChannelFullError(RuntimeError):
    """Raised when the command channel cannot take another command."""


class EventGateway:
    """Dispatches callbacks by event type and raises relay events.

    Attributes:
        store: Session store used to resolve and validate references.
        channel: Bounded command channel consumed by the relay queue.
        policy: Security filter policy applied to every command.
    """

    origin_channel = "feishu"

    def __init__(
        self,
        store: SessionStore,
        channel: asyncio.Queue[CommandEvent],
        policy: CommandPolicy | None = None,
    ) -> None:
        self.store = store
        self.channel = channel
        self.policy = policy
        self._observers: list[InteractionObserver] = []
        self._action_handlers: dict[
            str, Callable[[str, str | None], dict[str, Any]]
        ] = {
            "view_details": self._view_details,
            "copy_session": self._copy_session,
            "goto_terminal": self._goto_terminal,
        }

    def subscribe(self, observer: InteractionObserver) -> None:
        """Register a callback for card interaction events."""
        self._observers.append(observer)

    async def handle(self, callback: EventCallback) -> dict[str, Any]:
        """Process one verified callback.

        Args:
            callback: Parsed callback body.

        Returns:
            Response body: the challenge echo for the handshake, otherwise the
            standard acknowledgement.

        Raises:
            ChannelFullError: If an accepted command could not be queued.
        """
        if callback.type == "url_verification":
            logger.info("URL verification challenge received")
            return {"challenge": callback.challenge or ""}

        event_type = callback.event_type
        if event_type == MESSAGE_RECEIVE_EVENT:
            await self.handle_message(
                MessageReceiveEvent.model_validate(callback.event), callback.header
            )
        elif event_type == CARD_ACTION_EVENT:
            await self.handle_card_action(CardActionEvent.model_validate(callback.event))
        else:
            logger.info("Ignoring unhandled event type: %s", event_type or callback.type)

        return AckResponse().model_dump()

    async def handle_message(
        self, event: MessageReceiveEvent, header: EventHeader | None = None
    ) -> CommandEvent | None:
        """Run the message pipeline for one received message.

        Args:
            event: Message payload.
            header: Callback header (for the event creation time).

        Returns:
            The CommandEvent placed on the channel, or None if dropped.

        Raises:
            ChannelFullError: If the command channel is full.
        """
        message = event.message
        if message.message_type and message.message_type != "text":
            logger.debug("Ignoring %s message", message.message_type)
            return None

        try:
            content = json.loads(message.content or "{}")
        except ValueError as e:
            logger.warning("Unreadable message content: %s", e)
            return None
        text = content.get("text", "") if isinstance(content, dict) else ""

        user_id = event.sender.sender_id.user_id
        logger.info("Received message from %s: %s", user_id, text[:100])

        extracted = extract_command(text, self.store.resolve_token)
        if extracted is None:
            logger.info("No session reference or command in message")
            return None

        session = self.store.validate(extracted.session_id)
        if session is None:
            logger.warning(
                "Session invalid or expired, command dropped",
                extra={"session_id": extracted.session_id},
            )
            return None

        if not is_safe(extracted.command, self.policy):
            logger.warning(
                "Unsafe command rejected from user %s",
                user_id,
                extra={"session_id": session.id},
            )
            return None

        command_event = CommandEvent(
            session_id=session.id,
            command=extracted.command,
            origin_channel=self.origin_channel,
            origin_metadata={
                "user_id": user_id,
                "chat_id": message.chat_id,
                "message_id": message.message_id,
                "timestamp": header.create_time if header else None,
            },
        )

        try:
            self.channel.put_nowait(command_event)
        except asyncio.QueueFull as e:
            logger.error(
                "Command channel full, message %s not accepted", message.message_id
            )
            raise ChannelFullError("Command channel is full") from e

        logger.info(
            "Command accepted: %s",
            extracted.command[:50],
            extra={"session_id": session.id},
        )
        return command_event

    async def handle_card_action(self, event: CardActionEvent) -> InteractionEvent | None:
        """Handle a card button press.

        Args:
            event: Card action payload.

        Returns:
            The InteractionEvent delivered to observers, or None if ignored.
        """
        value = event.action.value
        session_id = value.get("session_id")
        if not session_id:
            logger.warning("No session_id in card action")
            return None

        action = value.get("action")
        actor_id = event.operator.operator_id.user_id
        handler = self._action_handlers.get(action or "")
        if handler is None:
            logger.warning("Unknown card action: %s", action)
            return None

        logger.info(
            "Card action triggered: %s by %s",
            action,
            actor_id,
            extra={"session_id": session_id},
        )
        interaction = InteractionEvent(
            action=action,
            session_id=session_id,
            actor_id=actor_id,
            details=handler(session_id, actor_id),
        )
        await self._notify(interaction)
        return interaction

    def _view_details(self, session_id: str, actor_id: str | None) -> dict[str, Any]:
        session = self.store.get(session_id)
        if session is None:
            return {"found": False}
        details = session.to_dict()
        details["found"] = True
        details["effective_status"] = session.effective_status()
        return details

    def _copy_session(self, session_id: str, actor_id: str | None) -> dict[str, Any]:
        session = self.store.get(session_id)
        token = session.token if session else None
        return {
            "found": session is not None,
            "token": token,
            "reply_hint": f"session #{token} <your command>" if token else None,
        }

    def _goto_terminal(self, session_id: str, actor_id: str | None) -> dict[str, Any]:
        session = self.store.get(session_id)
        context = session.working_context if session else {}
        return {
            "found": session is not None,
            "tmux_session": context.get("tmux_session"),
            "working_dir": context.get("cwd"),
        }

    async def _notify(self, interaction: InteractionEvent) -> None:
        for observer in list(self._observers):
            try:
                result = observer(interaction)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Interaction observer failed: %s", e)
