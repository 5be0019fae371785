"""Session issuance at notification time.

A session exists only if its notification actually reached the channel: the
session is created first so the token can be embedded in the message, and
deleted again if sending fails.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from cmdrelay.core.scheduler.notification import NotificationProtocol
from cmdrelay.core.sessions.models import Session
from cmdrelay.core.sessions.store import SessionStore

logger = logging.getLogger(__name__)

NOTIFICATION_TITLES = {
    "completed": "Task completed",
    "waiting": "Waiting for input",
}


@dataclass
class Notification:
    """A notification raised by the local interactive session.

    Attributes:
        type: "completed" or "waiting".
        project: Project name shown to the user.
        message: Short summary of what happened.
        working_context: Working directory, project and terminal target.
        metadata: Free-form extra data (e.g. the user's last question).
    """

    type: str
    project: str
    message: str
    working_context: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


def format_notification(notification: Notification, session: Session) -> str:
    """Render the plain text body sent to the channel."""
    title = NOTIFICATION_TITLES.get(notification.type, notification.type)
    lines = [
        f"[{title}] {notification.project}",
        notification.message,
        "",
        f"Session: #{session.token}",
        f"Reply with: session #{session.token} <your command>",
    ]
    return "\n".join(lines)


class NotificationDispatcher:
    """Creates a session for each notification and rolls it back on failure."""

    def __init__(self, store: SessionStore, notifier: NotificationProtocol) -> None:
        self.store = store
        self.notifier = notifier

    async def dispatch(self, notification: Notification) -> Session | None:
        """Issue a session and send the notification carrying its token.

        Args:
            notification: Notification raised by the local session.

        Returns:
            The new Session, or None if the notification could not be sent
            (in which case the session has been deleted).
        """
        working_context = {"project": notification.project}
        working_context.update(notification.working_context)

        session = self.store.create(
            channel=self.notifier.channel,
            working_context=working_context,
            notification={
                "type": notification.type,
                "project": notification.project,
                "message": notification.message,
            },
        )

        try:
            sent = await self.notifier.send(format_notification(notification, session))
        except Exception as e:
            logger.error("Failed to send notification: %s", e)
            sent = False

        if not sent:
            self.store.delete(session.id)
            logger.warning(
                "Notification not delivered, session rolled back",
                extra={"session_id": session.id},
            )
            return None

        logger.info(
            "Notification sent, session %s issued",
            session.token,
            extra={"session_id": session.id},
        )
        return session
