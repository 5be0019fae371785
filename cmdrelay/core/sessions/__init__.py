"""Session module for time- and usage-bounded reply authorization.

This module provides:
- Session: Data model for an issued session
- SessionContext: Session details handed to the executor
- SessionStore: SQLite repository with token index and expiry sweep
- NotificationDispatcher: Issues a session per notification, rolls back on failure
"""

from cmdrelay.core.sessions.dispatch import Notification, NotificationDispatcher
from cmdrelay.core.sessions.models import Session, SessionContext, utc_now
from cmdrelay.core.sessions.store import (
    SessionStore,
    TokenAllocationError,
    generate_token,
    get_session_store,
    reset_session_store,
)

__all__ = [
    "Notification",
    "NotificationDispatcher",
    "Session",
    "SessionContext",
    "SessionStore",
    "TokenAllocationError",
    "generate_token",
    "get_session_store",
    "reset_session_store",
    "utc_now",
]
