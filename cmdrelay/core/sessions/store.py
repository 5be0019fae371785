# cmdrelay/core/sessions/store.py
"""SQLite repository for relay sessions.

This module provides create/validate/usage operations for sessions using
direct sqlite3. Each session is one row keyed by its id holding the JSON
document, plus indexed token and expiry columns so that token lookups and
expiry sweeps never scan the stored documents.
"""

import json
import logging
import os
import secrets
import sqlite3
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from cmdrelay.core.sessions.models import (
    DEFAULT_MAX_COMMANDS,
    TOKEN_ALPHABET,
    TOKEN_LENGTH,
    Session,
    utc_now,
)

logger = logging.getLogger(__name__)

MAX_TOKEN_ATTEMPTS = 10


class TokenAllocationError(RuntimeError):
    """Raised when no unused token could be generated for a new session."""


def generate_token(length: int = TOKEN_LENGTH) -> str:
    """Generate a short uppercase alphanumeric session token."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def _ts(value: datetime) -> str:
    # Fixed-width UTC so that string comparison in SQL matches time order
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class SessionStore:
    """Repository for storing and validating sessions in SQLite.

    The store exclusively owns session persistence. Every mutating call is a
    full read-modify-write of the session's row inside one transaction.

    Attributes:
        db_path: Path to the SQLite database file.
        ttl: Lifetime of a new session.
        max_commands: Default command cap for new sessions.

    Example:
        >>> store = SessionStore(db_path="data/sessions.db")
        >>> session = store.create("feishu", {"cwd": "/work/app", "project": "app"})
        >>> store.resolve_token(session.token) == session.id
        True
    """

    def __init__(
        self,
        db_path: str = "data/sessions.db",
        ttl: timedelta = timedelta(hours=24),
        max_commands: int = DEFAULT_MAX_COMMANDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the SessionStore.

        Creates the database directory and sessions table if they don't exist.

        Args:
            db_path: Path to the SQLite database file.
            ttl: Time-to-live applied to new sessions.
            max_commands: Default command cap for new sessions.
            clock: Returns the current UTC time.
        """
        self.db_path = db_path
        self.ttl = ttl
        self.max_commands = max_commands
        self._clock = clock

        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("PRAGMA journal_mode=WAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    token TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    document TEXT NOT NULL
                )
            """)

            # Token index for reply resolution, expiry index for sweeps
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sessions_token
                ON sessions(token)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sessions_expires_at
                ON sessions(expires_at)
            """)

            conn.commit()
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _load(self, conn: sqlite3.Connection, session_id: str) -> Session | None:
        row = conn.execute(
            "SELECT document FROM sessions WHERE id = ?",
            (session_id,),
        ).fetchone()
        if row is None:
            return None
        return Session.from_dict(json.loads(row[0]))

    def _write(self, conn: sqlite3.Connection, session: Session) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO sessions (id, token, expires_at, document)
            VALUES (?, ?, ?, ?)
            """,
            (
                session.id,
                session.token,
                _ts(session.expires_at),
                json.dumps(session.to_dict(), ensure_ascii=False),
            ),
        )

    def _token_in_use(self, conn: sqlite3.Connection, token: str, now: datetime) -> bool:
        row = conn.execute(
            "SELECT 1 FROM sessions WHERE token = ? AND expires_at > ? LIMIT 1",
            (token, _ts(now)),
        ).fetchone()
        return row is not None

    def create(
        self,
        channel: str,
        working_context: dict[str, Any] | None = None,
        notification: dict[str, Any] | None = None,
        max_commands: int | None = None,
    ) -> Session:
        """Create and persist a new session.

        The token is checked against every live session inside the insert
        transaction and regenerated on collision.

        Args:
            channel: Channel the notification is dispatched through.
            working_context: Working directory / project identity.
            notification: Type, project and message of the notification.
            max_commands: Command cap, defaults to the store's max_commands.

        Returns:
            The persisted Session.

        Raises:
            TokenAllocationError: If no unused token was found.
            sqlite3.Error: On storage failure.
        """
        now = self._clock()
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")

            token = generate_token()
            attempts = 1
            while self._token_in_use(conn, token, now):
                if attempts >= MAX_TOKEN_ATTEMPTS:
                    conn.rollback()
                    raise TokenAllocationError(
                        f"No unused session token after {attempts} attempts"
                    )
                logger.warning("Session token collision, regenerating")
                token = generate_token()
                attempts += 1

            session = Session(
                id=str(uuid.uuid4()),
                token=token,
                channel=channel,
                created_at=now,
                expires_at=now + self.ttl,
                working_context=dict(working_context or {}),
                notification=dict(notification or {}),
                status="waiting",
                command_count=0,
                max_commands=self.max_commands if max_commands is None else max_commands,
            )
            self._write(conn, session)
            conn.commit()
        finally:
            conn.close()

        logger.info(
            "Session created: channel=%s, token=%s",
            channel,
            session.token,
            extra={"session_id": session.id},
        )
        return session

    def get(self, session_id: str) -> Session | None:
        """Load a session without checking or mutating it.

        Args:
            session_id: Session identifier.

        Returns:
            Session if found and readable, None otherwise.
        """
        conn = self._connect()
        try:
            return self._load(conn, session_id)
        except (sqlite3.Error, ValueError, KeyError) as e:
            logger.error("Error reading session %s: %s", session_id, e)
            return None
        finally:
            conn.close()

    def resolve_token(self, token: str) -> str | None:
        """Resolve a human-typed token to a session id.

        The lookup is case-insensitive. Expired rows still resolve so that
        `validate` can delete them; a live row wins over an expired one
        carrying the same token.

        Args:
            token: Token as typed in the reply.

        Returns:
            Session id, or None if no stored session carries the token.
        """
        conn = self._connect()
        try:
            row = conn.execute(
                """
                SELECT id FROM sessions
                WHERE token = ?
                ORDER BY expires_at DESC
                LIMIT 1
                """,
                (token.upper(),),
            ).fetchone()
            return row[0] if row else None
        except sqlite3.Error as e:
            logger.error("Error looking up session by token: %s", e)
            return None
        finally:
            conn.close()

    def validate(self, session_id: str) -> Session | None:
        """Load a session and check that it may authorize another command.

        An expired session is deleted on access. A session at its command
        cap is reported as not found but kept for inspection.

        Args:
            session_id: Session identifier.

        Returns:
            The usable Session, or None.
        """
        session = self.get(session_id)
        if session is None:
            return None

        now = self._clock()
        if session.is_usable(now):
            return session

        if session.is_expired(now):
            logger.debug("Session %s has expired", session_id)
            self.delete(session_id)
        else:
            logger.debug("Session %s has reached command limit", session_id)
        return None

    def record_usage(self, session_id: str) -> Session | None:
        """Count one successfully executed command against the session.

        Not idempotent: calling twice counts twice.

        Args:
            session_id: Session identifier.

        Returns:
            Updated Session, or None if the session no longer exists.
        """
        now = self._clock()
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            session = self._load(conn, session_id)
            if session is None:
                conn.rollback()
                return None

            session.command_count += 1
            session.last_command_at = now
            session.status = "active"
            self._write(conn, session)
            conn.commit()
        except (sqlite3.Error, ValueError, KeyError) as e:
            logger.error("Error updating session %s: %s", session_id, e)
            return None
        finally:
            conn.close()

        logger.debug(
            "Updated command count for session %s: %d",
            session_id,
            session.command_count,
        )
        return session

    def delete(self, session_id: str) -> bool:
        """Delete a session.

        Args:
            session_id: Session identifier.

        Returns:
            True if the session was deleted, False if it didn't exist.
        """
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error("Error deleting session %s: %s", session_id, e)
            return False
        finally:
            conn.close()

        if deleted:
            logger.debug("Session removed: %s", session_id)
        return deleted

    def sweep_expired(self) -> int:
        """Remove every session whose expiry time has passed.

        Returns:
            Number of sessions deleted.
        """
        conn = self._connect()
        try:
            cursor = conn.execute(
                "DELETE FROM sessions WHERE expires_at <= ?",
                (_ts(self._clock()),),
            )
            conn.commit()
            deleted = cursor.rowcount
        finally:
            conn.close()

        if deleted > 0:
            logger.info("Swept %d expired sessions", deleted)
        return deleted

    def count(self) -> int:
        """Number of stored sessions, expired or not."""
        conn = self._connect()
        try:
            return conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
        finally:
            conn.close()


_store: SessionStore | None = None


def get_session_store(db_path: str | None = None) -> SessionStore:
    """Get the singleton SessionStore instance.

    Args:
        db_path: Path to SQLite database (only used on first call).

    Returns:
        SessionStore singleton instance configured from settings.
    """
    global _store
    if _store is None:
        from cmdrelay.config import settings

        _store = SessionStore(
            db_path=db_path or settings.sessions_db_path,
            ttl=timedelta(hours=settings.session_ttl_hours),
            max_commands=settings.session_max_commands,
        )
    return _store


def reset_session_store() -> None:
    """Reset the singleton store (for testing)."""
    global _store
    _store = None
