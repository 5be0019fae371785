# tests/test_sessions.py
"""Tests for the session store and notification dispatch."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from conftest import RecordingNotifier

from cmdrelay.core.sessions import (
    Notification,
    NotificationDispatcher,
    Session,
    SessionStore,
    TokenAllocationError,
    generate_token,
)
from cmdrelay.core.sessions.models import TOKEN_ALPHABET, TOKEN_LENGTH


class TestGenerateToken:
    """Tests for generate_token."""

    def test_token_shape(self):
        token = generate_token()

        assert len(token) == TOKEN_LENGTH
        assert all(c in TOKEN_ALPHABET for c in token)


class TestSessionModel:
    """Tests for the Session dataclass."""

    def test_round_trip_through_dict(self, store):
        session = store.create("feishu", {"cwd": "/work/app"}, {"type": "completed"})

        restored = Session.from_dict(session.to_dict())

        assert restored == session

    def test_expired_at_exact_expiry(self, store, clock):
        session = store.create("feishu")

        assert session.is_expired(session.expires_at) is True
        assert session.is_expired(session.expires_at - timedelta(seconds=1)) is False

    def test_effective_status_reports_expiry(self, store, clock):
        session = store.create("feishu")

        assert session.effective_status(clock()) == "waiting"
        assert session.effective_status(clock.advance(hours=25)) == "expired"

    def test_is_usable(self, store, clock):
        session = store.create("feishu", max_commands=1)

        assert session.is_usable(clock()) is True
        assert session.is_usable(session.expires_at) is False

        session.command_count = 1
        assert session.is_usable(clock()) is False


class TestSessionStore:
    """Tests for SessionStore."""

    def test_create_initial_state(self, store, clock):
        session = store.create("feishu", {"project": "app"})

        assert session.status == "waiting"
        assert session.command_count == 0
        assert session.max_commands == 10
        assert session.expires_at == clock() + timedelta(hours=24)
        assert store.get(session.id) == session

    def test_create_with_custom_cap(self, store):
        session = store.create("feishu", max_commands=2)

        assert session.max_commands == 2

    def test_create_with_zero_cap_is_kept(self, store):
        session = store.create("feishu", max_commands=0)

        assert session.max_commands == 0
        assert store.validate(session.id) is None

    def test_resolve_token(self, store):
        session = store.create("feishu")

        assert store.resolve_token(session.token) == session.id
        assert store.resolve_token(session.token.lower()) == session.id
        assert store.resolve_token("NOPE0000") is None

    def test_resolve_token_finds_expired_session(self, store, clock):
        session = store.create("feishu")
        clock.advance(hours=24)

        assert store.resolve_token(session.token) == session.id
        assert store.validate(session.id) is None
        assert store.get(session.id) is None

    def test_validate_live_session(self, store):
        session = store.create("feishu")

        assert store.validate(session.id) == session

    def test_validate_unknown_session(self, store):
        assert store.validate("does-not-exist") is None

    def test_validate_deletes_expired_session(self, store, clock):
        session = store.create("feishu")
        clock.advance(hours=24, seconds=1)

        assert store.validate(session.id) is None
        assert store.get(session.id) is None

    def test_validate_keeps_exhausted_session(self, store):
        session = store.create("feishu", max_commands=1)
        store.record_usage(session.id)

        assert store.validate(session.id) is None
        assert store.get(session.id) is not None

    def test_record_usage(self, store, clock):
        session = store.create("feishu")
        clock.advance(minutes=5)

        updated = store.record_usage(session.id)

        assert updated is not None
        assert updated.command_count == 1
        assert updated.status == "active"
        assert updated.last_command_at == clock()
        assert store.get(session.id).command_count == 1

    def test_record_usage_is_not_idempotent(self, store):
        session = store.create("feishu")
        store.record_usage(session.id)
        store.record_usage(session.id)

        assert store.get(session.id).command_count == 2

    def test_record_usage_unknown_session(self, store):
        assert store.record_usage("does-not-exist") is None

    def test_delete(self, store):
        session = store.create("feishu")

        assert store.delete(session.id) is True
        assert store.delete(session.id) is False
        assert store.count() == 0

    def test_sweep_expired(self, store, clock):
        old = store.create("feishu")
        clock.advance(hours=12)
        fresh = store.create("feishu")
        clock.advance(hours=13)

        assert store.sweep_expired() == 1
        assert store.get(old.id) is None
        assert store.get(fresh.id) is not None

    def test_token_collision_regenerates(self, store):
        with patch(
            "cmdrelay.core.sessions.store.generate_token",
            side_effect=["AAAA1111", "AAAA1111", "BBBB2222"],
        ):
            first = store.create("feishu")
            second = store.create("feishu")

        assert first.token == "AAAA1111"
        assert second.token == "BBBB2222"

    def test_expired_token_may_be_reused(self, store, clock):
        with patch(
            "cmdrelay.core.sessions.store.generate_token",
            side_effect=["AAAA1111", "AAAA1111"],
        ):
            first = store.create("feishu")
            clock.advance(hours=25)
            second = store.create("feishu")

        assert second.token == first.token
        assert store.resolve_token("AAAA1111") == second.id

    def test_token_allocation_gives_up(self, store):
        store_token = "CCCC3333"
        with patch(
            "cmdrelay.core.sessions.store.generate_token", return_value=store_token
        ):
            store.create("feishu")
            with pytest.raises(TokenAllocationError):
                store.create("feishu")

        assert store.count() == 1

    def test_persists_across_instances(self, temp_db, clock):
        session = SessionStore(db_path=temp_db, clock=clock).create("feishu")

        reopened = SessionStore(db_path=temp_db, clock=clock)

        assert reopened.resolve_token(session.token) == session.id


class TestNotificationDispatcher:
    """Tests for NotificationDispatcher."""

    @pytest.mark.asyncio
    async def test_dispatch_creates_session_and_sends_token(self, store):
        notifier = RecordingNotifier()
        dispatcher = NotificationDispatcher(store, notifier)

        session = await dispatcher.dispatch(
            Notification(
                type="completed",
                project="app",
                message="Refactor finished",
                working_context={"tmux_session": "work"},
            )
        )

        assert session is not None
        assert session.channel == "feishu"
        assert session.working_context == {"project": "app", "tmux_session": "work"}
        assert len(notifier.messages) == 1
        assert f"#{session.token}" in notifier.messages[0]
        assert "Refactor finished" in notifier.messages[0]
        assert store.get(session.id) is not None

    @pytest.mark.asyncio
    async def test_failed_send_rolls_back_session(self, store):
        dispatcher = NotificationDispatcher(store, RecordingNotifier(succeed=False))

        session = await dispatcher.dispatch(
            Notification(type="waiting", project="app", message="Need input")
        )

        assert session is None
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_send_exception_rolls_back_session(self, store):
        notifier = RecordingNotifier()
        notifier.send = AsyncMock(side_effect=RuntimeError("network down"))
        dispatcher = NotificationDispatcher(store, notifier)

        session = await dispatcher.dispatch(
            Notification(type="waiting", project="app", message="Need input")
        )

        assert session is None
        assert store.count() == 0
