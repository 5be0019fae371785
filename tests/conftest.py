# tests/conftest.py
"""Shared pytest fixtures for all test modules.

Provides common fixtures for:
- Singleton reset (SchedulerManager, session store, relay service, lifecycle)
- Temporary database and state file paths
- A controllable clock and in-memory executor/notifier doubles
"""

import os
import tempfile
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from cmdrelay.core.sessions.models import SessionContext


class FakeClock:
    """Settable UTC clock for time-dependent tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingExecutor:
    """ExecutorAdapter double returning scripted results.

    Each entry in ``results`` is returned (or raised, if an exception) by one
    submit() call; once exhausted, ``default`` is returned.
    """

    def __init__(self, results: list | None = None, default: bool = True) -> None:
        self.results = list(results or [])
        self.default = default
        self.calls: list[tuple[str, SessionContext]] = []

    async def submit(self, command: str, context: SessionContext) -> bool:
        self.calls.append((command, context))
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, BaseException):
                raise result
            return result
        return self.default


class RecordingNotifier:
    """NotificationProtocol double that records sent messages."""

    channel = "feishu"

    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.messages: list[str] = []

    @property
    def is_configured(self) -> bool:
        return True

    async def send(self, message: str) -> bool:
        self.messages.append(message)
        return self.succeed


@pytest.fixture
def temp_db() -> Generator[str, None, None]:
    """Create a temporary database file path.

    Yields:
        Path to temporary SQLite database file.
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)


@pytest.fixture
def temp_data_dir() -> Generator[str, None, None]:
    """Create a temporary data directory.

    Yields:
        Path to temporary directory.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def state_file(temp_data_dir: str) -> str:
    """Path of a relay queue snapshot inside the temporary data directory."""
    return os.path.join(temp_data_dir, "relay-state.json")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(temp_db: str, clock: FakeClock):
    """SessionStore on a temporary database driven by the fake clock."""
    from cmdrelay.core.sessions.store import SessionStore

    return SessionStore(db_path=temp_db, ttl=timedelta(hours=24), clock=clock)


@pytest.fixture
def reset_scheduler_singleton() -> Generator[None, None, None]:
    """Reset SchedulerManager singleton before and after test.

    This fixture ensures each test gets a fresh SchedulerManager instance
    and cleans up properly after the test.
    """
    from cmdrelay.core.scheduler.manager import SchedulerManager

    SchedulerManager._instance = None
    SchedulerManager._initialized = False

    yield

    if SchedulerManager._instance is not None:
        try:
            SchedulerManager._instance.shutdown(wait=False)
        except Exception:
            pass
    SchedulerManager._instance = None
    SchedulerManager._initialized = False


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset module-level singletons and rate limit counters around each test."""
    from cmdrelay.core.lifecycle import reset_lifecycle_manager
    from cmdrelay.core.relay.service import reset_relay_service
    from cmdrelay.core.sessions.store import reset_session_store
    from cmdrelay.interfaces.api.security import limiter

    reset_lifecycle_manager()
    reset_relay_service()
    reset_session_store()
    limiter.reset()

    yield

    reset_lifecycle_manager()
    reset_relay_service()
    reset_session_store()


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing.

    Yields:
        Dictionary of mock environment variables that were set.
    """
    mock_vars = {
        "VERIFY_TOKEN": "test-verify-token",
        "NOTIFY_WEBHOOK": "https://open.feishu.cn/open-apis/bot/v2/hook/test",
        "NOTIFY_SECRET": "test-secret",
    }

    with patch.dict(os.environ, mock_vars):
        yield mock_vars
