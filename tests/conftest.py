"""Shared test fixtures and configuration."""
import asyncio
import os
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

# Set test environment variables before importing app
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "ACtest")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-token")
os.environ.setdefault("TWILIO_PHONE_NUMBER", "+15005550006")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ELEVENLABS_API_KEY", "")

from app.main import app
from app.db.database import Base
from app.core.dependencies import get_console, get_notification_hub, get_store
from app.services.call_session.console import CallConsole
from app.services.call_session.controller import CallSessionController
from app.services.media.manager import MediaManager
from app.services.notifications import NotificationHub
from app.services.persistence.store import CallStore

from tests.fakes import (
    FakeAudioDevice,
    FakeConversationService,
    FakeTelephony,
    FakeTranscriber,
)


@pytest.fixture
def test_db_path(tmp_path):
    """Temporary SQLite file with the schema created."""
    path = tmp_path / "test.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return path


@pytest.fixture
def test_session_factory(test_db_path):
    """Session factory over the test database.

    NullPool gives every session its own connection, so concurrent tasks and
    the TestClient's event loop never share one.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{test_db_path}", poolclass=NullPool)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(test_session_factory):
    """Create test database session."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def store(test_session_factory):
    return CallStore(test_session_factory)


@pytest.fixture
def notification_hub():
    return NotificationHub()


@pytest.fixture
def audio_device():
    return FakeAudioDevice()


@pytest.fixture
def media_manager(audio_device):
    return MediaManager(audio_device)


@pytest.fixture
def telephony():
    return FakeTelephony()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def conversation_service():
    return FakeConversationService()


@pytest.fixture
def make_controller(media_manager, telephony, store, notification_hub, transcriber):
    """Factory for controllers wired to the fakes. Polling is slow unless overridden."""
    def _make(poll_interval_seconds: float = 60.0, flush_interval_seconds: float = 60.0):
        return CallSessionController(
            media_manager,
            telephony,
            store,
            notification_hub,
            transcriber=transcriber,
            poll_interval_seconds=poll_interval_seconds,
            flush_interval_seconds=flush_interval_seconds,
            capture_window_seconds=0.01,
        )
    return _make


@pytest.fixture
def controller(make_controller):
    return make_controller()


@pytest.fixture
def console(store, notification_hub, make_controller, conversation_service):
    return CallConsole(
        store, notification_hub, make_controller, conversation_service=conversation_service
    )


@pytest.fixture
def wait_until():
    """Await until `predicate()` is true, failing after `timeout` seconds."""
    async def _wait(predicate, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)
    return _wait


@pytest.fixture
def test_client(store, notification_hub, console):
    """Create FastAPI test client with overrides."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_notification_hub] = lambda: notification_hub
    app.dependency_overrides[get_console] = lambda: console

    # Entering the client keeps one event loop alive across requests so
    # background call tasks survive between them
    with TestClient(app) as client:
        yield client
        client.portal.call(console.shutdown)

    app.dependency_overrides.clear()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test"
    )
