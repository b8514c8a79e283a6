"""Pytest configuration and shared fixtures."""

import os

# Must be set before permitflow builds its engine
os.environ.setdefault("PERMITFLOW_DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from permitflow.api import deps
from permitflow.api.main import app
from permitflow.core.auth import Role
from permitflow.core.clock import FixedClock
from permitflow.core.config import Settings, get_settings
from permitflow.core.lifecycle import PermitLifecycle
from permitflow.core.security import create_access_token
from permitflow.db.base import Base
from permitflow.db import models  # noqa: F401
from permitflow.services.notifications import NotificationDispatcher

from tests.factories import NOW, RecordingActivityLogger, RecordingPushTransport


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite database so several sessions can share it."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'permitflow.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        app_url="https://permits.example.com",
        approval_recipients="approver@example.com, manager@example.com",
        reminder_recipients="ops@example.com,safety@example.com",
        push_pool_size=4,
    )


@pytest.fixture
def activity():
    return RecordingActivityLogger()


@pytest.fixture
def push_transport():
    return RecordingPushTransport()


@pytest.fixture
def lifecycle(db_session, clock, activity):
    return PermitLifecycle(db_session, clock=clock, activity=activity)


@pytest.fixture
def dispatcher(db_session, clock, settings, push_transport):
    return NotificationDispatcher(
        db_session,
        push_transport=push_transport,
        clock=clock,
        settings=settings,
    )


@pytest.fixture
def client(session_factory, clock, settings, push_transport, activity):
    """TestClient wired to the per-test database and fakes."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_push_transport] = lambda: push_transport
    app.dependency_overrides[deps.get_activity_logger] = lambda: activity
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user id and role."""

    def _headers(user_id: str = "manager-1", role: Role = Role.MANAGER) -> dict:
        token = create_access_token(user_id, role)
        return {"Authorization": f"Bearer {token}"}

    return _headers
