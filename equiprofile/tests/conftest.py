"""
Shared pytest fixtures.

Every test database is a fresh in-memory SQLite engine (StaticPool, so the
gateway middleware's own sessions and the request-scoped sessions see the
same data). Time is pinned with FrozenClock; session tokens are issued
against real time so PyJWT's expiry check passes.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from equiprofile.config.settings import Settings
from equiprofile.database.session import create_db_engine, create_session_factory
from equiprofile.db_base import Base
from equiprofile.main import create_app, register_error_handlers, register_routes
from equiprofile.models import AdminSessionRecord, User  # noqa: F401
from equiprofile.platform.auth import issue_session_token

TEST_JWT_SECRET = "test-secret"
TEST_ADMIN_PASSWORD = "test_admin_password"

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock whose current time tests can move."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        database_url="sqlite://",
        jwt_secret=TEST_JWT_SECRET,
        admin_unlock_password=TEST_ADMIN_PASSWORD,
        admin_session_ttl_minutes=30,
    )


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def app(settings, session_factory, clock):
    """Full application: gateway middleware plus procedure guards."""
    return create_app(settings=settings, session_factory=session_factory, clock=clock)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def procedure_app(settings, session_factory, clock):
    """Routes and procedure guards only, without the gateway middleware."""
    app = FastAPI()
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.clock = clock
    register_error_handlers(app)
    register_routes(app)
    return app


@pytest.fixture
def procedure_client(procedure_app):
    return TestClient(procedure_app)


@pytest.fixture
def make_user(db_session, clock):
    """Factory inserting a users row. created_at defaults to clock time."""

    def _make_user(**fields):
        fields.setdefault("created_at", clock.now)
        fields.setdefault("email", f"rider-{len(db_session.query(User).all())}@example.com")
        user = User(**fields)
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def auth_headers():
    """Bearer headers carrying a session token for user_id."""

    def _auth_headers(user_id: str):
        token = issue_session_token(user_id, TEST_JWT_SECRET)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
