import os
from datetime import datetime, timedelta

# Settings are read at import time
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from careconnect.main import app
from careconnect.core.database import Base, get_db, get_redis, get_clock, get_session_factory
from careconnect.services.broadcaster import PresenceBroadcaster, get_broadcaster
import careconnect.models  # noqa: F401  (registers tables)


class FakeClock:
    """Controllable stand-in for the presence clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 5, 9, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def select_statements(engine):
    """Every SELECT issued on the test engine while the fixture is active."""
    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("SELECT"):
            statements.append(statement)

    event.listen(engine, "before_cursor_execute", record)
    yield statements
    event.remove(engine, "before_cursor_execute", record)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_client():
    # A private server per test so counters never leak between tests
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def broadcaster():
    return PresenceBroadcaster(max_queue_size=10)


@pytest.fixture
def client(session_factory, clock, redis_client, broadcaster):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_redis] = lambda: redis_client
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster

    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

    app.dependency_overrides.clear()


def user_payload(role="patient", email=None, **overrides):
    data = {
        "email": email or f"{role}@example.com",
        "password": "TestPassword123",
        "firstName": "Test",
        "lastName": role.capitalize(),
        "role": role,
    }
    data.update(overrides)
    return data


@pytest.fixture
def signup(client):
    """Sign a user up through the API and return ``(token, user)``."""
    def _signup(role="patient", email=None, **overrides):
        response = client.post("/api/auth/signup", json=user_payload(role, email, **overrides))
        assert response.status_code == 201, response.text
        body = response.json()
        return body["token"], body["user"]
    return _signup


@pytest.fixture
def login(client):
    """Log a user in through the API and return ``(token, user)``."""
    def _login(email, password="TestPassword123"):
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        body = response.json()
        return body["token"], body["user"]
    return _login


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}
