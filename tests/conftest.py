"""
Shared test fixtures.

Sets up an isolated test database so tests never touch
the real database. Tables are created before and dropped
after every test, so each test starts from an empty log.
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from audit_trail.api.audit import get_session_factory
from audit_trail.main import app
from audit_trail.models.base import Base, engine_options, get_db
from audit_trail.schemas.audit import AuditEntryCreate
from audit_trail.services.audit_store import AuditStore


# SQLite keeps the suite free of database infrastructure.
# The navigator and export tests use sessions from worker threads.
TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(TEST_DATABASE_URL, **engine_options(TEST_DATABASE_URL))

TestSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)

BASE_TIME = datetime(2026, 1, 15, 12, 0, 0)


class StepClock:
    """Deterministic clock: each reading is one second after the last."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)):
        self.start = start
        self.current = start - step
        self.step = step

    def __call__(self) -> datetime:
        self.current += self.step
        return self.current


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test, drop them after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Provide a database session for direct service testing."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def session_factory():
    return TestSessionLocal


@pytest.fixture
def exhausted_pool():
    """
    Session factory over a one-connection pool whose only
    connection is already checked out, so every checkout times out.
    """
    pool_engine = create_engine(
        TEST_DATABASE_URL,
        poolclass=QueuePool,
        pool_size=1,
        max_overflow=0,
        pool_timeout=0.1,
        **engine_options(TEST_DATABASE_URL),
    )
    held = pool_engine.connect()
    yield sessionmaker(bind=pool_engine)
    held.close()
    pool_engine.dispose()


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def store(db_session, clock):
    return AuditStore(db_session, clock=clock)


@pytest.fixture
def append(store):
    """
    Append an entry with sensible defaults.

    Usage: append("org-1", "created", entity_type="record", ...)
    """
    def _append(
        org_id,
        action="created",
        entity_type="record",
        entity_id="rec-1",
        actor_id="user-1",
        metadata=None,
    ):
        return store.append(org_id, AuditEntryCreate(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata or {},
        ))

    return _append


@pytest.fixture
def client(db_session):
    """
    Provide a test client with the test database.

    get_db and the export session factory are overridden so the
    app uses the test database.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestSessionLocal
    yield TestClient(app)
    app.dependency_overrides.clear()
