"""Pytest configuration and fixtures."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

# Set test environment
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DRY_RUN", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ENABLE_EMAIL_RELAY", "false")

from core.db import Base
from core.models import AgentServiceArea, User, UserRole
from services.contract import ContractLifecycle
from services.conversation import ConversationStore
from services.identity import SqlIdentityDirectory
from services.marketplace import LeadMatchingService
from services.notification import NotificationDispatcher
from services.referral import ReferralWorkflow


SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"


# =============================================================================
# Fake collaborators
# =============================================================================


class FakeStorage:
    """Object storage that hands out predictable URLs and remembers keys."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: List[str] = []
        self.downloads: List[str] = []

    def issue_upload_authorization(self, key: str) -> str:
        from core.exceptions import StorageUnavailableError

        if self.fail:
            raise StorageUnavailableError("storage down")
        self.uploads.append(key)
        return f"https://storage.test/put/{key}"

    def issue_download_authorization(self, key: str) -> str:
        from core.exceptions import StorageUnavailableError

        if self.fail:
            raise StorageUnavailableError("storage down")
        self.downloads.append(key)
        return f"https://storage.test/get/{key}"


class RecordingRelay:
    """Relay that records every attempt; `fail` makes every send report failure."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Tuple[str, str, str]] = []

    def send(self, to_address: str, subject: str, body: str) -> bool:
        self.sent.append((to_address, subject, body))
        return not self.fail


class ExplodingRelay:
    """Relay whose transport blows up."""

    def __init__(self):
        self.calls = 0

    def send(self, to_address: str, subject: str, body: str) -> bool:
        self.calls += 1
        raise ConnectionError("relay unreachable")


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="session")
def engine():
    """Create a test database engine."""
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Enable foreign key support for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


@pytest.fixture(scope="session")
def tables(engine):
    """Create all tables for testing."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(engine, tables) -> Session:
    """
    Returns a SQLAlchemy session for testing.

    Each test gets a fresh transaction that is rolled back after the test.
    """
    connection = engine.connect()
    transaction = connection.begin()

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=connection)
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
def make_user(db_session) -> Callable[..., User]:
    """Factory for users; secondary areas become agent_service_area rows."""
    counter = {"n": 0}

    def _make(
        role: str = UserRole.AGENT.value,
        primary_area: Optional[str] = None,
        secondary_areas: Iterable[str] = (),
        email: Optional[str] = None,
    ) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.test",
            full_name=f"User {counter['n']}",
            role=role,
            primary_area_code=primary_area,
        )
        db_session.add(user)
        db_session.flush()
        for code in secondary_areas:
            db_session.add(AgentServiceArea(user_id=user.id, area_code=code))
        db_session.flush()
        return user

    return _make


@pytest.fixture
def owner(make_user) -> User:
    """A property owner."""
    return make_user(role=UserRole.OWNER.value, email="owner@example.test")


@pytest.fixture
def agent_a(make_user) -> User:
    """Agent whose primary area is D04."""
    return make_user(primary_area="D04", email="agent.a@example.test")


@pytest.fixture
def agent_b(make_user) -> User:
    """Agent based in D05 who also covers D04."""
    return make_user(primary_area="D05", secondary_areas=["D04"], email="agent.b@example.test")


@pytest.fixture
def agent_c(make_user) -> User:
    """Agent who does not cover D04."""
    return make_user(primary_area="D09", email="agent.c@example.test")


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def relay() -> RecordingRelay:
    return RecordingRelay()


@pytest.fixture
def identity(db_session) -> SqlIdentityDirectory:
    return SqlIdentityDirectory(db_session)


@pytest.fixture
def notifier(db_session, identity, relay) -> NotificationDispatcher:
    return NotificationDispatcher(db_session, identity=identity, relay=relay)


@pytest.fixture
def conversations(db_session) -> ConversationStore:
    return ConversationStore(db_session)


@pytest.fixture
def contracts(db_session, conversations, notifier, storage) -> ContractLifecycle:
    return ContractLifecycle(db_session, conversations, notifier, storage)


@pytest.fixture
def referrals(db_session, conversations, notifier, identity) -> ReferralWorkflow:
    return ReferralWorkflow(db_session, conversations, notifier, identity)


@pytest.fixture
def marketplace(db_session, conversations, notifier, identity) -> LeadMatchingService:
    return LeadMatchingService(db_session, conversations, notifier, identity)
