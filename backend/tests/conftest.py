"""Shared pytest fixtures for test suite"""
import os
import pytest
import sys
from pathlib import Path
from typing import Generator
from unittest.mock import patch
import fakeredis
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("FRONTEND_URL", "https://app.remindr.test")

from app.main import app
from app.db.session import get_db
from app.db import redis as redis_module
from app.models import Base
from app.models.user import User
from app.services.notification_service import get_notifier
from app.services.stripe_service import get_billing_provider
from billing_factories import FakeBillingProvider, RecordingNotifier


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, '_client', fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def provider() -> FakeBillingProvider:
    return FakeBillingProvider()


@pytest.fixture(scope="function")
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis, provider, notifier) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, mocked Redis and Stripe doubles"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_provider] = lambda: provider
    app.dependency_overrides[get_notifier] = lambda: notifier

    try:
        # No context manager: startup would connect to the real database and Redis
        yield TestClient(app)
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    """Create a test user using a Resend test email"""
    user = User(
        email="delivered@resend.dev",
        full_name="ada lovelace",
        timezone="America/Sao_Paulo",
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def linked_user(db_session: Session, test_user: User) -> User:
    """Test user already linked to Stripe customer cus_123"""
    test_user.stripe_customer_id = "cus_123"
    db_session.commit()
    db_session.refresh(test_user)
    return test_user


@pytest.fixture(scope="function")
def auth_client(client: TestClient, test_user: User) -> TestClient:
    """Client carrying a valid session cookie for test_user"""
    redis_module.set_session("test-session", test_user.id)
    client.cookies.set("session_id", "test-session")
    return client
