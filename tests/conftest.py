"""
Pytest configuration for testing
"""

import json
import os
import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Create mock Firebase credentials before any imports
credentials_path = "/tmp/botdesk-test-creds.json"
if not os.path.exists(credentials_path):
    os.makedirs(os.path.dirname(credentials_path), exist_ok=True)
    with open(credentials_path, "w") as f:
        json.dump({
            "type": "service_account",
            "project_id": "test-project",
            "private_key_id": "test-key-id",
            "client_email": "test@test-project.iam.gserviceaccount.com",
            "client_id": "123456789",
            "token_uri": "https://oauth2.googleapis.com/token",
        }, f)

from stripe_helpers import TEST_BASIC_PRICE, TEST_PREMIUM_PRICE, TEST_WEBHOOK_SECRET

# Set up environment variables for testing before any imports
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FIREBASE_PROJECT_ID"] = "test-project"
os.environ["FIREBASE_CREDENTIALS_PATH"] = credentials_path
os.environ["ENCRYPTION_KEY"] = "A" * 43 + "="  # valid 32-byte urlsafe-base64 Fernet key
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["BOT_CREATE_LOCK_ENABLED"] = "false"
os.environ["REDIS_URL"] = "redis://localhost:6379/1"
os.environ["REDIS_PASSWORD"] = ""
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = TEST_WEBHOOK_SECRET
os.environ["STRIPE_BASIC_PRICE_ID"] = TEST_BASIC_PRICE
os.environ["STRIPE_PREMIUM_PRICE_ID"] = TEST_PREMIUM_PRICE
os.environ["FRONTEND_URL"] = "https://app.example.com"


# Mock Firebase Admin before it's imported
@pytest.fixture(autouse=True)
def mock_firebase_admin(monkeypatch):
    """Mock Firebase Admin SDK to avoid initialization issues in tests"""
    mock_credentials = MagicMock()
    monkeypatch.setattr("firebase_admin.credentials.Certificate", mock_credentials.Certificate)

    mock_init = MagicMock()
    monkeypatch.setattr("firebase_admin.initialize_app", mock_init)

    mock_auth = MagicMock()
    monkeypatch.setattr("firebase_admin.auth", mock_auth)
    monkeypatch.setattr("botdesk.core.firebase.auth", mock_auth)

    # Analytics writes go to a mock Firestore client
    mock_firestore = MagicMock()
    monkeypatch.setattr("firebase_admin.firestore.client", mock_firestore)

    yield mock_auth


@pytest.fixture(scope="function")
def db_engine():
    """Fresh in-memory SQLite database per test"""
    from botdesk.core.database import Base
    import botdesk.models  # noqa: F401  registers the tables

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Create a new database session for a test"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()

    yield session

    session.rollback()
    session.close()


@pytest.fixture
def billing_config():
    from botdesk.core.config import BillingConfig

    return BillingConfig(
        stripe_secret_key="sk_test_dummy",
        webhook_secret=TEST_WEBHOOK_SECRET,
        frontend_url="https://app.example.com",
        price_plans={TEST_BASIC_PRICE: "Basic", TEST_PREMIUM_PRICE: "Premium"},
    )


@pytest.fixture
def make_user(db_session):
    """Insert a user row with the given entitlement"""
    from botdesk.models.user import User

    def _make_user(user_id=None, status="inactive", plan="Free", customer_id=None, email=None):
        user_id = user_id or f"user_{uuid.uuid4().hex[:8]}"
        user = User(
            id=user_id,
            email=email or f"{user_id}@example.com",
            name=f"Test {user_id}",
            subscription_status=status,
            subscription_plan=plan,
            stripe_customer_id=customer_id,
            is_active=True,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_credential(db_session):
    from botdesk.core.security import encrypt_secret
    from botdesk.models.credential import Credential

    def _make_credential(user_id, exchange="binance"):
        credential = Credential(
            id=str(uuid.uuid4()),
            user_id=user_id,
            exchange=exchange,
            api_key_encrypted=encrypt_secret("test-api-key-0001"),
            api_secret_encrypted=encrypt_secret("test-api-secret-0001"),
        )
        db_session.add(credential)
        db_session.commit()
        return credential

    return _make_credential


@pytest.fixture
def make_bot(db_session):
    from botdesk.models.bot import Bot

    def _make_bot(user_id, credential, name="bot"):
        bot = Bot(
            id=str(uuid.uuid4()),
            user_id=user_id,
            credential_id=credential.id,
            name=name,
            exchange=credential.exchange,
            strategy={"type": "grid", "parameters": {"levels": 5}},
        )
        db_session.add(bot)
        db_session.commit()
        return bot

    return _make_bot


@pytest.fixture(scope="function")
def redis_client():
    """Create Redis client for testing"""
    import redis

    redis_url = os.environ.get("REDIS_URL", "redis://localhost:6379/1")

    try:
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        client.ping()
    except Exception:
        # Return None if Redis is not available
        yield None
        return

    yield client

    client.flushdb()
    client.close()
