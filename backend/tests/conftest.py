import os

# Set environment variables before importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("VAPID_PUBLIC_KEY", "test-public-key")
os.environ.setdefault("VAPID_PRIVATE_KEY", "test-private-key")
os.environ.setdefault("VAPID_SUBJECT", "mailto:test@example.com")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("COUNTDOWN_TITLE", "GTA VI")

import threading
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from app.database import Base
from app import models  # noqa


class FakeTransport:
    """Stands in for WebPushTransport. ``outcomes`` maps endpoint -> exception to raise."""

    def __init__(self, outcomes=None):
        self.outcomes = outcomes or {}
        self.sent = []
        self._lock = threading.Lock()

    def send(self, subscription, payload):
        with self._lock:
            self.sent.append((subscription.endpoint, payload))
        error = self.outcomes.get(subscription.endpoint)
        if error is not None:
            raise error


@pytest.fixture
def db_session():
    """In-memory SQLite shared across threads, so TestClient requests see the same data."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autoflush=False)
    session = Session()
    yield session
    session.rollback()
    session.close()
    Base.metadata.drop_all(engine)


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def make_subscription(db_session):
    from app.services.subscriptions import SubscriptionStore

    def _make(endpoint, p256dh="p256dh-key", auth="auth-secret", owner_id=None):
        SubscriptionStore(db_session).upsert(endpoint, auth_secret=auth, p256dh_key=p256dh, owner_id=owner_id)
        return endpoint
    return _make
