"""
Shared fixtures: an isolated in-memory database per test and an API client
wired to it.
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from sqlalchemy.pool import StaticPool

from ragchat.core.database import Base, build_engine, build_session_factory
from ragchat.core.rate_limiter import BucketConfig, RateLimiter
from ragchat.models import chat  # noqa: F401
from ragchat.services.chat_archive import ChatArchive


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def archive(session_factory):
    return ChatArchive(session_factory)


@pytest.fixture
def client(archive, db_engine):
    """API client with a generous rate limit."""
    from fastapi.testclient import TestClient
    from ragchat.main import create_app

    limiter = RateLimiter(BucketConfig(capacity=1000, refill_rate=1000))
    app = create_app(archive=archive, limiter=limiter, db_engine=db_engine)
    with TestClient(app) as test_client:
        yield test_client
