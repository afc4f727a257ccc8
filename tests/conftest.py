import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401 - register tables
from app.database import Base
from app.repositories.chat_repository import ConversationStore
from app.services.message_feed import MessageFeed


class FakeGenerator:
    """Stands in for Gemini: records (model, prompt) calls, returns queued replies or raises."""

    def __init__(self, replies=None, error=None):
        self.replies = list(replies or [])
        self.error = error
        self.calls = []

    def __call__(self, model, prompt):
        self.calls.append((model, prompt))
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return "What do you already know about it?"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def feed():
    return MessageFeed()


@pytest.fixture
def store(session_factory, feed):
    return ConversationStore(session_factory=session_factory, feed=feed)


@pytest.fixture
def generator():
    return FakeGenerator()
