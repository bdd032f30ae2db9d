"""
Pytest configuration and fixtures for testing.
"""

import os

# Keep the API's startup hook off any real database
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta
from typing import Callable, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from channel_analyzer.db.database import init_db
from channel_analyzer.services.item_service import ItemStore


@pytest.fixture
def test_engine() -> Engine:
    """Fresh in-memory SQLite database per test; every session shares one connection."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


@pytest.fixture
def session_factory(test_engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def test_db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Create test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def item_store(test_db: Session) -> ItemStore:
    return ItemStore(test_db)


@pytest.fixture
def published_at() -> Callable[[int], datetime]:
    """Publish timestamps that go back in time by hours."""
    base = datetime(2025, 11, 2, 15, 0, 0)

    def _at(hours_ago: int = 0) -> datetime:
        return base - timedelta(hours=hours_ago)

    return _at


@pytest.fixture
def sample_transcript_text() -> str:
    """Sample fantasy basketball transcript."""
    return (
        "Alright folks, waiver wire time. Ryan Rollins is a must add right now, do not wait on him, "
        "he is rostered in about 30 percent of leagues. Keep an eye on Jaylon Tyson, his minutes are "
        "trending up. And honestly Jordan Clarkson is droppable in ten team leagues."
    )

