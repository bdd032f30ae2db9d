"""
Database configuration and session management.
"""

from functools import lru_cache
from typing import Generator

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from channel_analyzer.config import get_settings
from channel_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

# Base class for ORM models
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def create_db_engine(database_url: str) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        Configured engine
    """
    return create_engine(
        database_url,
        echo=False,  # Set to True for SQL query logging in development
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,  # Recycle connections every 5 minutes
    )


@lru_cache()
def get_engine() -> Engine:
    """Get the process-wide engine built from settings."""
    return create_db_engine(get_settings().database_url)


@lru_cache()
def get_session_factory() -> sessionmaker:
    """Get the process-wide session factory."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.

    Yields:
        Database session that is automatically closed after use
    """
    db = get_session_factory()()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e))
        db.rollback()
        raise
    finally:
        db.close()


def init_db(engine: Engine = None) -> None:
    """
    Initialize the database by creating all tables.
    This should be called during application startup and before a batch run.
    """
    # Models must be imported so their tables are registered on Base.metadata
    from channel_analyzer.models import analysis, item, transcript  # noqa: F401

    try:
        logger.info("Initializing database tables")
        Base.metadata.create_all(bind=engine or get_engine())
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize database", error=str(e))
        raise
