"""
Database initialization and session management
Each session is one atomic unit: commit on success, rollback on any error
"""
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session
from contextlib import contextmanager
from typing import Generator, Optional
import logging

from gym_booking.config import get_config

# Register table metadata
from gym_booking import db_models  # noqa: F401

logger = logging.getLogger(__name__)

# Global engine instance
_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Get or create the global database engine"""
    global _engine
    if _engine is None:
        config = get_config()
        connect_args = {}
        if config.database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False  # Needed for SQLite

        _engine = create_engine(
            config.database_url,
            echo=False,  # Set to True for SQL debugging
            connect_args=connect_args,
        )

        logger.info(f"Database engine created: {_engine.url.render_as_string()}")

    return _engine


def init_database(engine: Optional[Engine] = None) -> None:
    """
    Initialize database tables
    Creates all tables if they don't exist
    """
    SQLModel.metadata.create_all(engine or get_engine())

    logger.info("Database tables initialized")


@contextmanager
def get_session(engine: Optional[Engine] = None) -> Generator[Session, None, None]:
    """
    Get a database session with automatic commit/rollback

    Usage:
        with get_session() as session:
            user = session.get(User, user_id)
            ...

    Objects stay readable after the block (expire_on_commit=False).

    Yields:
        Session: SQLModel session
    """
    session = Session(engine or get_engine(), expire_on_commit=False)

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_database() -> None:
    """Close database connections"""
    global _engine
    if _engine:
        _engine.dispose()
        _engine = None
