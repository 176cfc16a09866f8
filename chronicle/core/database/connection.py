"""
Database connection and session management.
"""
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, DBAPIError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from typing import Optional
import logging
import time

from chronicle.core.database.models import Base

logger = logging.getLogger(__name__)

engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None


def create_db_engine(database_url: str) -> Engine:
    """Create an engine suited to the given URL."""
    if database_url.startswith("sqlite"):
        # In-memory SQLite must share one connection across threads
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,  # Recycle connections after 1 hour
    )


def init_db(database_url: str, max_retries: int = 3, retry_delay: float = 1.0, create_tables: bool = True) -> sessionmaker:
    """
    Initialize the engine and session factory with retry logic.
    Call this once at application startup.

    Args:
        database_url: SQLAlchemy URL
        max_retries: Number of connection attempts
        retry_delay: Seconds to wait between retries
        create_tables: Create missing tables after connecting

    Raises:
        RuntimeError: If connection fails after all retries
    """
    global engine, SessionLocal

    last_error = None
    for attempt in range(max_retries):
        try:
            candidate = create_db_engine(database_url)
            with candidate.connect() as conn:
                conn.execute(text("SELECT 1"))
            engine = candidate
            break
        except (OperationalError, DBAPIError) as e:
            last_error = e
            logger.warning(f"Database connection attempt {attempt + 1}/{max_retries} failed: {e}")
            if attempt < max_retries - 1:
                time.sleep(retry_delay)
    else:
        raise RuntimeError(f"Could not connect to database after {max_retries} attempts") from last_error

    if create_tables:
        Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    logger.info("Database initialized")
    return SessionLocal


def get_session_factory() -> sessionmaker:
    """
    Return the session factory created by init_db().

    Raises:
        RuntimeError: If init_db() has not run
    """
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return SessionLocal
