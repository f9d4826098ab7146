"""
Database Connection Configuration.

SQLAlchemy engine and session factory for the persistence gateway.

Features:
    - Connection pooling with pre-ping for server databases
    - Single shared connection for in-memory SQLite (tests, demos)
    - Session context manager with commit/rollback
"""

import logging
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)


# ============================================================================
# Default Configuration
# ============================================================================

DEFAULT_POOL_SIZE = 5        # Number of connections to keep in pool
DEFAULT_MAX_OVERFLOW = 10    # Additional connections allowed during burst
DEFAULT_POOL_RECYCLE = 1800  # Recycle connections after 30 minutes


def create_engine_with_pool(
    database_url: str,
    pool_size: int = DEFAULT_POOL_SIZE,
    max_overflow: int = DEFAULT_MAX_OVERFLOW,
    pool_recycle: int = DEFAULT_POOL_RECYCLE,
    echo: bool = False
) -> Engine:
    """
    Create a SQLAlchemy engine for ``database_url``.

    SQLite URLs get ``check_same_thread=False`` because sessions are used
    from worker threads; in-memory SQLite shares one connection so every
    thread sees the same tables.

    Example:
        >>> engine = create_engine_with_pool("sqlite:///:memory:")
        >>> init_db(engine)
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **kwargs)
    else:
        logger.info(
            f"Creating database engine with pool_size={pool_size}, "
            f"max_overflow={max_overflow}, pool_recycle={pool_recycle}s"
        )
        engine = create_engine(
            database_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            echo=echo,
        )

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        logger.debug("New database connection established")

    return engine


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)
    logger.info(f"Database schema ready ({len(Base.metadata.tables)} tables)")


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False
    )


class DatabaseSession:
    """
    Context manager for database sessions.

    Automatically handles commit/rollback and cleanup.

    Usage:
        >>> with DatabaseSession(factory) as session:
        ...     session.merge(record)
    """

    def __init__(self, factory: sessionmaker):
        self._factory = factory
        self.session: Optional[Session] = None

    def __enter__(self) -> Session:
        self.session = self._factory()
        return self.session

    def __exit__(self, exc_type, exc_val, exc_tb):
        session, self.session = self.session, None
        if session is None:
            return False
        try:
            if exc_type is not None:
                logger.error(f"Rolling back {exc_type.__name__}: {exc_val}")
                session.rollback()
            else:
                session.commit()
        finally:
            session.close()
        return False
