"""
Database Configuration and Session Management
============================================

Engine and session-factory construction for the escrow marketplace. Nothing in
this module opens a connection at import time: the application builds one
pooled engine at startup and hands its session factory to every service.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from config import Config
from models import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Build the pooled engine.

    PostgreSQL gets a bounded QueuePool with pre-ping; SQLite (development and
    tests) gets a single shared connection for in-memory databases.
    """
    url = database_url or Config.DATABASE_URL
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    if url.startswith("sqlite"):
        in_memory = ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://")
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if in_memory else QueuePool,
        )

        @event.listens_for(engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=Config.DB_POOL_SIZE,
        max_overflow=Config.DB_MAX_OVERFLOW,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,     # Recycle connections every hour
        pool_timeout=Config.DB_POOL_TIMEOUT,
        echo=echo,
        connect_args={
            "connect_timeout": 10,
            "application_name": "escrow_marketplace",
        },
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    """Session factory injected into services"""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@contextmanager
def managed_session(session_factory: sessionmaker) -> Iterator[Session]:
    """Sync context manager for database sessions"""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database session error: {e}")
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> bool:
    """Create all database tables if they don't exist"""
    logger.info("🏗️ Creating database tables (if they don't exist)...")
    Base.metadata.create_all(bind=engine, checkfirst=True)

    existing_tables = inspect(engine).get_table_names()
    logger.info(f"✅ Database schema verified: {len(existing_tables)} tables available")
    return True


def test_connection(engine: Engine) -> bool:
    """Test database connection"""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        logger.info("✅ Database connection test successful")
        return True
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False


def get_pool_stats(engine: Engine) -> dict:
    """Connection pool statistics for the health endpoint"""
    pool = engine.pool
    stats = {"pool_class": type(pool).__name__}
    if isinstance(pool, QueuePool):
        stats.update(
            size=pool.size(),
            checked_out=pool.checkedout(),
            overflow=pool.overflow(),
        )
    return stats
