"""
Database Connection Management
Async SQLite connection using aiosqlite
"""
from typing import Optional, AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from loguru import logger

from .models import Base
from config import settings

# Async engine
_engine = None
_session_factory = None
_database_url: Optional[str] = None


def configure(database_url: Optional[str] = None):
    """
    Select the database URL used by the next engine (defaults to
    settings.DATABASE_URL). Call before init_db, or after close_db.
    """
    global _database_url
    if _engine is not None:
        raise RuntimeError("Database engine already created; call close_db() first")
    _database_url = database_url


def get_engine():
    """Get or create async engine"""
    global _engine
    if _engine is None:
        db_url = _database_url or settings.DATABASE_URL
        if db_url.startswith("sqlite") and ":memory:" not in db_url:
            # Ensure data directory exists
            settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
        logger.info(f"Creating database engine: {db_url}")

        _engine = create_async_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        @event.listens_for(_engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return _engine


def get_session_factory():
    """Get or create session factory"""
    global _session_factory
    if _session_factory is None:
        engine = get_engine()
        _session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def init_db():
    """Initialize database - create tables if not exist"""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized successfully")


async def close_db():
    """Close database connection"""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
    logger.info("Database connection closed")


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session as async context manager"""
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            await session.close()
