"""
Database configuration and session management
Uses SQLAlchemy with async support
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy import event
from sqlalchemy.pool import NullPool
from typing import AsyncGenerator
import logging

from .config import settings
from app.models.base import Base
from app.models.badge import HonorBadge, DEFAULT_BADGES

logger = logging.getLogger(__name__)

# Determine if we're using SQLite
is_sqlite = settings.database_url_async.startswith("sqlite")

# Create async engine with conditional parameters
if is_sqlite:
    # SQLite doesn't support connection pooling parameters
    engine = create_async_engine(
        settings.database_url_async,
        echo=settings.DATABASE_ECHO,
        poolclass=NullPool,
    )
else:
    engine = create_async_engine(
        settings.database_url_async,
        echo=settings.DATABASE_ECHO,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=settings.DATABASE_POOL_TIMEOUT,
        pool_pre_ping=True,  # Verify connections before use
    )

def configure_sqlite_locking(async_engine: AsyncEngine) -> None:
    """
    Take the SQLite write lock when a transaction begins

    Two deferred transactions that both read and then write deadlock on lock
    promotion; BEGIN IMMEDIATE makes concurrent writers queue instead.
    """
    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

if is_sqlite:
    configure_sqlite_locking(engine)

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Database dependency
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Create and yield database session
    Ensures proper cleanup after use
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

async def create_schema(bind: AsyncEngine) -> None:
    """Create all tables and seed the honor badge catalogue"""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        for code, name, description, icon in DEFAULT_BADGES:
            if await session.get(HonorBadge, code) is None:
                session.add(HonorBadge(code=code, name=name, description=description, icon=icon))
        await session.commit()

async def init_db() -> None:
    """Initialize database tables"""
    await create_schema(engine)
    logger.info("Database tables created successfully")

async def close_db() -> None:
    """Close database connections"""
    await engine.dispose()
    logger.info("Database connections closed")
