"""
Database configuration and session management
"""

from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    async_sessionmaker,
    create_async_engine
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool
import logging
from contextlib import asynccontextmanager

from app.config import settings

logger = logging.getLogger(__name__)

# Create async engine
if settings.is_testing or settings.DATABASE_URL.startswith("sqlite"):
    # NullPool doesn't accept pool parameters
    engine: AsyncEngine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DB_ECHO,
        poolclass=NullPool,
    )
else:
    engine: AsyncEngine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        poolclass=AsyncAdaptedQueuePool,
    )

# Create async session factory
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Create declarative base
Base = declarative_base()


async def init_db():
    """
    Initialize database connections
    """
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db():
    """
    Close database connections
    """
    await engine.dispose()
    logger.info("Database connections closed")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session with explicit transaction management
    """
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


class DatabaseManager:
    """
    Transaction helper shared by the booking services
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory or async_session
        self.logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def transaction(self, session: AsyncSession):
        """
        Context manager for explicit transaction handling.
        Commits on clean exit, rolls back on exception.
        """
        try:
            async with session.begin():
                yield session
        except Exception as e:
            self.logger.error(f"Transaction rolled back: {type(e).__name__}: {e}")
            raise

    @asynccontextmanager
    async def atomic_transaction(self):
        """
        Create a new session with atomic transaction
        """
        async with self.session_factory() as session:
            async with self.transaction(session) as tx_session:
                yield tx_session

    @asynccontextmanager
    async def read_session(self):
        """
        Short-lived session for read-only queries
        """
        async with self.session_factory() as session:
            yield session


# Create global database manager
db_manager = DatabaseManager()
