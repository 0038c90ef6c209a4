"""
championship/database.py
Async database engine, session factory and schema bootstrap
"""
import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from championship.config.settings import settings
# Import Base from orm.base to avoid circular imports
from championship.orm.base import Base
import championship.orm  # ensures all models are registered

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")


def build_engine(url: str):
    """Create an async engine with pool settings suited to the dialect."""
    if "sqlite" in url.lower():
        # SQLite: busy timeout lets concurrent writers wait instead of failing
        return create_async_engine(
            url,
            echo=False,
            future=True,
            connect_args={
                "timeout": 30.0,   # SQLite busy timeout in seconds
            }
        )
    # PostgreSQL: Use standard pool with larger size
    return create_async_engine(
        url,
        echo=False,
        future=True,
        pool_pre_ping=True,
        pool_size=20,           # Base pool size
        max_overflow=30,        # Additional connections under load
        pool_timeout=30,        # Wait up to 30s for connection
        pool_recycle=3600,      # Recycle connections after 1 hour
    )


def build_session_factory(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(DATABASE_URL)
AsyncSessionLocal = build_session_factory(engine)


async def get_db():
    """Dependency for getting async database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """
    Dependency for services that manage their own transactions.

    The ranking synchronizer needs short independent transactions (lease
    acquire/release) next to the one that publishes the snapshot, so it
    receives the factory instead of a single session.
    """
    return AsyncSessionLocal


async def init_db():
    """Create all tables that do not exist yet."""
    logger.info("Initializing database...")

    try:
        logger.info(f"Database dialect: {engine.url.get_backend_name()}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("✓ Database initialization complete")

    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise


async def close_db():
    """Close database connection"""
    await engine.dispose()
    logger.info("Database connection closed")
