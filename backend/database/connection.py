from functools import lru_cache
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text

from config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


@lru_cache()
def get_engine() -> AsyncEngine:
    """Create the async engine on first use, from settings."""
    database_url = get_settings().get_database_url()
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is not set")

    return create_async_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


@lru_cache()
def get_session_factory() -> async_sessionmaker:
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )


async def init_db():
    """Initialize database connection and verify the webhook_events table exists"""
    try:
        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("PostgreSQL connection successful")

            result = await conn.execute(text("""
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = 'public' AND table_name = 'webhook_events'
            """))
            if result.fetchone() is None:
                logger.warning("webhook_events table missing; run migrations/create_webhook_events_table.py")

            return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise


async def check_db() -> bool:
    """Round-trip a trivial query; used by the readiness check."""
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True


async def dispose_engine():
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
