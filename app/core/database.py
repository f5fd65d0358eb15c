# app/core/database.py
"""Database connection and session management using SQLAlchemy."""
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.exc import DBAPIError, DisconnectionError, InterfaceError
from sqlalchemy import text
import logging

from .config import settings

logger = logging.getLogger(__name__)


def _engine_options(database_url: str) -> dict:
    """Pool settings only apply to server databases; SQLite keeps its default pool"""
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_size": 15,
        "max_overflow": 25,
        "pool_timeout": 60,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
        "connect_args": {
            "command_timeout": 60,
            "server_settings": {
                "application_name": "enrollment_service",
                "idle_in_transaction_session_timeout": "60s",
                # Seat reservations take row locks on classes; never wait forever
                "lock_timeout": "10s",
            }
        }
    }


engine = create_async_engine(
    settings.database_url,
    echo=(settings.environment == 'development'),
    **_engine_options(settings.database_url)
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    expire_on_commit=False,
    class_=AsyncSession,
    autoflush=False,  # Manual control over flushing
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for API requests with proper error handling"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Database session error: {e}")
            await session.rollback()
            raise
        finally:
            await session.close()


def is_connection_lost(exc: BaseException) -> bool:
    """True when the database itself is unreachable, as opposed to a statement failing"""
    if isinstance(exc, (DisconnectionError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (ConnectionError, OSError))


async def health_check_db():
    """Fast health check with timeout handling"""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


async def close_db_connections():
    """Properly close all database connections"""
    await engine.dispose()
    logger.info("Database connections closed")
