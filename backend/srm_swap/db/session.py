"""
Database session management.

Provides async session factory and dependency injection for FastAPI.
"""
from collections.abc import AsyncGenerator
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from srm_swap.core.config import settings

logger = structlog.get_logger()


def _engine_options(url: str) -> dict[str, Any]:
    """Pool and driver options; the asyncpg tuning only applies to PostgreSQL."""
    options: dict[str, Any] = {
        "echo": settings.api_debug,
        "pool_pre_ping": True,
    }
    if url.startswith("postgresql"):
        options.update(
            pool_size=20,
            max_overflow=30,
            pool_recycle=1800,  # Recycle connections after 30 minutes
            pool_timeout=20,
            connect_args={
                "server_settings": {
                    "statement_timeout": "25000",  # milliseconds
                    "idle_in_transaction_session_timeout": "300000",
                    "application_name": "srm_swap_api",
                },
                "command_timeout": 25,
            },
        )
    return options


engine = create_async_engine(
    settings.database_url_computed,
    **_engine_options(settings.database_url_computed),
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides an async database session.

    Services commit their own transaction boundaries; anything still pending
    when the request finishes is committed here, and errors roll back.

    Usage:
        @router.get("/items/{item_id}")
        async def get_item(item_id: int, db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(
                "Database session error",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise


async def create_tables() -> None:
    """Create all tables from model metadata (development convenience)."""
    from srm_swap.db.base import Base
    import srm_swap.models  # noqa: F401  registers all mappers

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")
