"""Async SQLAlchemy engine and sessions for the payments database."""

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import Settings, settings

logger = structlog.get_logger()


def build_engine(config: Settings) -> AsyncEngine:
    """Engine sized for the worker pool: each concurrent job holds one session."""
    return create_async_engine(
        config.database_url,
        echo=config.debug,
        pool_pre_ping=True,
        pool_size=max(config.db_pool_size, config.aml_worker_concurrency),
        max_overflow=config.db_max_overflow,
    )


engine = build_engine(settings)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Create any missing AML tables. Existing tables are left untouched."""
    from src.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized", tables=sorted(Base.metadata.tables))


async def check_db() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("database_check_failed", exc_info=True)
        return False


async def dispose_db() -> None:
    await engine.dispose()
    logger.info("database_disposed")
