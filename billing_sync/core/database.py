from __future__ import annotations

import logging

from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from billing_sync.config import settings
from billing_sync.models import subscription  # noqa: F401 - register table metadata

logger = logging.getLogger(__name__)

_ASYNC_DRIVERS = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}

# Global variables for database
engine: AsyncEngine | None = None
async_session: async_sessionmaker[AsyncSession] | None = None


def async_database_url(url: str | URL) -> str:
    """Swap a bare driver name (as Supabase hands out) for its async dialect."""
    parsed = make_url(url) if isinstance(url, str) else url
    driver = _ASYNC_DRIVERS.get(parsed.drivername)
    if driver is not None:
        parsed = parsed.set(drivername=driver)
    return parsed.render_as_string(hide_password=False)


async def init_database() -> async_sessionmaker[AsyncSession] | None:
    """Initialize database connection if DATABASE_URL is provided."""
    global engine, async_session

    if not settings.database_url:
        logger.info("No DATABASE_URL provided, running with the in-memory subscription store")
        return None

    database_url = async_database_url(settings.database_url)
    is_sqlite = make_url(database_url).drivername.startswith("sqlite")
    engine_kwargs: dict[str, object] = {"echo": settings.debug}
    if not is_sqlite:
        engine_kwargs.update(
            pool_pre_ping=True,
            pool_recycle=300,
            pool_size=max(settings.db_pool_min_size, 1),
            max_overflow=max(settings.db_pool_max_size - settings.db_pool_min_size, 0),
        )

    try:
        engine = create_async_engine(database_url, **engine_kwargs)
        async_session = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        if settings.database_auto_create:
            async with engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
            logger.info("Database schema created")

        logger.info("Database connection initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    return async_session


async def dispose_database() -> None:
    global engine, async_session

    if engine is not None:
        await engine.dispose()
    engine = None
    async_session = None
