"""Async engine and sessions for the portal store (asyncpg on PostgreSQL)."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from portal.core.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; tests override it with an aiosqlite one."""
    async with async_session_factory() as session:
        yield session


async def init_db() -> None:
    """Create the portal tables on startup; the Alembic revision is authoritative."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
