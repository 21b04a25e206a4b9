"""Async database engine and session factory construction."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from studio.core.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for DATABASE_URL (asyncpg in production, aiosqlite locally)."""
    kwargs = {"echo": settings.DEBUG}
    if not settings.DATABASE_URL.startswith("sqlite"):
        kwargs["pool_pre_ping"] = True
    return create_async_engine(settings.DATABASE_URL, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Records are copied out of ORM rows immediately, so nothing needs reloading after commit.
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)
